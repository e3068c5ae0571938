import io
import struct
import logging
from typing import BinaryIO, Dict, Iterator, List, Optional, Union
from dataclasses import dataclass

logger = logging.getLogger(__name__)


class ChunkParsingError(Exception):
    """Base exception for chunk parsing errors"""
    pass


class TruncatedChunkError(ChunkParsingError):
    """Raised when the input ends in the middle of a record"""
    pass


class InvalidFormatError(ChunkParsingError):
    """Raised when data does not match the expected layout"""
    pass


class UnsupportedVersionError(ChunkParsingError):
    """Raised when a file declares a version this package cannot decode"""
    pass


class ChunkNotFoundError(ChunkParsingError):
    """Raised when a required chunk is missing"""
    pass


@dataclass
class Chunk:
    """One token + payload record of a chunked file"""
    token: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    def reader(self) -> BinaryIO:
        """Fresh seekable stream over the payload"""
        return io.BytesIO(self.data)


def read_exact(stream: BinaryIO, size: int) -> bytes:
    """Read up to size bytes, returning fewer only at end of stream"""
    parts = []
    remaining = size
    while remaining > 0:
        part = stream.read(remaining)
        if not part:
            break
        parts.append(part)
        remaining -= len(part)
    return b''.join(parts)


class ChunkParser:
    """Lazy single-pass reader of (token, payload) records.

    Each record is a 4-byte token, a little-endian u32 length and that many
    payload bytes. In the default dialect tokens are stored byte-mirrored
    ('REVM' on disk for MVER), so ``reversed_chunks`` defaults to True.

    A stream that ends exactly on a record boundary ends the iteration.
    A stream that ends anywhere inside a record raises TruncatedChunkError.
    """

    CHUNK_HEADER_SIZE = 8

    def __init__(self, stream: Union[BinaryIO, bytes], reversed_chunks: bool = True):
        if isinstance(stream, (bytes, bytearray, memoryview)):
            stream = io.BytesIO(bytes(stream))
        self.stream = stream
        self.reversed_chunks = reversed_chunks

    def __iter__(self) -> Iterator[Chunk]:
        while True:
            chunk = self.read_chunk()
            if chunk is None:
                return
            yield chunk

    def _decode_token(self, raw: bytes) -> str:
        if self.reversed_chunks:
            raw = raw[::-1]
        try:
            return raw.decode('ascii')
        except UnicodeDecodeError as e:
            raise InvalidFormatError(f"Invalid chunk token {raw!r}") from e

    def read_chunk(self) -> Optional[Chunk]:
        """Read the next chunk, or None at a clean end of stream"""
        raw_token = read_exact(self.stream, 4)
        if not raw_token:
            return None
        if len(raw_token) < 4:
            raise TruncatedChunkError(
                f"Incomplete chunk token: got {len(raw_token)} of 4 bytes")

        token = self._decode_token(raw_token)

        raw_size = read_exact(self.stream, 4)
        if len(raw_size) < 4:
            raise TruncatedChunkError(f"Incomplete size field for chunk {token}")
        size = struct.unpack('<I', raw_size)[0]

        data = read_exact(self.stream, size)
        if len(data) < size:
            raise TruncatedChunkError(
                f"Chunk {token} declares {size} bytes but only {len(data)} remain")

        logger.debug(f"Found chunk: {token} ({size} bytes)")
        return Chunk(token=token, data=data)


def iter_chunks(stream: Union[BinaryIO, bytes], reversed_chunks: bool = True) -> Iterator[Chunk]:
    """Iterate over the chunks of a stream or byte string"""
    return iter(ChunkParser(stream, reversed_chunks))


class ChunkMap:
    """Pre-scanned token -> list of payloads table.

    Used where a format needs repeated or out-of-order lookups instead of a
    single pass over the stream.
    """

    def __init__(self, chunks: Optional[Dict[str, List[bytes]]] = None):
        self._chunks: Dict[str, List[bytes]] = chunks if chunks is not None else {}

    @classmethod
    def read(cls, stream: Union[BinaryIO, bytes], reversed_chunks: bool = True) -> 'ChunkMap':
        result: Dict[str, List[bytes]] = {}
        for chunk in ChunkParser(stream, reversed_chunks):
            result.setdefault(chunk.token, []).append(chunk.data)
        return cls(result)

    def __contains__(self, token: str) -> bool:
        return token in self._chunks

    def has(self, token: str) -> bool:
        return token in self._chunks

    def tokens(self) -> List[str]:
        return list(self._chunks)

    def get(self, token: str) -> bytes:
        """First payload for token"""
        logger.debug(f"Looking up chunk: {token}")
        return self.get_all(token)[0]

    def get_all(self, token: str) -> List[bytes]:
        try:
            return self._chunks[token]
        except KeyError:
            raise ChunkNotFoundError(f"Chunk not found: {token}") from None

    def get_optional(self, token: str) -> Optional[bytes]:
        payloads = self._chunks.get(token)
        return payloads[0] if payloads else None


def warn(log: logging.Logger, warnings: Optional[List[str]], message: str) -> None:
    """Log a soft error and record it on the result being built"""
    log.warning(message)
    if warnings is not None:
        warnings.append(message)


def read_cstring_table(data: bytes) -> Dict[int, str]:
    """
    Read a block of null-terminated strings keyed by their starting offset

    Later chunks refer to these strings by byte offset, so empty strings
    (runs of nulls) only advance the offset. An unterminated string at the
    end of the block is still returned.

    Raises:
        InvalidFormatError: If a string is not valid UTF-8
    """
    table: Dict[int, str] = {}
    pos = 0
    size = len(data)
    while pos < size:
        end = data.find(b'\0', pos)
        if end == -1:
            end = size
        if end > pos:
            raw = data[pos:end]
            try:
                table[pos] = raw.decode('utf-8')
            except UnicodeDecodeError as e:
                raise InvalidFormatError(
                    f"Invalid string at offset {pos}: {raw!r}") from e
            logger.debug(f"Found string: [{pos}] '{table[pos]}'")
        pos = end + 1
    return table


def read_cstring_list(data: bytes) -> List[str]:
    """Read a list of null-terminated strings in file order"""
    return list(read_cstring_table(data).values())


def resolve_id_list(data: bytes,
                    table: Dict[int, str],
                    warnings: Optional[List[str]] = None,
                    label: str = 'name') -> List[str]:
    """
    Translate an id-list chunk into names by draining an offset table

    Each u32 entry is an offset into the string block the table was built
    from. Matched names are removed from the table; offsets without a name
    and names nobody referenced are reported but do not fail the load. The
    table is empty afterwards.
    """
    count = check_record_size(label + ' ids', data, 4, warnings)
    names = []
    for (offset,) in struct.iter_unpack('<I', data[:count * 4]):
        name = table.pop(offset, None)
        if name is None:
            warn(logger, warnings, f"Found invalid {label} offset {offset}")
        else:
            names.append(name)

    for offset, name in table.items():
        warn(logger, warnings, f"Missing reference for {label} '{name}' at offset {offset}")
    table.clear()
    return names


def check_record_size(token: str, data: bytes, stride: int,
                      warnings: Optional[List[str]] = None) -> int:
    """Number of whole fixed-size records in data; warns on a ragged tail"""
    count, rest = divmod(len(data), stride)
    if rest:
        warn(logger, warnings,
             f"{token} chunk size {len(data)} not divisible by entry size {stride}; "
             f"ignoring {rest} trailing bytes")
    return count
