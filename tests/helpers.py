"""
Builders for binary test data
"""

import struct
from typing import Iterable, List, Optional, Sequence, Tuple

from wow_asset_decoder.formats.adt import MCNK_HEADER


def create_test_chunk(name: bytes, data: bytes, reversed: bool = True) -> bytes:
    """Create a test chunk with the given name and data"""
    chunk_name = name[::-1] if reversed else name
    return chunk_name + len(data).to_bytes(4, 'little') + data


def string_block(names: Iterable[str]) -> Tuple[bytes, List[int]]:
    """Null-terminated string block plus the offset of each name"""
    block = b''
    offsets = []
    for name in names:
        offsets.append(len(block))
        block += name.encode('utf-8') + b'\0'
    return block, offsets


def offsets_chunk(offsets: Sequence[int]) -> bytes:
    return struct.pack(f'<{len(offsets)}I', *offsets)


def create_mcnk_header(flags: int = 0, x: int = 0, y: int = 0,
                       position: Tuple[float, float, float] = (0.0, 0.0, 0.0),
                       holes_low_res: int = 0, holes_high_res: int = 0,
                       area_id: int = 0) -> bytes:
    return MCNK_HEADER.pack(
        flags, x, y, 0, 0,
        holes_high_res,
        0, 0, 0, 0, 0, 0, area_id, 0,
        holes_low_res, 0,
        0, 0, 0,
        0, 0, 0, 0,
        *position,
        0, 0, 0
    )


def create_mcly(layers: Sequence[Tuple[int, int, int, int]]) -> bytes:
    """MCLY payload from (texture_id, flags, mcal_offset, effect_id) tuples"""
    return b''.join(struct.pack('<4I', *layer) for layer in layers)


def compress_alpha(value: int) -> bytes:
    """4096 samples of one value as fill runs of 127 plus a remainder"""
    runs, rest = divmod(4096, 127)
    data = bytes([0x80 | 127, value]) * runs
    return data + bytes([0x80 | rest, value])


def create_mcnk(subchunks: bytes, header: Optional[bytes] = None) -> bytes:
    return create_test_chunk(b'MCNK', (header or b'') + subchunks)


def create_blp(encoding: int, width: int, height: int,
               blocks: Sequence[bytes],
               alpha_depth: int = 0, preferred_format: int = 0,
               palette: Optional[bytes] = None,
               version: int = 1, magic: bytes = b'BLP2',
               offsets: Optional[Sequence[int]] = None) -> bytes:
    """Assemble a BLP2 file with the mipmap blocks laid out after the header"""
    header_size = 4 + 16 + 64 + 64
    body = b''
    if encoding == 1:
        body += palette if palette is not None else bytes(256 * 4)

    start = header_size + len(body)
    block_offsets = []
    block_sizes = []
    for block in blocks:
        block_offsets.append(start)
        block_sizes.append(len(block))
        start += len(block)
    body += b''.join(blocks)

    if offsets is not None:
        block_offsets = list(offsets)
    table_offsets = (list(block_offsets) + [0] * 16)[:16]
    table_sizes = (block_sizes + [0] * 16)[:16]

    return (magic
            + struct.pack('<IBBBBII', version, encoding, alpha_depth, preferred_format,
                          1 if len(blocks) > 1 else 0, width, height)
            + struct.pack('<16I', *table_offsets)
            + struct.pack('<16I', *table_sizes)
            + body)
