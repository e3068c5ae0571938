#!/usr/bin/env python3
"""
BLP2 texture decoder

Layout (little-endian):
    magic 'BLP2', version u32 (=1), encoding u8, alpha_depth u8,
    preferred_format u8, has_mipmaps u8, width u32, height u32,
    16 x u32 mipmap offsets, 16 x u32 mipmap sizes, then the payload.
"""
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import BinaryIO, List, Optional, Tuple, Union
import logging
import math
import struct

import numpy as np
from PIL import Image

from ..base.chunk_parser import (
    InvalidFormatError, TruncatedChunkError, UnsupportedVersionError,
    read_exact, warn
)
from ..base.resource_reader import ResourceReader

logger = logging.getLogger(__name__)

BLP_MAGIC = b'BLP2'
BLP_HEADER = struct.Struct('<IBBBBII')
MIPMAP_SLOTS = 16
PALETTE_SIZE = 256
SUPPORTED_ALPHA_DEPTHS = (0, 1, 8)


class BlpEncoding(IntEnum):
    INDEXED = 1
    COMPRESSED = 2
    TRUECOLOR = 3


class BlpCompression(Enum):
    DXT1 = 1
    DXT3 = 2
    DXT5 = 3


@dataclass
class IndexedPixels:
    """One mipmap of a palettized image"""
    indexes: bytes
    alpha_values: Optional[bytes] = None


@dataclass
class IndexedImageData:
    palette: np.ndarray  # (256, 3) uint8 RGB
    full_alpha: bool
    mipmaps: List[IndexedPixels]


@dataclass
class CompressedImageData:
    compression: BlpCompression
    mipmaps: List[bytes]


@dataclass
class TrueColorImageData:
    mipmaps: List[np.ndarray]  # (height, width, 4) uint8 BGRA per level


ImageData = Union[IndexedImageData, CompressedImageData, TrueColorImageData]


@dataclass
class BlpImage:
    width: int
    height: int
    encoding: BlpEncoding
    alpha_depth: int
    preferred_format: int
    has_mipmaps: bool
    data: ImageData
    warnings: List[str] = field(default_factory=list)

    @property
    def mipmap_count(self) -> int:
        return len(self.data.mipmaps)

    def mipmap_size(self, level: int) -> Tuple[int, int]:
        return mipmap_dimensions(self.width, self.height, level)

    def to_pil(self, level: int = 0) -> Image.Image:
        """Convert one mipmap level to an RGBA Pillow image

        Raises:
            InvalidFormatError: The level is missing or too short to decode
        """
        if not 0 <= level < self.mipmap_count:
            raise InvalidFormatError(
                f"Mipmap level {level} not present; image has {self.mipmap_count}")
        width, height = self.mipmap_size(level)
        data = self.data

        if isinstance(data, IndexedImageData):
            pixels = data.mipmaps[level]
            indexes = np.frombuffer(pixels.indexes, dtype=np.uint8)
            rgba = np.empty((width * height, 4), dtype=np.uint8)
            rgba[:, :3] = data.palette[indexes]
            if pixels.alpha_values is not None:
                rgba[:, 3] = np.frombuffer(pixels.alpha_values, dtype=np.uint8)
            else:
                rgba[:, 3] = 0xFF
            return Image.fromarray(rgba.reshape(height, width, 4))

        if isinstance(data, TrueColorImageData):
            bgra = data.mipmaps[level]
            return Image.fromarray(bgra[:, :, [2, 1, 0, 3]].copy())

        block_format = {
            BlpCompression.DXT1: 1,
            BlpCompression.DXT3: 2,
            BlpCompression.DXT5: 3,
        }[data.compression]
        try:
            return Image.frombytes('RGBA', (width, height), data.mipmaps[level],
                                   'bcn', block_format)
        except ValueError as e:
            raise InvalidFormatError(
                f"Cannot decode {data.compression.name} mipmap {level}: {e}") from e


def mipmap_dimensions(width: int, height: int, level: int) -> Tuple[int, int]:
    return max(1, width >> level), max(1, height >> level)


def mipmap_count(offsets) -> int:
    """Number of mipmaps: position of the first zero offset"""
    for index, offset in enumerate(offsets):
        if offset == 0:
            return index
    return len(offsets)


def select_compression(alpha_depth: int, preferred_format: int) -> BlpCompression:
    if alpha_depth == 8 and preferred_format == 7:
        return BlpCompression.DXT5
    if alpha_depth in (8, 4):
        return BlpCompression.DXT3
    return BlpCompression.DXT1


def _read_block(stream: BinaryIO, offset: int, size: int) -> bytes:
    stream.seek(offset)
    block = read_exact(stream, size)
    if len(block) < size:
        raise TruncatedChunkError(
            f"Mipmap at {offset} declares {size} bytes but only {len(block)} remain")
    return block


def _take(block: bytes, pos: int, size: int, what: str) -> bytes:
    if pos + size > len(block):
        raise TruncatedChunkError(
            f"Cannot read {size} bytes of {what}; mipmap has {len(block) - pos} left")
    return block[pos:pos + size]


def expand_1bit_alpha(data: bytes, count: int) -> bytes:
    """Expand an LSB-first bit mask to one 0x00/0xFF byte per pixel"""
    bits = np.unpackbits(np.frombuffer(data, dtype=np.uint8), bitorder='little')
    return (bits[:count] * 0xFF).astype(np.uint8).tobytes()


def _decode_indexed(stream: BinaryIO, image_width: int, image_height: int,
                    alpha_depth: int, blocks: List[Tuple[int, int]]) -> IndexedImageData:
    raw_palette = read_exact(stream, PALETTE_SIZE * 4)
    if len(raw_palette) < PALETTE_SIZE * 4:
        raise TruncatedChunkError("BLP palette is truncated")
    bgrx = np.frombuffer(raw_palette, dtype=np.uint8).reshape(PALETTE_SIZE, 4)
    palette = bgrx[:, [2, 1, 0]].copy()

    mipmaps = []
    for level, (offset, size) in enumerate(blocks):
        width, height = mipmap_dimensions(image_width, image_height, level)
        count = width * height
        block = _read_block(stream, offset, size)

        indexes = _take(block, 0, count, 'palette indexes')
        if alpha_depth == 8:
            alpha_values = _take(block, count, count, '8-bit alpha')
        elif alpha_depth == 1:
            packed = _take(block, count, math.ceil(count / 8), '1-bit alpha')
            alpha_values = expand_1bit_alpha(packed, count)
        else:
            alpha_values = None

        mipmaps.append(IndexedPixels(indexes=indexes, alpha_values=alpha_values))

    return IndexedImageData(palette=palette, full_alpha=alpha_depth > 1, mipmaps=mipmaps)


def _decode_compressed(stream: BinaryIO, alpha_depth: int, preferred_format: int,
                       blocks: List[Tuple[int, int]]) -> CompressedImageData:
    compression = select_compression(alpha_depth, preferred_format)
    mipmaps = []
    for offset, size in blocks:
        logger.debug(f"Reading {size} bytes at offset {offset}")
        mipmaps.append(_read_block(stream, offset, size))
    return CompressedImageData(compression=compression, mipmaps=mipmaps)


def _decode_truecolor(stream: BinaryIO, image_width: int, image_height: int,
                      blocks: List[Tuple[int, int]]) -> TrueColorImageData:
    mipmaps = []
    for level, (offset, _) in enumerate(blocks):
        width, height = mipmap_dimensions(image_width, image_height, level)
        stream.seek(offset)
        raw = read_exact(stream, width * height * 4)
        if len(raw) < width * height * 4:
            raise TruncatedChunkError(f"Truecolor mipmap {level} is truncated")
        mipmaps.append(np.frombuffer(raw, dtype=np.uint8).reshape(height, width, 4))
    return TrueColorImageData(mipmaps=mipmaps)


def load(stream: BinaryIO) -> BlpImage:
    """
    Decode a BLP2 image from a seekable binary stream

    Raises:
        InvalidFormatError: Bad magic or unknown encoding
        UnsupportedVersionError: Version other than 1
        TruncatedChunkError: The stream ends before the data it declares
    """
    warnings: List[str] = []

    magic = read_exact(stream, 4)
    if magic != BLP_MAGIC:
        raise InvalidFormatError(f"File header isn't BLP2: {magic!r}")

    header = read_exact(stream, BLP_HEADER.size)
    if len(header) < BLP_HEADER.size:
        raise TruncatedChunkError("BLP header is truncated")
    (version, encoding, alpha_depth, preferred_format,
     has_mipmaps, width, height) = BLP_HEADER.unpack(header)

    if version != 1:
        raise UnsupportedVersionError(f"Unsupported BLP version: {version}")

    if alpha_depth not in SUPPORTED_ALPHA_DEPTHS:
        warn(logger, warnings, f"Trying to load BLP with unsupported alpha depth: {alpha_depth}")

    tables = read_exact(stream, MIPMAP_SLOTS * 8)
    if len(tables) < MIPMAP_SLOTS * 8:
        raise TruncatedChunkError("BLP mipmap tables are truncated")
    offsets = struct.unpack_from(f'<{MIPMAP_SLOTS}I', tables, 0)
    sizes = struct.unpack_from(f'<{MIPMAP_SLOTS}I', tables, MIPMAP_SLOTS * 4)

    count = mipmap_count(offsets)
    blocks = list(zip(offsets[:count], sizes[:count]))
    logger.debug(f"Mipmap blocks: {blocks}")

    if encoding == BlpEncoding.INDEXED:
        data = _decode_indexed(stream, width, height, alpha_depth, blocks)
    elif encoding == BlpEncoding.COMPRESSED:
        data = _decode_compressed(stream, alpha_depth, preferred_format, blocks)
    elif encoding == BlpEncoding.TRUECOLOR:
        data = _decode_truecolor(stream, width, height, blocks)
    else:
        raise InvalidFormatError(f"Unsupported encoding id: {encoding}")

    return BlpImage(
        width=width,
        height=height,
        encoding=BlpEncoding(encoding),
        alpha_depth=alpha_depth,
        preferred_format=preferred_format,
        has_mipmaps=bool(has_mipmaps),
        data=data,
        warnings=warnings
    )


def load_resource(reader: ResourceReader, name: str) -> BlpImage:
    """Open a named BLP through a resource reader and decode it"""
    with reader.open(name) as stream:
        return load(stream)
