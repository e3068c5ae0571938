"""MCAL alpha map decoding.

An alpha map is a 64x64 opacity grid blending a terrain texture layer over
the layers below it. It is stored either raw (4 bits or 8 bits per sample,
the file does not say which) or run-length compressed to 8 bits per sample.
"""
from dataclasses import dataclass
from typing import Iterator
import logging

import numpy as np

from ..base.chunk_parser import InvalidFormatError, TruncatedChunkError

logger = logging.getLogger(__name__)

ALPHA_MAP_SIDE = 64
ALPHA_MAP_SIZE = ALPHA_MAP_SIDE * ALPHA_MAP_SIDE


@dataclass
class AlphaValue:
    row: int
    column: int
    value: float


class AlphaMap:
    """4096 alpha samples, either packed two per byte or one per byte"""

    def __init__(self, data: bytes, is_4bit: bool = False):
        expected = ALPHA_MAP_SIZE // 2 if is_4bit else ALPHA_MAP_SIZE
        if len(data) != expected:
            raise InvalidFormatError(
                f"Alpha map needs {expected} bytes, got {len(data)}")
        self.data = bytes(data)
        self.is_4bit = is_4bit

    def __repr__(self) -> str:
        return f"AlphaMap({'4' if self.is_4bit else '8'}-bit, {len(self.data)} bytes)"

    @property
    def is_8bit(self) -> bool:
        return not self.is_4bit

    @classmethod
    def read_raw(cls, data: bytes, is_4bit: bool) -> 'AlphaMap':
        """Decode an uncompressed alpha map from the start of data"""
        size = ALPHA_MAP_SIZE // 2 if is_4bit else ALPHA_MAP_SIZE
        if len(data) < size:
            raise TruncatedChunkError(
                f"Alpha map needs {size} bytes, only {len(data)} available")
        return cls(data[:size], is_4bit)

    @classmethod
    def read_compressed(cls, data: bytes) -> 'AlphaMap':
        """Decode a run-length compressed alpha map from the start of data.

        Each control byte holds a count in its low 7 bits. With the high bit
        set the next byte is repeated count times, otherwise the next count
        bytes are copied. Decoding stops at exactly 4096 samples.
        """
        out = bytearray()
        pos = 0
        size = len(data)

        while len(out) < ALPHA_MAP_SIZE:
            if pos >= size:
                raise InvalidFormatError(
                    f"Compressed alpha map ended after {len(out)} of {ALPHA_MAP_SIZE} samples")
            control = data[pos]
            pos += 1
            count = control & 0x7f

            if control & 0x80:
                if pos >= size:
                    raise InvalidFormatError("Compressed alpha map fill run has no value")
                out.extend(data[pos:pos + 1] * count)
                pos += 1
            else:
                if pos + count > size:
                    raise InvalidFormatError(
                        f"Compressed alpha map copy run of {count} bytes exceeds input")
                out.extend(data[pos:pos + count])
                pos += count

        if len(out) != ALPHA_MAP_SIZE:
            raise InvalidFormatError(
                f"Invalid compressed alpha map: decoded {len(out)} samples")

        return cls(bytes(out), is_4bit=False)

    def get(self, index: int) -> int:
        """Raw sample value at index (0-15 or 0-255)"""
        if not 0 <= index < ALPHA_MAP_SIZE:
            raise IndexError(f"Alpha map index {index} out of range")
        if self.is_4bit:
            value = self.data[index // 2]
            return value & 0x0f if index % 2 == 0 else value >> 4
        return self.data[index]

    def get_normalized(self, index: int) -> float:
        # Scaling follows the client: 4-bit samples divide by 16, not 15
        value = self.get(index)
        return value / 16.0 if self.is_4bit else value / 256.0

    def values(self) -> Iterator[AlphaValue]:
        """Samples in row-major order"""
        for index in range(ALPHA_MAP_SIZE):
            row, column = divmod(index, ALPHA_MAP_SIDE)
            yield AlphaValue(row, column, self.get_normalized(index))

    def to_array(self) -> np.ndarray:
        """64x64 float32 array of normalized samples"""
        raw = np.frombuffer(self.data, dtype=np.uint8)
        if self.is_4bit:
            samples = np.empty(ALPHA_MAP_SIZE, dtype=np.uint8)
            samples[0::2] = raw & 0x0f
            samples[1::2] = raw >> 4
            grid = samples.astype(np.float32) / 16.0
        else:
            grid = raw.astype(np.float32) / 256.0
        return grid.reshape(ALPHA_MAP_SIDE, ALPHA_MAP_SIDE)
