"""
Tests for alpha map decoding
"""

import random

import numpy as np
import pytest

from wow_asset_decoder.base.chunk_parser import InvalidFormatError, TruncatedChunkError
from wow_asset_decoder.formats.alpha_map import ALPHA_MAP_SIZE, AlphaMap

from helpers import compress_alpha


class TestRawAlphaMap:

    def test_4bit_low_nibble_is_even_index(self):
        data = bytes([0x21, 0xf0]) + bytes(2046)
        alpha = AlphaMap.read_raw(data, is_4bit=True)

        assert alpha.is_4bit
        assert alpha.get(0) == 0x1
        assert alpha.get(1) == 0x2
        assert alpha.get(2) == 0x0
        assert alpha.get(3) == 0xf

    def test_4bit_normalization(self):
        alpha = AlphaMap.read_raw(bytes([0x8f]) * 2048, is_4bit=True)
        assert alpha.get_normalized(0) == 15 / 16
        assert alpha.get_normalized(1) == 8 / 16

    def test_8bit(self):
        data = bytes(range(256)) * 16
        alpha = AlphaMap.read_raw(data, is_4bit=False)

        assert alpha.is_8bit
        assert alpha.get(255) == 255
        assert alpha.get(256) == 0
        assert alpha.get_normalized(128) == 0.5

    def test_consumes_only_its_own_bytes(self):
        alpha = AlphaMap.read_raw(bytes(2048) + b'\xff' * 100, is_4bit=True)
        assert len(alpha.data) == 2048

    @pytest.mark.parametrize('is_4bit, size', [(True, 2047), (False, 4095), (False, 2048)])
    def test_truncated_raw_raises(self, is_4bit, size):
        with pytest.raises(TruncatedChunkError):
            AlphaMap.read_raw(bytes(size), is_4bit)

    def test_index_out_of_range(self):
        alpha = AlphaMap.read_raw(bytes(4096), is_4bit=False)
        with pytest.raises(IndexError):
            alpha.get(ALPHA_MAP_SIZE)


class TestCompressedAlphaMap:

    def test_fill_runs(self):
        alpha = AlphaMap.read_compressed(compress_alpha(0x40))

        assert alpha.is_8bit
        assert len(alpha.data) == 4096
        assert set(alpha.data) == {0x40}

    def test_copy_and_fill_runs(self):
        literal = bytes(range(1, 11))
        data = bytes([10]) + literal + compress_alpha(0)[:-2] + bytes([0x80 | 22, 7])

        alpha = AlphaMap.read_compressed(data)

        assert alpha.data[:10] == literal
        assert alpha.data[10] == 0
        assert alpha.data[-22:] == bytes([7]) * 22

    def test_stops_at_4096_samples(self):
        alpha = AlphaMap.read_compressed(compress_alpha(3) + b'\x85\x09trailing')
        assert len(alpha.data) == 4096

    def test_short_input_raises(self):
        with pytest.raises(InvalidFormatError):
            AlphaMap.read_compressed(compress_alpha(1)[:-2])

    def test_missing_fill_value_raises(self):
        with pytest.raises(InvalidFormatError):
            AlphaMap.read_compressed(compress_alpha(1)[:-1])

    def test_overrun_raises(self):
        data = compress_alpha(1)[:-2] + bytes([0x80 | 40, 1])
        with pytest.raises(InvalidFormatError):
            AlphaMap.read_compressed(data)

    def test_random_input_yields_full_map_or_format_error(self):
        rng = random.Random(1234)
        for _ in range(300):
            data = bytes(rng.randrange(256) for _ in range(rng.randrange(0, 200)))
            try:
                alpha = AlphaMap.read_compressed(data)
            except InvalidFormatError:
                continue
            assert len(alpha.data) == 4096

    def test_random_runs_yield_full_map_or_format_error(self):
        rng = random.Random(99)
        for _ in range(100):
            data = bytearray()
            while len(data) < 200:
                count = rng.randrange(128)
                if rng.random() < 0.8:
                    data += bytes([0x80 | count, rng.randrange(256)])
                else:
                    data += bytes([count]) + bytes(count)
            try:
                alpha = AlphaMap.read_compressed(bytes(data))
            except InvalidFormatError:
                continue
            assert len(alpha.data) == 4096


class TestAlphaValues:

    def test_values_are_row_major(self):
        data = bytearray(4096)
        data[64 + 2] = 128
        alpha = AlphaMap.read_raw(bytes(data), is_4bit=False)

        values = list(alpha.values())

        assert len(values) == 4096
        assert (values[0].row, values[0].column) == (0, 0)
        assert (values[66].row, values[66].column) == (1, 2)
        assert values[66].value == 0.5
        assert (values[-1].row, values[-1].column) == (63, 63)

    def test_to_array_matches_values(self):
        data = bytes((i * 7) & 0xff for i in range(2048))
        alpha = AlphaMap.read_raw(data, is_4bit=True)

        grid = alpha.to_array()

        assert grid.shape == (64, 64)
        expected = np.array([v.value for v in alpha.values()], dtype=np.float32).reshape(64, 64)
        assert np.array_equal(grid, expected)
