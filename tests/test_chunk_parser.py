"""
Tests for the chunk container parser and string tables
"""

import io
import struct

import pytest

from wow_asset_decoder.base.chunk_parser import (
    ChunkMap, ChunkNotFoundError, ChunkParser, InvalidFormatError, TruncatedChunkError,
    check_record_size, iter_chunks, read_cstring_list, read_cstring_table, resolve_id_list
)

from helpers import create_test_chunk, offsets_chunk, string_block


class TestChunkParser:
    """Test chunk stream iteration"""

    def test_reads_mirrored_tokens(self):
        data = create_test_chunk(b'MVER', struct.pack('<I', 18))
        data += create_test_chunk(b'MTEX', b'a.blp\0')
        assert data[:4] == b'REVM'

        chunks = list(ChunkParser(io.BytesIO(data)))

        assert [c.token for c in chunks] == ['MVER', 'MTEX']
        assert chunks[0].data == struct.pack('<I', 18)
        assert chunks[1].size == 6

    def test_reads_unmirrored_dialect(self):
        data = create_test_chunk(b'MD21', b'\x01\x02', reversed=False)

        chunks = list(ChunkParser(data, reversed_chunks=False))

        assert chunks[0].token == 'MD21'
        assert chunks[0].data == b'\x01\x02'

    def test_empty_stream_is_clean_end(self):
        assert list(iter_chunks(b'')) == []

    def test_zero_length_chunk(self):
        chunks = list(iter_chunks(create_test_chunk(b'MCAL', b'')))
        assert chunks[0].token == 'MCAL'
        assert chunks[0].data == b''

    def test_repeated_tokens_are_kept_in_order(self):
        data = b''.join(create_test_chunk(b'MCNK', bytes([i])) for i in range(3))
        assert [c.data for c in iter_chunks(data)] == [b'\0', b'\1', b'\2']

    @pytest.mark.parametrize('trailing', [1, 2, 3])
    def test_trailing_partial_token_raises(self, trailing):
        data = create_test_chunk(b'MVER', struct.pack('<I', 18)) + b'X' * trailing
        parser = ChunkParser(data)

        chunk = parser.read_chunk()
        assert chunk.token == 'MVER'
        with pytest.raises(TruncatedChunkError):
            parser.read_chunk()

    @pytest.mark.parametrize('trailing', [1, 2, 3])
    def test_trailing_partial_token_raises_while_iterating(self, trailing):
        data = create_test_chunk(b'MVER', struct.pack('<I', 18)) + b'X' * trailing
        seen = []
        with pytest.raises(TruncatedChunkError):
            for chunk in iter_chunks(data):
                seen.append(chunk.token)
        assert seen == ['MVER']

    def test_truncated_size_raises(self):
        with pytest.raises(TruncatedChunkError):
            list(iter_chunks(b'REVM\x04\x00'))

    def test_truncated_payload_raises(self):
        data = create_test_chunk(b'MVER', struct.pack('<I', 18))[:-1]
        with pytest.raises(TruncatedChunkError):
            list(iter_chunks(data))

    def test_non_ascii_token_raises(self):
        with pytest.raises(InvalidFormatError):
            list(iter_chunks(b'\xff\xfe\xfd\xfc\x00\x00\x00\x00'))

    def test_chunk_reader_is_seekable(self):
        chunk = next(iter_chunks(create_test_chunk(b'MCVT', b'abcdef')))
        reader = chunk.reader()
        reader.seek(3)
        assert reader.read() == b'def'


class TestChunkMap:
    """Test pre-scanned chunk lookup"""

    def test_groups_payloads_by_token(self):
        data = (create_test_chunk(b'MOTV', b'first')
                + create_test_chunk(b'MOVT', b'verts')
                + create_test_chunk(b'MOTV', b'second'))

        chunks = ChunkMap.read(data)

        assert chunks.get('MOTV') == b'first'
        assert chunks.get_all('MOTV') == [b'first', b'second']
        assert 'MOVT' in chunks
        assert chunks.tokens() == ['MOTV', 'MOVT']

    def test_missing_token(self):
        chunks = ChunkMap.read(create_test_chunk(b'MVER', b'\0' * 4))

        assert not chunks.has('MOGP')
        assert chunks.get_optional('MOGP') is None
        with pytest.raises(ChunkNotFoundError):
            chunks.get('MOGP')


class TestStringTables:
    """Test offset-addressed string blocks"""

    def test_table_is_keyed_by_first_byte_offset(self):
        table = read_cstring_table(b'a.m2\0\0bc.m2\0d\0')
        assert table == {0: 'a.m2', 6: 'bc.m2', 12: 'd'}

    def test_unterminated_last_string_is_kept(self):
        assert read_cstring_table(b'one\0two') == {0: 'one', 4: 'two'}

    def test_invalid_utf8_raises(self):
        with pytest.raises(InvalidFormatError):
            read_cstring_table(b'ok\0\xff\xfe\0')

    def test_list_keeps_file_order(self):
        assert read_cstring_list(b'z\0\0a\0m\0') == ['z', 'a', 'm']

    def test_id_list_drains_table_in_id_order(self):
        block, offsets = string_block(['first.m2', 'second.m2', 'third.m2'])
        table = read_cstring_table(block)
        warnings = []

        names = resolve_id_list(offsets_chunk([offsets[2], offsets[0], offsets[1]]),
                                table, warnings)

        assert names == ['third.m2', 'first.m2', 'second.m2']
        assert table == {}
        assert warnings == []

    def test_id_list_reports_unmatched_and_leftover(self):
        block, offsets = string_block(['used.m2', 'unused.m2'])
        table = read_cstring_table(block)
        warnings = []

        names = resolve_id_list(offsets_chunk([offsets[0], 999]), table, warnings, 'M2')

        assert names == ['used.m2']
        assert len(warnings) == 2
        assert '999' in warnings[0]
        assert 'unused.m2' in warnings[1]
        assert table == {}

    def test_record_size_warns_on_ragged_tail(self):
        warnings = []
        assert check_record_size('MDDF', bytes(36 * 2 + 5), 36, warnings) == 2
        assert len(warnings) == 1
        assert check_record_size('MDDF', bytes(72), 36, warnings) == 2
        assert len(warnings) == 1
