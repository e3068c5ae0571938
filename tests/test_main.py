"""
Tests for file type detection and the command line driver
"""

import logging
import struct

import pytest

from wow_asset_decoder.format_detector import FileType, detect_file_type
from wow_asset_decoder.main import main, process_file

from helpers import create_blp, create_mcnk, create_mcnk_header, create_test_chunk


@pytest.fixture(autouse=True)
def restore_root_logger():
    """main() reconfigures the root logger; drop what it adds"""
    root = logging.getLogger()
    before = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in before:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


@pytest.mark.parametrize('name, expected', [
    ('Textures/Grass.blp', FileType.BLP),
    ('GRASS.BLP', FileType.BLP),
    ('Azeroth_32_48.adt', FileType.ADT),
    ('Azeroth_32_48_tex0.adt', FileType.ADT_SPLIT),
    ('Azeroth_32_48_OBJ0.ADT', FileType.ADT_SPLIT),
    ('Azeroth_32_48_lod0.adt', FileType.ADT_SPLIT),
    ('Stormwind.wmo', FileType.WMO),
    ('Stormwind_000.wmo', FileType.WMO_GROUP),
    ('World\\wmo\\Stormwind_012.WMO', FileType.WMO_GROUP),
    ('Stormwind_12.wmo', FileType.WMO),
])
def test_detect_file_type(name, expected):
    assert detect_file_type(name) == expected


@pytest.mark.parametrize('name', ['model.m2', 'readme', 'Map.wdt'])
def test_detect_unsupported(name):
    with pytest.raises(ValueError, match='Unsupported file extension'):
        detect_file_type(name)


def write_tile(path):
    data = create_test_chunk(b'MVER', struct.pack('<I', 18))
    data += create_mcnk(b'', create_mcnk_header(area_id=3))
    path.write_bytes(data)


class TestProcessFile:
    """Test per-file decoding"""

    def test_blp(self, tmp_path):
        path = tmp_path / 'Grass.blp'
        path.write_bytes(create_blp(3, 1, 1, [bytes([0, 0, 255, 255])]))

        assert process_file(path)

    def test_blp_export(self, tmp_path):
        path = tmp_path / 'Grass.blp'
        path.write_bytes(create_blp(3, 2, 2, [bytes([0, 0, 255, 255]) * 4]))
        export_dir = tmp_path / 'png'

        assert process_file(path, export_dir=export_dir)
        assert (export_dir / 'Grass.png').exists()

    def test_adt(self, tmp_path):
        path = tmp_path / 'Azeroth_32_48.adt'
        write_tile(path)

        assert process_file(path, big_alpha=True)

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / 'Broken.blp'
        path.write_bytes(b'BLP1' + bytes(200))

        assert not process_file(path)

    def test_truncated_tile(self, tmp_path):
        path = tmp_path / 'Azeroth_1_1.adt'
        path.write_bytes(create_test_chunk(b'MVER', struct.pack('<I', 18)) + b'RE')

        assert not process_file(path)

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / 'model.m2'
        path.write_bytes(b'MD20')

        assert not process_file(path)

    def test_missing_file(self, tmp_path):
        assert not process_file(tmp_path / 'missing.blp')


class TestMain:
    """Test the command line entry point"""

    def test_all_files_succeed(self, tmp_path):
        blp_path = tmp_path / 'Grass.blp'
        blp_path.write_bytes(create_blp(3, 1, 1, [bytes(4)]))
        adt_path = tmp_path / 'Azeroth_32_48.adt'
        write_tile(adt_path)

        assert main([str(blp_path), str(adt_path), '--small-alpha']) == 0

    def test_any_failure_sets_exit_code(self, tmp_path):
        good = tmp_path / 'Grass.blp'
        good.write_bytes(create_blp(3, 1, 1, [bytes(4)]))
        bad = tmp_path / 'Bad.blp'
        bad.write_bytes(b'nope')

        assert main([str(good), str(bad)]) == 1

    def test_unexportable_blp_does_not_stop_the_run(self, tmp_path):
        empty = tmp_path / 'Empty.blp'
        empty.write_bytes(create_blp(3, 1, 1, [], offsets=[0] * 16))
        good = tmp_path / 'Grass.blp'
        good.write_bytes(create_blp(3, 1, 1, [bytes(4)]))
        export_dir = tmp_path / 'png'

        assert main([str(empty), str(good), '--export-png', str(export_dir)]) == 1
        assert (export_dir / 'Grass.png').exists()
        assert not (export_dir / 'Empty.png').exists()

    def test_short_dxt_mipmap_export_fails_cleanly(self, tmp_path):
        short = tmp_path / 'Short.blp'
        short.write_bytes(create_blp(2, 64, 64, [bytes(8)]))
        export_dir = tmp_path / 'png'

        assert main([str(short), '--export-png', str(export_dir)]) == 1

    def test_log_dir(self, tmp_path):
        path = tmp_path / 'Grass.blp'
        path.write_bytes(create_blp(3, 1, 1, [bytes(4)]))
        log_dir = tmp_path / 'logs'

        assert main([str(path), '--log-dir', str(log_dir), '--verbose']) == 0
        assert len(list(log_dir.glob('decode_assets_*.log'))) == 1

    def test_alpha_options_are_exclusive(self, tmp_path):
        with pytest.raises(SystemExit):
            main(['x.adt', '--big-alpha', '--small-alpha'])
