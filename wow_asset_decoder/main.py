#!/usr/bin/env python3
"""
Game asset decoder driver
Picks a decoder by file extension and reports success or failure per file
"""

import sys
import logging
import argparse
from pathlib import Path
from typing import List, Optional

from .base.chunk_parser import ChunkParsingError
from .base.resource_reader import FileSystemResourceReader
from .format_detector import FileType, detect_file_type
from .formats import blp
from .formats.adt import load_map_tile
from .formats.wmo import load_all_groups, load_world_model, read_mesh_group
from .utils.logging import setup_logging

logger = logging.getLogger(__name__)


def process_file(file_path: Path,
                 big_alpha: Optional[bool] = None,
                 load_groups: bool = False,
                 export_dir: Optional[Path] = None) -> bool:
    """
    Decode a single asset file

    Returns:
        bool: Whether decoding was successful
    """
    reader = FileSystemResourceReader(file_path.parent)
    name = file_path.name

    try:
        file_type = detect_file_type(name)
    except ValueError as e:
        logger.error(f"{file_path}: {e}")
        return False

    try:
        if file_type == FileType.BLP:
            image = blp.load_resource(reader, name)
            logger.info(
                f"{file_path}: {image.width}x{image.height} {image.encoding.name.lower()}, "
                f"{image.mipmap_count} mipmaps")
            if export_dir:
                export_dir.mkdir(parents=True, exist_ok=True)
                output_path = export_dir / f"{file_path.stem}.png"
                image.to_pil().save(output_path, 'PNG')
                logger.info(f"Converted: {file_path} --> {output_path}")

        elif file_type == FileType.ADT:
            tile = load_map_tile(reader, name, big_alpha)
            layers = sum(len(chunk.texture_layers) for chunk in tile.chunks)
            logger.info(
                f"{file_path}: {len(tile.textures)} textures, {len(tile.m2_models)} M2, "
                f"{len(tile.wmo_models)} WMO, {layers} texture layers, "
                f"{len(tile.warnings)} warnings")

        elif file_type == FileType.ADT_SPLIT:
            logger.info(f"{file_path}: split file, decoded together with its root tile")

        elif file_type == FileType.WMO:
            model = load_world_model(reader, name)
            logger.info(
                f"{file_path}: {len(model.textures)} textures, {len(model.materials)} materials, "
                f"{len(model.groups)} groups, {len(model.warnings)} warnings")
            if load_groups:
                groups = load_all_groups(reader, model)
                loaded = sum(1 for group in groups if group is not None)
                logger.info(f"{file_path}: loaded {loaded} of {len(groups)} groups")

        elif file_type == FileType.WMO_GROUP:
            with reader.open(name) as stream:
                group = read_mesh_group(stream)
            logger.info(
                f"{file_path}: {len(group.vertices)} vertices, {len(group.indexes) // 3} triangles, "
                f"{len(group.batches)} batches")

    except (OSError, ChunkParsingError) as e:
        logger.error(f"Failed to load {file_path}; Cause: {e}")
        return False

    logger.info(f"{file_path} loaded successfully")
    return True


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description='Decode BLP textures, ADT terrain tiles and WMO world models'
    )
    parser.add_argument('files', nargs='+',
                        help='Asset files to decode')
    alpha = parser.add_mutually_exclusive_group()
    alpha.add_argument('--big-alpha', dest='big_alpha', action='store_true', default=None,
                       help='Uncompressed ADT alpha maps are 8-bit')
    alpha.add_argument('--small-alpha', dest='big_alpha', action='store_false',
                       help='Uncompressed ADT alpha maps are 4-bit')
    parser.set_defaults(big_alpha=None)
    parser.add_argument('--groups', action='store_true',
                        help='Also load every group of WMO root files')
    parser.add_argument('--export-png', metavar='DIR',
                        help='Write decoded BLP textures as PNG into DIR')
    parser.add_argument('--log-dir',
                        help='Directory for log files')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')

    args = parser.parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    setup_logging(args.log_dir, log_level)

    export_dir = Path(args.export_png) if args.export_png else None

    failed = 0
    for file_name in args.files:
        if not process_file(Path(file_name), args.big_alpha, args.groups, export_dir):
            failed += 1

    if failed:
        logger.error(f"{failed} of {len(args.files)} files failed")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
