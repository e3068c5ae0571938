"""
Decoders for World of Warcraft asset files: BLP textures, ADT terrain tiles
and WMO world models
"""

from .base import (
    ChunkParser, ChunkMap, ChunkParsingError, TruncatedChunkError,
    InvalidFormatError, UnsupportedVersionError, ChunkNotFoundError,
    ResourceReader, ResourceNotFoundError, FileSystemResourceReader,
    MemoryResourceReader, split_resource_name
)
from .formats import blp
from .formats.alpha_map import AlphaMap
from .formats.adt import MapTile, load_map_tile
from .formats.wmo import WorldModel, MeshGroup, load_world_model, load_mesh_group, load_all_groups
from .format_detector import FileType, detect_file_type

__version__ = '0.1.0'

__all__ = [
    'ChunkParser',
    'ChunkMap',
    'ChunkParsingError',
    'TruncatedChunkError',
    'InvalidFormatError',
    'UnsupportedVersionError',
    'ChunkNotFoundError',
    'ResourceReader',
    'ResourceNotFoundError',
    'FileSystemResourceReader',
    'MemoryResourceReader',
    'split_resource_name',
    'blp',
    'AlphaMap',
    'MapTile',
    'load_map_tile',
    'WorldModel',
    'MeshGroup',
    'load_world_model',
    'load_mesh_group',
    'load_all_groups',
    'FileType',
    'detect_file_type',
    '__version__'
]
