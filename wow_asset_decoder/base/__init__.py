"""
Chunk container parsing and resource resolution shared by every format
"""

from .chunk_parser import (
    Chunk, ChunkParser, ChunkMap, iter_chunks,
    ChunkParsingError, TruncatedChunkError, InvalidFormatError,
    UnsupportedVersionError, ChunkNotFoundError,
    read_cstring_table, read_cstring_list, resolve_id_list
)
from .resource_reader import (
    ResourceReader, ResourceNotFoundError, CaseInsensitiveResourceReader,
    FileSystemResourceReader, MemoryResourceReader,
    DirectoryListing, LocalFileSystem, MemoryFileSystem,
    split_resource_name
)

__all__ = [
    'Chunk',
    'ChunkParser',
    'ChunkMap',
    'iter_chunks',
    'ChunkParsingError',
    'TruncatedChunkError',
    'InvalidFormatError',
    'UnsupportedVersionError',
    'ChunkNotFoundError',
    'read_cstring_table',
    'read_cstring_list',
    'resolve_id_list',
    'ResourceReader',
    'ResourceNotFoundError',
    'CaseInsensitiveResourceReader',
    'FileSystemResourceReader',
    'MemoryResourceReader',
    'DirectoryListing',
    'LocalFileSystem',
    'MemoryFileSystem',
    'split_resource_name'
]
