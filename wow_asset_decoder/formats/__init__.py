"""
Format-specific decoders
"""

from .alpha_map import AlphaMap, AlphaValue
from .blp import BlpImage, BlpEncoding, BlpCompression
from .adt import MapTile, MapChunk, TextureLayer, HoleMask, load_map_tile
from .wmo import WorldModel, MeshGroupInfo, MeshGroup, RenderBatch, load_world_model, load_mesh_group

__all__ = [
    'AlphaMap',
    'AlphaValue',
    'BlpImage',
    'BlpEncoding',
    'BlpCompression',
    'MapTile',
    'MapChunk',
    'TextureLayer',
    'HoleMask',
    'load_map_tile',
    'WorldModel',
    'MeshGroupInfo',
    'MeshGroup',
    'RenderBatch',
    'load_world_model',
    'load_mesh_group'
]
