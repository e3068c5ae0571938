"""
ADT terrain tile decoder

A map tile is a 16x16 grid of MCNK terrain chunks plus the texture and model
name tables they reference. Since Cataclysm a tile may be split over three
files: the root file (chunk headers, heights, normals), '_tex0' (texture
layers and alpha maps) and '_obj0' (model names and placements). All three
contribute sub-chunk data to the same grid slots.
"""

import struct
import logging
from dataclasses import dataclass, field
from enum import IntFlag
from typing import BinaryIO, Dict, Iterator, List, Optional, Tuple

import numpy as np

from ..base.chunk_parser import (
    ChunkMap, ChunkParser, TruncatedChunkError,
    check_record_size, read_cstring_list, read_cstring_table, resolve_id_list, warn
)
from ..base.resource_reader import ResourceReader, split_resource_name
from .alpha_map import AlphaMap

logger = logging.getLogger(__name__)

TILE_SIZE = 533.0 + 1.0 / 3.0
CHUNK_SIZE = TILE_SIZE / 16.0
UNIT_SIZE = CHUNK_SIZE / 8.0
MAP_CENTER = TILE_SIZE * 32.0  # every map is 64x64 tiles

MAP_CHUNK_COUNT = 16 * 16
MAP_CHUNK_VERTICES = 9 * 9 + 8 * 8
VERTEX_ROW_SPAN = 9 + 8
MAX_TEXTURE_LAYERS = 4
ADT_VERSION = 18

SPLIT_FILE_SUFFIXES = ('_tex0', '_obj0')

MCNK_HEADER = struct.Struct('<5IQ8I2H3Q4I3f3I')
MCLY_ENTRY = struct.Struct('<4I')
MDDF_ENTRY = struct.Struct('<2I3f3f2H')
MODF_ENTRY = struct.Struct('<2I3f3f3f3f4H')

# Chunks that are understood but not decoded into the model
IGNORED_CHUNKS = {
    'MHDR', 'MCIN', 'MFBO', 'MH2O', 'MTXF', 'MTXP', 'MAMP', 'MTCG',
    'MDID', 'MHID', 'MLFD', 'MBMH', 'MBBB', 'MBNV', 'MBMI', 'MLMB',
}


class MCNKFlags(IntFlag):
    """MCNK chunk flags"""
    HAS_MCSH = 0x1
    IMPASS = 0x2
    LQ_RIVER = 0x4
    LQ_OCEAN = 0x8
    LQ_MAGMA = 0x10
    LQ_SLIME = 0x20
    HAS_MCCV = 0x40
    UNKNOWN_0X80 = 0x80
    DO_NOT_FIX_ALPHA_MAP = 0x8000
    HIGH_RES_HOLES = 0x10000


class MCLYFlags(IntFlag):
    """MCLY chunk flags"""
    ANIMATION_ROTATION = 0x7       # 3 bits - each tick is 45°
    ANIMATION_SPEED = 0x38         # 3 bits (shifted by 3)
    ANIMATION_ENABLED = 0x40
    OVERBRIGHT = 0x80              # Makes texture brighter (used for lava)
    USE_ALPHA_MAP = 0x100          # Set for every layer after first
    ALPHA_COMPRESSED = 0x200
    USE_CUBE_MAP_REFLECTION = 0x400
    UNKNOWN_800 = 0x800
    UNKNOWN_1000 = 0x1000


@dataclass
class HoleMask:
    """Terrain holes over the chunk's 8x8 quad grid.

    Low-resolution masks hold 16 bits, one per 2x2 block of quads. High
    resolution masks hold 64 bits, one byte per row of quads.
    """
    mask: int = 0
    high_res: bool = False

    def is_hole(self, x: int, y: int) -> bool:
        if self.high_res:
            bit = y * 8 + x
        else:
            bit = (y // 2) * 4 + (x // 2)
        return bool(self.mask >> bit & 1)


@dataclass
class TextureLayer:
    texture_id: int
    flags: MCLYFlags
    flags_raw: int
    ground_effect_id: int
    alpha_map: Optional[AlphaMap] = None


@dataclass
class ModelPlacement:
    """Information about a placed model (M2 or WMO)"""
    name_id: int
    unique_id: int
    position: Tuple[float, float, float]
    rotation: Tuple[float, float, float]
    scale: float
    flags: int


@dataclass
class MapObjectPlacement(ModelPlacement):
    bounds_min: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    bounds_max: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    doodad_set: int = 0
    name_set: int = 0


@dataclass
class MapChunkVertex:
    is_inner: bool
    row: int
    column: int
    height: float
    normal: np.ndarray


def _default_heights() -> np.ndarray:
    return np.zeros(MAP_CHUNK_VERTICES, dtype=np.float32)


def _default_normals() -> np.ndarray:
    normals = np.zeros((MAP_CHUNK_VERTICES, 3), dtype=np.float32)
    normals[:, 2] = 1.0
    return normals


@dataclass
class MapChunk:
    """One of the 256 terrain chunks of a tile.

    Heights and normals hold 145 entries interleaved as rows of 9 outer and
    8 inner vertices (9, 8, 9, ..., 8, 9).
    """
    index_x: int = 0
    index_y: int = 0
    position: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    flags: MCNKFlags = MCNKFlags(0)
    area_id: int = 0
    heights: np.ndarray = field(default_factory=_default_heights)
    normals: np.ndarray = field(default_factory=_default_normals)
    holes: HoleMask = field(default_factory=HoleMask)
    texture_layers: List[TextureLayer] = field(default_factory=list)

    def vertices(self) -> Iterator[MapChunkVertex]:
        for index in range(MAP_CHUNK_VERTICES):
            row, offset = divmod(index, VERTEX_ROW_SPAN)
            is_inner = offset >= 9
            column = offset - 9 if is_inner else offset
            yield MapChunkVertex(
                is_inner=is_inner,
                row=row,
                column=column,
                height=float(self.heights[index]),
                normal=self.normals[index]
            )

    @staticmethod
    def triangles(high_detail: bool = True) -> Iterator[Tuple[int, int, int]]:
        """
        Triangles over the 8x8 quad grid as vertex index triples

        High detail fans each quad around its inner centre vertex (4
        triangles), low detail splits it corner to corner (2 triangles).
        """
        for row in range(8):
            row_offset = row * VERTEX_ROW_SPAN
            for column in range(8):
                top_left = row_offset + column
                top_right = top_left + 1
                center = row_offset + 9 + column
                bottom_left = row_offset + VERTEX_ROW_SPAN + column
                bottom_right = bottom_left + 1

                if high_detail:
                    yield top_left, top_right, center
                    yield top_right, bottom_right, center
                    yield bottom_right, bottom_left, center
                    yield bottom_left, top_left, center
                else:
                    yield top_left, top_right, bottom_left
                    yield top_right, bottom_right, bottom_left

    @staticmethod
    def triangle_indices(high_detail: bool = True) -> np.ndarray:
        return np.array(list(MapChunk.triangles(high_detail)), dtype=np.uint16)


@dataclass
class MapTile:
    textures: List[str] = field(default_factory=list)
    m2_models: List[str] = field(default_factory=list)
    wmo_models: List[str] = field(default_factory=list)
    m2_placements: List[ModelPlacement] = field(default_factory=list)
    wmo_placements: List[MapObjectPlacement] = field(default_factory=list)
    chunks: List[MapChunk] = field(
        default_factory=lambda: [MapChunk() for _ in range(MAP_CHUNK_COUNT)])
    warnings: List[str] = field(default_factory=list)

    def get_chunk(self, x: int, y: int) -> MapChunk:
        return self.chunks[y * 16 + x]


def split_file_names(name: str) -> List[str]:
    """Names of the companion split files that may accompany a root tile"""
    directory, stem, ext = split_resource_name(name)
    return [f"{directory}{stem}{suffix}{ext}" for suffix in SPLIT_FILE_SUFFIXES]


def decode_heights(data: bytes) -> np.ndarray:
    size = MAP_CHUNK_VERTICES * 4
    if len(data) < size:
        raise TruncatedChunkError(f"MCVT needs {size} bytes, got {len(data)}")
    return np.frombuffer(data[:size], dtype='<f4').astype(np.float32)


def decode_normals(data: bytes) -> np.ndarray:
    size = MAP_CHUNK_VERTICES * 3
    if len(data) < size:
        raise TruncatedChunkError(f"MCNR needs {size} bytes, got {len(data)}")
    raw = np.frombuffer(data[:size], dtype=np.int8).reshape(MAP_CHUNK_VERTICES, 3)
    normals = raw.astype(np.float32) / np.array([-127.0, -127.0, 127.0], dtype=np.float32)
    lengths = np.linalg.norm(normals, axis=1, keepdims=True)
    return np.divide(normals, lengths, out=np.zeros_like(normals), where=lengths > 0)


class ADTParser:
    """Decodes the files of one map tile into a MapTile.

    All intermediate state lives on the instance, which is created per
    load call.
    """

    def __init__(self, big_alpha: Optional[bool] = None, reversed_chunks: bool = True):
        self.big_alpha = big_alpha
        self.reversed_chunks = reversed_chunks
        self.tile = MapTile()
        self.logger = logger

    def _warn(self, message: str) -> None:
        warn(self.logger, self.tile.warnings, message)

    def parse_file(self, stream: BinaryIO, is_root: bool) -> None:
        """Stream the top-level chunks of one tile file into the tile"""
        m2_names: Dict[int, str] = {}
        wmo_names: Dict[int, str] = {}
        chunk_index = 0

        for chunk in ChunkParser(stream, self.reversed_chunks):
            token = chunk.token
            if token == 'MVER':
                version = struct.unpack_from('<I', chunk.data)[0] if chunk.size >= 4 else None
                if version != ADT_VERSION:
                    self._warn(f"Unusual ADT version: {version}")
            elif token == 'MTEX':
                self.tile.textures.extend(read_cstring_list(chunk.data))
            elif token == 'MMDX':
                m2_names.update(read_cstring_table(chunk.data))
            elif token == 'MMID':
                self.tile.m2_models.extend(
                    resolve_id_list(chunk.data, m2_names, self.tile.warnings, 'M2'))
            elif token == 'MWMO':
                wmo_names.update(read_cstring_table(chunk.data))
            elif token == 'MWID':
                self.tile.wmo_models.extend(
                    resolve_id_list(chunk.data, wmo_names, self.tile.warnings, 'WMO'))
            elif token == 'MDDF':
                self.tile.m2_placements.extend(self._parse_mddf(chunk.data))
            elif token == 'MODF':
                self.tile.wmo_placements.extend(self._parse_modf(chunk.data))
            elif token == 'MCNK':
                if chunk_index >= MAP_CHUNK_COUNT:
                    self._warn(f"Ignoring extra MCNK #{chunk_index}")
                else:
                    self.parse_mcnk(self.tile.chunks[chunk_index], chunk.data, is_root)
                chunk_index += 1
            elif token not in IGNORED_CHUNKS:
                self._warn(f"Skipping unknown chunk {token} ({chunk.size} bytes)")

    def _parse_mddf(self, data: bytes) -> List[ModelPlacement]:
        count = check_record_size('MDDF', data, MDDF_ENTRY.size, self.tile.warnings)
        placements = []
        for i in range(count):
            values = MDDF_ENTRY.unpack_from(data, i * MDDF_ENTRY.size)
            placements.append(ModelPlacement(
                name_id=values[0],
                unique_id=values[1],
                position=values[2:5],
                rotation=values[5:8],
                scale=values[8] / 1024.0,
                flags=values[9]
            ))
        return placements

    def _parse_modf(self, data: bytes) -> List[MapObjectPlacement]:
        count = check_record_size('MODF', data, MODF_ENTRY.size, self.tile.warnings)
        placements = []
        for i in range(count):
            values = MODF_ENTRY.unpack_from(data, i * MODF_ENTRY.size)
            placements.append(MapObjectPlacement(
                name_id=values[0],
                unique_id=values[1],
                position=values[2:5],
                rotation=values[5:8],
                bounds_min=values[8:11],
                bounds_max=values[11:14],
                flags=values[14],
                doodad_set=values[15],
                name_set=values[16],
                scale=(values[17] or 1024) / 1024.0
            ))
        return placements

    def _parse_mcnk_header(self, map_chunk: MapChunk, data: bytes) -> None:
        if len(data) < MCNK_HEADER.size:
            raise TruncatedChunkError(f"MCNK header too small: {len(data)} bytes")

        (flags, index_x, index_y, _num_layers, _num_doodad_refs,
         holes_high_res, _ofs_layer, _ofs_refs, _ofs_alpha, _size_alpha,
         _ofs_shadow, _size_shadow, area_id, _num_map_obj_refs,
         holes_low_res, _unknown, _tex_map_1, _tex_map_2, _no_effect_doodad,
         _ofs_snd_emitters, _num_snd_emitters, _ofs_liquid, _size_liquid,
         pos_x, pos_y, pos_z, _ofs_mccv, _ofs_mclv, _unused) = MCNK_HEADER.unpack_from(data)

        map_chunk.flags = MCNKFlags(flags)
        map_chunk.index_x = index_x
        map_chunk.index_y = index_y
        map_chunk.area_id = area_id
        # Stored in the file's own axis order; converting is up to the caller
        map_chunk.position = (pos_x, pos_y, pos_z)

        if map_chunk.flags & MCNKFlags.HIGH_RES_HOLES:
            map_chunk.holes = HoleMask(holes_high_res, high_res=True)
        else:
            map_chunk.holes = HoleMask(holes_low_res, high_res=False)

    def parse_mcnk(self, map_chunk: MapChunk, data: bytes, is_root: bool) -> None:
        """Decode one MCNK payload into its grid slot.

        Only root files carry the 128-byte chunk header; split files start
        straight with sub-chunks.
        """
        if is_root:
            self._parse_mcnk_header(map_chunk, data)
            data = data[MCNK_HEADER.size:]

        subchunks = ChunkMap.read(data, self.reversed_chunks)

        if 'MCVT' in subchunks:
            map_chunk.heights = decode_heights(subchunks.get('MCVT'))
        if 'MCNR' in subchunks:
            map_chunk.normals = decode_normals(subchunks.get('MCNR'))
        if 'MCLY' in subchunks:
            self._parse_layers(map_chunk, subchunks.get('MCLY'), subchunks.get_optional('MCAL'))

    def _parse_layers(self, map_chunk: MapChunk, mcly: bytes, mcal: Optional[bytes]) -> None:
        count = check_record_size('MCLY', mcly, MCLY_ENTRY.size, self.tile.warnings)
        if count > MAX_TEXTURE_LAYERS:
            self._warn(f"MCLY holds {count} layers, using the first {MAX_TEXTURE_LAYERS}")
            count = MAX_TEXTURE_LAYERS

        for index in range(count):
            texture_id, flags, mcal_offset, effect_id = MCLY_ENTRY.unpack_from(
                mcly, index * MCLY_ENTRY.size)
            layer = TextureLayer(
                texture_id=texture_id,
                flags=MCLYFlags(flags),
                flags_raw=flags,
                ground_effect_id=effect_id
            )
            if layer.flags & MCLYFlags.USE_ALPHA_MAP:
                layer.alpha_map = self._read_alpha_map(index, layer, mcal, mcal_offset)
            map_chunk.texture_layers.append(layer)

    def _read_alpha_map(self, index: int, layer: TextureLayer,
                        mcal: Optional[bytes], offset: int) -> Optional[AlphaMap]:
        if mcal is None:
            self._warn(f"Layer {index} uses an alpha map but the chunk has no MCAL")
            return None

        data = mcal[offset:]
        if layer.flags & MCLYFlags.ALPHA_COMPRESSED:
            return AlphaMap.read_compressed(data)
        if self.big_alpha is None:
            self._warn(f"Skipping non-compressed alpha map {index} (missing big_alpha option)")
            return None
        return AlphaMap.read_raw(data, is_4bit=not self.big_alpha)


def load_map_tile(reader: ResourceReader, name: str,
                  big_alpha: Optional[bool] = None,
                  reversed_chunks: bool = True) -> MapTile:
    """
    Load a map tile and any split companion files next to it

    Args:
        reader: Resource reader used to open the root and split files
        name: Resource name of the root tile file
        big_alpha: Bit width of uncompressed alpha maps (True for 8-bit,
            False for 4-bit). The tile does not record it; when unknown,
            uncompressed alpha maps are skipped with a warning.
        reversed_chunks: Whether chunk tokens are stored byte-mirrored
    """
    targets = [(name, True)]
    for split_name in split_file_names(name):
        if reader.exists(split_name):
            targets.append((split_name, False))

    parser = ADTParser(big_alpha=big_alpha, reversed_chunks=reversed_chunks)
    for target, is_root in targets:
        logger.debug(f"Reading tile file {target} (root={is_root})")
        with reader.open(target) as stream:
            parser.parse_file(stream, is_root)

    return parser.tile
