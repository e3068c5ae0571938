"""
WMO world model decoder (version 17)

A world model is a root file describing textures, materials and groups, plus
one file per mesh group named '<root>_NNN.wmo'. Groups are loaded on demand
and independently of each other.
"""

import struct
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import BinaryIO, Dict, List, Optional, Tuple

import numpy as np

from ..base.chunk_parser import (
    ChunkMap, ChunkParser, ChunkParsingError, TruncatedChunkError, UnsupportedVersionError,
    check_record_size, read_cstring_table, warn
)
from ..base.resource_reader import ResourceReader, split_resource_name

logger = logging.getLogger(__name__)

WMO_VERSION = 17
DEFAULT_GROUP_EXTENSION = '.wmo'

MOHD_HEADER = struct.Struct('<7I4BI3f3f2H')
MOMT_ENTRY = struct.Struct('<4I4B4BI4B2I2I4I')
MOGI_ENTRY = struct.Struct('<I3f3fi')
MODS_ENTRY = struct.Struct('<20s3I')
MODD_ENTRY = struct.Struct('<I3f4ff4B')
MOGP_HEADER = struct.Struct('<3I3f3f6H4B4I')
MOBA_ENTRY = struct.Struct('<6HIHHHBB')

MOBA_FLAG_USE_LARGE_MATERIAL_ID = 0x2

# Root chunks that are understood but not decoded into the model
IGNORED_ROOT_CHUNKS = {
    'MOSB', 'MOPV', 'MOPT', 'MOPR', 'MOVV', 'MOVB', 'MOLT', 'MFOG', 'MCVP',
    'GFID', 'MOUV', 'MOSI', 'MODI', 'MOM3', 'MOLV', 'MAVG', 'MAVD', 'MOGX',
}


@dataclass
class WorldModelHeader:
    num_materials: int
    num_groups: int
    num_portals: int
    num_lights: int
    num_doodad_names: int
    num_doodad_defs: int
    num_doodad_sets: int


@dataclass
class Material:
    flags: int
    shader: int
    blend_mode: int
    texture_id: Optional[int]
    env_texture_id: Optional[int]
    texture_3_id: Optional[int]
    emissive_color: Tuple[int, int, int, int]
    diffuse_color: Tuple[int, int, int, int]
    ground_type: int


@dataclass
class MeshGroupInfo:
    index: int
    resource_key: str
    flags: int
    bounding_box_min: Tuple[float, float, float]
    bounding_box_max: Tuple[float, float, float]
    name: Optional[str] = None


@dataclass
class DoodadSet:
    name: str
    start_index: int
    count: int


@dataclass
class DoodadPlacement:
    name_offset: int
    name: Optional[str]
    flags: int
    position: Tuple[float, float, float]
    rotation: Tuple[float, float, float, float]
    scale: float
    color: Tuple[int, int, int, int]


@dataclass
class WorldModel:
    name: str
    textures: List[str] = field(default_factory=list)
    model_paths: List[str] = field(default_factory=list)
    materials: List[Material] = field(default_factory=list)
    groups: List[MeshGroupInfo] = field(default_factory=list)
    doodad_sets: List[DoodadSet] = field(default_factory=list)
    doodads: List[DoodadPlacement] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class RenderBatch:
    material_id: int
    index_start: int
    index_count: int
    vertex_start: int
    vertex_end: int
    flags: int = 0


@dataclass
class MeshGroup:
    """Geometry of one group, in the file's own (Z-up) axis convention"""
    flags: int
    bounding_box_min: Tuple[float, float, float]
    bounding_box_max: Tuple[float, float, float]
    indexes: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.uint16))
    vertices: np.ndarray = field(default_factory=lambda: np.zeros((0, 3), dtype=np.float32))
    normals: np.ndarray = field(default_factory=lambda: np.zeros((0, 3), dtype=np.float32))
    texcoords: np.ndarray = field(default_factory=lambda: np.zeros((0, 2), dtype=np.float32))
    batches: List[RenderBatch] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_y_up(self) -> 'MeshGroup':
        """Copy with positions and normals remapped from Z-up to Y-up"""
        # Negating y swaps which corner holds the minimum on the new z axis
        corners = z_up_to_y_up(np.array([self.bounding_box_min, self.bounding_box_max]))
        return replace(
            self,
            vertices=z_up_to_y_up(self.vertices),
            normals=z_up_to_y_up(self.normals),
            bounding_box_min=tuple(float(v) for v in corners.min(axis=0)),
            bounding_box_max=tuple(float(v) for v in corners.max(axis=0)),
        )


def z_up_to_y_up(points: np.ndarray) -> np.ndarray:
    """(x, y, z) -> (x, z, -y)"""
    points = np.asarray(points, dtype=np.float32)
    return np.stack([points[:, 0], points[:, 2], -points[:, 1]], axis=1)


def group_resource_key(root_name: str, index: int) -> str:
    """Name of a group file: root stem + '_' + 3-digit index + extension"""
    directory, stem, ext = split_resource_name(root_name)
    return f"{directory}{stem}_{index:03d}{ext or DEFAULT_GROUP_EXTENSION}"


def _check_version(data: bytes) -> None:
    if len(data) < 4:
        raise TruncatedChunkError("MVER chunk is truncated")
    version = struct.unpack_from('<I', data)[0]
    if version != WMO_VERSION:
        raise UnsupportedVersionError(f"Unsupported WMO version: {version}")


class WMORootParser:
    """Decodes a WMO root file. One instance per load."""

    def __init__(self, name: str, reversed_chunks: bool = True):
        self.model = WorldModel(name=name)
        self.reversed_chunks = reversed_chunks
        self.header: Optional[WorldModelHeader] = None
        self.texture_index: Dict[int, int] = {}
        self.group_names: Dict[int, str] = {}
        self.model_names: Dict[int, str] = {}

    def _warn(self, message: str) -> None:
        warn(logger, self.model.warnings, message)

    def _record_count(self, token: str, data: bytes, stride: int,
                      expected: Optional[int]) -> int:
        available = check_record_size(token, data, stride, self.model.warnings)
        if expected is None:
            return available
        if available < expected:
            self._warn(f"{token} holds {available} records, header expects {expected}")
            return available
        return expected

    def parse(self, stream: BinaryIO) -> WorldModel:
        for chunk in ChunkParser(stream, self.reversed_chunks):
            token = chunk.token
            data = chunk.data
            if token == 'MVER':
                _check_version(data)
            elif token == 'MOHD':
                self._parse_header(data)
            elif token == 'MOTX':
                self._parse_textures(data)
            elif token == 'MOMT':
                self._parse_materials(data)
            elif token == 'MOGN':
                self.group_names.update(read_cstring_table(data))
            elif token == 'MOGI':
                self._parse_group_info(data)
            elif token == 'MODS':
                self._parse_doodad_sets(data)
            elif token == 'MODN':
                self.model_names.update(read_cstring_table(data))
                self.model.model_paths.extend(self.model_names.values())
            elif token == 'MODD':
                self._parse_doodads(data)
            elif token not in IGNORED_ROOT_CHUNKS:
                self._warn(f"Skipping unknown chunk {token} ({chunk.size} bytes)")
        return self.model

    def _parse_header(self, data: bytes) -> None:
        if len(data) < MOHD_HEADER.size:
            raise TruncatedChunkError(f"MOHD header too small: {len(data)} bytes")
        values = MOHD_HEADER.unpack_from(data)
        self.header = WorldModelHeader(*values[:7])
        logger.debug(f"WMO header: {self.header}")

    def _parse_textures(self, data: bytes) -> None:
        # Materials refer to textures by byte offset into this block
        for offset, path in read_cstring_table(data).items():
            self.texture_index[offset] = len(self.model.textures)
            self.model.textures.append(path)

    def _resolve_texture(self, offset: int, label: str, index: int) -> Optional[int]:
        texture_id = self.texture_index.get(offset)
        if texture_id is None and offset != 0:
            self._warn(f"Material {index} {label} offset {offset} does not start a texture name")
        return texture_id

    def _parse_materials(self, data: bytes) -> None:
        expected = self.header.num_materials if self.header else None
        count = self._record_count('MOMT', data, MOMT_ENTRY.size, expected)

        for index in range(count):
            values = MOMT_ENTRY.unpack_from(data, index * MOMT_ENTRY.size)
            (flags, shader, blend_mode, texture_1) = values[0:4]
            emissive = values[4:8]
            texture_2 = values[12]
            diffuse = values[13:17]
            ground_type, texture_3 = values[17:19]

            self.model.materials.append(Material(
                flags=flags,
                shader=shader,
                blend_mode=blend_mode,
                texture_id=self._resolve_texture(texture_1, 'texture 1', index),
                env_texture_id=self._resolve_texture(texture_2, 'texture 2', index),
                texture_3_id=self._resolve_texture(texture_3, 'texture 3', index),
                emissive_color=emissive,
                diffuse_color=diffuse,
                ground_type=ground_type
            ))

    def _parse_group_info(self, data: bytes) -> None:
        expected = self.header.num_groups if self.header else None
        count = self._record_count('MOGI', data, MOGI_ENTRY.size, expected)

        for index in range(count):
            values = MOGI_ENTRY.unpack_from(data, index * MOGI_ENTRY.size)
            flags = values[0]
            name_offset = values[7]

            name = None
            if name_offset >= 0:
                name = self.group_names.get(name_offset)
                if name is None:
                    self._warn(f"Group {index} name offset {name_offset} is unresolved")

            self.model.groups.append(MeshGroupInfo(
                index=index,
                resource_key=group_resource_key(self.model.name, index),
                flags=flags,
                bounding_box_min=values[1:4],
                bounding_box_max=values[4:7],
                name=name
            ))

    def _parse_doodad_sets(self, data: bytes) -> None:
        expected = self.header.num_doodad_sets if self.header else None
        count = self._record_count('MODS', data, MODS_ENTRY.size, expected)

        for index in range(count):
            raw_name, start_index, doodad_count, _ = MODS_ENTRY.unpack_from(
                data, index * MODS_ENTRY.size)
            self.model.doodad_sets.append(DoodadSet(
                name=raw_name.split(b'\0', 1)[0].decode('utf-8', 'replace'),
                start_index=start_index,
                count=doodad_count
            ))

    def _parse_doodads(self, data: bytes) -> None:
        expected = self.header.num_doodad_defs if self.header else None
        count = self._record_count('MODD', data, MODD_ENTRY.size, expected)

        for index in range(count):
            values = MODD_ENTRY.unpack_from(data, index * MODD_ENTRY.size)
            name_offset = values[0] & 0xFFFFFF
            name = self.model_names.get(name_offset)
            if name is None:
                self._warn(f"Doodad {index} name offset {name_offset} is unresolved")

            self.model.doodads.append(DoodadPlacement(
                name_offset=name_offset,
                name=name,
                flags=values[0] >> 24,
                position=values[1:4],
                rotation=values[4:8],
                scale=values[8],
                color=values[9:13]
            ))


def load_world_model(reader: ResourceReader, name: str,
                     reversed_chunks: bool = True) -> WorldModel:
    """Load a WMO root file. Group geometry is not loaded."""
    with reader.open(name) as stream:
        return WMORootParser(name, reversed_chunks).parse(stream)


def _parse_batches(data: bytes, warnings: List[str]) -> List[RenderBatch]:
    batches = []
    count = check_record_size('MOBA', data, MOBA_ENTRY.size, warnings)
    for index in range(count):
        values = MOBA_ENTRY.unpack_from(data, index * MOBA_ENTRY.size)
        material_id_large = values[5]
        index_start, index_count, vertex_start, vertex_end, flags, material_id = values[6:12]
        if flags & MOBA_FLAG_USE_LARGE_MATERIAL_ID:
            material_id = material_id_large

        batches.append(RenderBatch(
            material_id=material_id,
            index_start=index_start,
            index_count=index_count,
            vertex_start=vertex_start,
            vertex_end=vertex_end,
            flags=flags
        ))
    return batches


def _read_array(token: str, data: bytes, dtype, width: int,
                warnings: List[str]) -> np.ndarray:
    file_dtype = np.dtype(dtype).newbyteorder("<")
    itemsize = file_dtype.itemsize * width
    count = check_record_size(token, data, itemsize, warnings)
    values = np.frombuffer(data[:count * itemsize], dtype=file_dtype).astype(dtype)
    if width > 1:
        values = values.reshape(count, width)
    return values


def read_mesh_group(stream: BinaryIO, reversed_chunks: bool = True) -> MeshGroup:
    """Decode a WMO group file"""
    chunks = ChunkMap.read(stream, reversed_chunks)
    _check_version(chunks.get('MVER'))

    mogp = chunks.get('MOGP')
    if len(mogp) < MOGP_HEADER.size:
        raise TruncatedChunkError(f"MOGP header too small: {len(mogp)} bytes")
    header = MOGP_HEADER.unpack_from(mogp)

    group = MeshGroup(
        flags=header[2],
        bounding_box_min=header[3:6],
        bounding_box_max=header[6:9]
    )

    subchunks = ChunkMap.read(mogp[MOGP_HEADER.size:], reversed_chunks)
    if 'MOVI' in subchunks:
        group.indexes = _read_array('MOVI', subchunks.get('MOVI'), np.uint16, 1, group.warnings)
    if 'MOVT' in subchunks:
        group.vertices = _read_array('MOVT', subchunks.get('MOVT'), np.float32, 3, group.warnings)
    if 'MONR' in subchunks:
        group.normals = _read_array('MONR', subchunks.get('MONR'), np.float32, 3, group.warnings)
    if 'MOTV' in subchunks:
        # Later sets are for secondary texture units
        group.texcoords = _read_array('MOTV', subchunks.get('MOTV'), np.float32, 2, group.warnings)
    if 'MOBA' in subchunks:
        group.batches = _parse_batches(subchunks.get('MOBA'), group.warnings)

    return group


def load_mesh_group(reader: ResourceReader, group_info: MeshGroupInfo,
                    reversed_chunks: bool = True) -> MeshGroup:
    """Load one group of a world model. Safe to call from several threads."""
    with reader.open(group_info.resource_key) as stream:
        return read_mesh_group(stream, reversed_chunks)


def load_all_groups(reader: ResourceReader, world_model: WorldModel,
                    max_workers: Optional[int] = None,
                    reversed_chunks: bool = True) -> List[Optional[MeshGroup]]:
    """
    Load every group of a world model

    Returns a list aligned with world_model.groups. A group that fails to
    load is logged and left as None without affecting the others.
    """
    def load_one(info: MeshGroupInfo) -> Optional[MeshGroup]:
        try:
            return load_mesh_group(reader, info, reversed_chunks)
        except (OSError, ChunkParsingError) as e:
            logger.error(f"Unable to load WMO mesh group {info.resource_key}: {e}")
            return None

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        return list(executor.map(load_one, world_model.groups))
