"""
File type detection for game asset files
"""

import re
from enum import Enum, auto

from .base.resource_reader import split_resource_name

GROUP_STEM = re.compile(r'_\d{3}$')
SPLIT_STEM = re.compile(r'_(tex|obj|lod)\d$', re.IGNORECASE)


class FileType(Enum):
    """Supported file types"""
    BLP = auto()
    ADT = auto()
    ADT_SPLIT = auto()
    WMO = auto()
    WMO_GROUP = auto()


def detect_file_type(name: str) -> FileType:
    """
    Detect file type from a resource name's extension

    Split terrain files ('_tex0', '_obj0', '_lod0') and WMO group files
    ('_NNN') share their root's extension and are told apart by the stem.

    Raises:
        ValueError: For unsupported extensions
    """
    _, stem, ext = split_resource_name(name)
    ext = ext.lower()
    if ext == '.blp':
        return FileType.BLP
    elif ext == '.adt':
        return FileType.ADT_SPLIT if SPLIT_STEM.search(stem) else FileType.ADT
    elif ext == '.wmo':
        return FileType.WMO_GROUP if GROUP_STEM.search(stem) else FileType.WMO
    else:
        raise ValueError(f"Unsupported file extension: {ext or '(none)'}")
