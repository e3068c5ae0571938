"""
Resource name resolution

Game resource names are case-insensitive and use either separator, while the
extracted files on disk keep whatever case the extractor produced. Names are
resolved one path segment at a time against a directory listing, so the same
resolver runs over the local filesystem or an in-memory listing.
"""

import io
import os
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

SEPARATORS = ('/', '\\')


class ResourceNotFoundError(FileNotFoundError):
    """Raised when a resource name has no case-insensitive match"""
    pass


def split_resource_name(name: str) -> Tuple[str, str, str]:
    """
    Split a resource name into (directory, stem, extension)

    The directory keeps its trailing separator. The extension starts at the
    first '.' of the final segment, so 'Stormwind.wmo.xml' has the extension
    '.wmo.xml'.
    """
    file_pos = 0
    for index in range(len(name) - 1, -1, -1):
        if name[index] in SEPARATORS:
            file_pos = index + 1
            break

    dot = name.find('.', file_pos)
    ext_pos = dot if dot != -1 else len(name)

    return name[:file_pos], name[file_pos:ext_pos], name[ext_pos:]


def split_segments(name: str) -> List[str]:
    """Path segments of a resource name, ignoring empty ones"""
    for sep in SEPARATORS[1:]:
        name = name.replace(sep, SEPARATORS[0])
    return [segment for segment in name.split(SEPARATORS[0]) if segment]


class DirectoryListing(ABC):
    """Filesystem capability used by the case-insensitive resolver"""

    @abstractmethod
    def list_dir(self, parts: Sequence[str]) -> List[str]:
        """Entry names of the directory at parts (exact case)"""

    @abstractmethod
    def is_dir(self, parts: Sequence[str]) -> bool:
        """Whether parts (exact case) names a directory"""

    @abstractmethod
    def open_file(self, parts: Sequence[str]) -> BinaryIO:
        """Open the file at parts (exact case) for binary reading"""


class LocalFileSystem(DirectoryListing):
    """Directory listing backed by a directory on disk"""

    def __init__(self, root):
        self.root = Path(root)

    def _path(self, parts: Sequence[str]) -> Path:
        return self.root.joinpath(*parts)

    def list_dir(self, parts: Sequence[str]) -> List[str]:
        return os.listdir(self._path(parts))

    def is_dir(self, parts: Sequence[str]) -> bool:
        return self._path(parts).is_dir()

    def open_file(self, parts: Sequence[str]) -> BinaryIO:
        return open(self._path(parts), 'rb')


class MemoryFileSystem(DirectoryListing):
    """Directory listing over an in-memory {path: bytes} mapping"""

    def __init__(self, files: Optional[Dict[str, bytes]] = None):
        self.files: Dict[Tuple[str, ...], bytes] = {}
        for name, data in (files or {}).items():
            self.add(name, data)

    def add(self, name: str, data: bytes) -> None:
        self.files[tuple(split_segments(name))] = bytes(data)

    def list_dir(self, parts: Sequence[str]) -> List[str]:
        parts = tuple(parts)
        depth = len(parts)
        entries = []
        for path in self.files:
            if len(path) > depth and path[:depth] == parts and path[depth] not in entries:
                entries.append(path[depth])
        if not entries and parts:
            raise NotADirectoryError('/'.join(parts))
        return entries

    def is_dir(self, parts: Sequence[str]) -> bool:
        parts = tuple(parts)
        return any(len(path) > len(parts) and path[:len(parts)] == parts for path in self.files)

    def open_file(self, parts: Sequence[str]) -> BinaryIO:
        try:
            return io.BytesIO(self.files[tuple(parts)])
        except KeyError:
            raise ResourceNotFoundError('/'.join(parts)) from None


class ResourceReader(ABC):
    """Opens named resources for the decoders"""

    @abstractmethod
    def exists(self, name: str) -> bool:
        pass

    @abstractmethod
    def open(self, name: str) -> BinaryIO:
        """Readable, seekable binary stream; the caller closes it"""


class CaseInsensitiveResourceReader(ResourceReader):
    """Resolves resource names segment by segment, ignoring case"""

    def __init__(self, filesystem: DirectoryListing):
        self.filesystem = filesystem

    def _find_entry(self, parts: List[str], target: str) -> str:
        try:
            entries = self.filesystem.list_dir(parts)
        except OSError as e:
            raise ResourceNotFoundError(
                f"Directory {'/'.join(parts)!r} cannot be listed: {e}") from e

        if target in entries:
            return target

        target_lower = target.lower()
        for entry in entries:
            if entry.lower() == target_lower:
                return entry

        raise ResourceNotFoundError(
            f"Directory {'/'.join(parts)!r} does not contain file {target!r}")

    def resolve(self, name: str) -> List[str]:
        """Actual path segments for name"""
        parts: List[str] = []
        for segment in split_segments(name):
            parts.append(self._find_entry(parts, segment))
        if not parts:
            raise ResourceNotFoundError(f"Empty resource name: {name!r}")
        return parts

    def exists(self, name: str) -> bool:
        try:
            parts = self.resolve(name)
        except ResourceNotFoundError:
            return False
        return not self.filesystem.is_dir(parts)

    def open(self, name: str) -> BinaryIO:
        parts = self.resolve(name)
        logger.debug(f"Opening {name} as {'/'.join(parts)}")
        return self.filesystem.open_file(parts)


class FileSystemResourceReader(CaseInsensitiveResourceReader):
    """Resource reader over extracted game files in a local directory"""

    def __init__(self, root):
        super().__init__(LocalFileSystem(root))


class MemoryResourceReader(CaseInsensitiveResourceReader):
    """Resource reader over in-memory files"""

    def __init__(self, files: Optional[Dict[str, bytes]] = None):
        super().__init__(MemoryFileSystem(files))

    def add(self, name: str, data: bytes) -> None:
        self.filesystem.add(name, data)
