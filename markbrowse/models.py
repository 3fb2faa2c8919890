"""Value types shared across markbrowse modules."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, Flag, auto
from functools import cached_property
from pathlib import Path

_MARKDOWN_SUFFIXES = {".md", ".markdown"}
_HTML_SUFFIXES = {".html", ".htm"}
_CSV_SUFFIXES = {".csv"}


class FileType(Enum):
    """Document kinds the browser knows how to preview."""

    MARKDOWN = "markdown"
    HTML = "html"
    CSV = "csv"
    DIRECTORY = "directory"
    OTHER = "other"

    @classmethod
    def classify(cls, path: Path, *, is_directory: bool) -> "FileType":
        if is_directory:
            return cls.DIRECTORY
        suffix = path.suffix.lower()
        if suffix in _MARKDOWN_SUFFIXES:
            return cls.MARKDOWN
        if suffix in _HTML_SUFFIXES:
            return cls.HTML
        if suffix in _CSV_SUFFIXES:
            return cls.CSV
        return cls.OTHER

    @property
    def is_supported(self) -> bool:
        return self in (FileType.MARKDOWN, FileType.HTML, FileType.CSV)


class FileFilter(Enum):
    """Which files a listing should keep. Directories always pass."""

    ALL_FILES = "all"
    MARKDOWN_ONLY = "markdown"
    SUPPORTED_DOCUMENTS = "supported"


@dataclass(frozen=True)
class DirectoryNode:
    """One entry of a directory listing.

    Nodes compare and hash by path. ``modified_at`` is read from disk the
    first time it is accessed and cached on the node afterwards.
    """

    path: Path
    is_directory: bool = field(compare=False)
    name: str = field(init=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", self.path.name)

    @cached_property
    def modified_at(self) -> datetime | None:
        try:
            return datetime.fromtimestamp(os.stat(self.path).st_mtime)
        except OSError:
            return None

    @property
    def file_type(self) -> FileType:
        return FileType.classify(self.path, is_directory=self.is_directory)

    @property
    def is_supported_document(self) -> bool:
        return not self.is_directory and self.file_type.is_supported

    def matches(self, file_filter: FileFilter) -> bool:
        if self.is_directory or file_filter is FileFilter.ALL_FILES:
            return True
        if file_filter is FileFilter.MARKDOWN_ONLY:
            return self.file_type is FileType.MARKDOWN
        return self.is_supported_document


class ChangeFlags(Flag):
    """Semantic flags carried by a :class:`ChangeEvent`."""

    NONE = 0
    CREATED = auto()
    MODIFIED = auto()
    REMOVED = auto()
    RENAMED = auto()
    IS_FILE = auto()
    IS_DIRECTORY = auto()


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """Normalized filesystem change notification."""

    path: Path
    flags: ChangeFlags
    event_id: int

    @property
    def is_created(self) -> bool:
        return bool(self.flags & ChangeFlags.CREATED)

    @property
    def is_modified(self) -> bool:
        return bool(self.flags & ChangeFlags.MODIFIED)

    @property
    def is_removed(self) -> bool:
        return bool(self.flags & ChangeFlags.REMOVED)

    @property
    def is_renamed(self) -> bool:
        return bool(self.flags & ChangeFlags.RENAMED)

    @property
    def is_file(self) -> bool:
        return bool(self.flags & ChangeFlags.IS_FILE)

    @property
    def is_directory(self) -> bool:
        return bool(self.flags & ChangeFlags.IS_DIRECTORY)


@dataclass(frozen=True, slots=True)
class AccessToken:
    """Opaque, persistable handle to a user-chosen location."""

    data: bytes

    def __bytes__(self) -> bytes:
        return self.data


@dataclass(frozen=True, slots=True)
class ResolvedLocation:
    """Live location obtained from an :class:`AccessToken`."""

    path: Path
    is_stale: bool = False


def normalize_path(path: str | os.PathLike[str]) -> Path:
    """Absolute, lexically normalised form of *path* (symlinks untouched)."""

    return Path(os.path.normpath(os.path.abspath(os.fspath(path))))


@dataclass(frozen=True, slots=True)
class MoveRequest:
    """A single source/destination pair submitted for a move."""

    source: Path
    destination: Path

    @property
    def normalized_source(self) -> Path:
        return normalize_path(self.source)

    @property
    def normalized_destination(self) -> Path:
        return normalize_path(self.destination)

    @property
    def destination_parent(self) -> Path:
        return self.normalized_destination.parent


@dataclass(frozen=True, slots=True)
class FileAttributes:
    """Subset of ``stat`` results exposed to the UI layer."""

    path: Path
    size: int
    modified_at: datetime
    is_directory: bool
    mode: int


__all__ = [
    "AccessToken",
    "ChangeEvent",
    "ChangeFlags",
    "DirectoryNode",
    "FileAttributes",
    "FileFilter",
    "FileType",
    "MoveRequest",
    "ResolvedLocation",
    "normalize_path",
]
