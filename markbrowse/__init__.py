"""markbrowse package exports."""

from .access import AccessGuard
from .config import ConfigError, ServiceConfig, load_config
from .errors import (
    AccessDenied,
    AttributesUnavailable,
    DestinationExists,
    DirectoryUnreadable,
    FileSystemError,
    InvalidMove,
    MoveFailed,
    ServiceUnavailable,
    TokenCreationFailed,
    TokenResolutionFailed,
)
from .lister import filter_nodes, list_directory
from .models import (
    AccessToken,
    ChangeEvent,
    ChangeFlags,
    DirectoryNode,
    FileFilter,
    FileType,
    ResolvedLocation,
)
from .monitor import ChangeMonitor, ChangeStream
from .mover import FileMover, MoveValidator
from .service import FileSystemService

__all__ = [
    "AccessDenied",
    "AccessGuard",
    "AccessToken",
    "AttributesUnavailable",
    "ChangeEvent",
    "ChangeFlags",
    "ChangeMonitor",
    "ChangeStream",
    "ConfigError",
    "DestinationExists",
    "DirectoryNode",
    "DirectoryUnreadable",
    "FileFilter",
    "FileMover",
    "FileSystemError",
    "FileSystemService",
    "FileType",
    "InvalidMove",
    "MoveFailed",
    "MoveValidator",
    "ResolvedLocation",
    "ServiceConfig",
    "ServiceUnavailable",
    "TokenCreationFailed",
    "TokenResolutionFailed",
    "filter_nodes",
    "list_directory",
    "load_config",
]
