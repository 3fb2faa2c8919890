"""Typed failures raised by the file-system core.

Every error keeps the affected path(s) as attributes so the UI layer can
phrase its own message, and chains the underlying ``OSError`` through
``__cause__`` when there is one.
"""
from __future__ import annotations

from pathlib import Path


class FileSystemError(Exception):
    """Base class for all markbrowse failures."""


class DirectoryUnreadable(FileSystemError):
    def __init__(self, path: Path, reason: str | None = None) -> None:
        self.path = path
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"Failed to load directory at {path}{detail}")


class AttributesUnavailable(FileSystemError):
    def __init__(self, path: Path, reason: str | None = None) -> None:
        self.path = path
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"Failed to read attributes of {path}{detail}")


class TokenCreationFailed(FileSystemError):
    def __init__(self, path: Path, reason: str | None = None) -> None:
        self.path = path
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"Failed to create access token for {path}{detail}")


class TokenResolutionFailed(FileSystemError):
    def __init__(self, reason: str, path: Path | None = None) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to resolve access token: {reason}")


class AccessDenied(FileSystemError):
    def __init__(self, path: Path, reason: str | None = None) -> None:
        self.path = path
        self.reason = reason
        detail = f" ({reason})" if reason else ""
        super().__init__(f"Access denied to {path}{detail}")


class InvalidMove(FileSystemError):
    def __init__(self, source: Path, destination: Path, reason: str | None = None) -> None:
        self.source = source
        self.destination = destination
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"Cannot move {source.name} to {destination}{detail}")


class DestinationExists(FileSystemError):
    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"A file already exists at {path}")


class MoveFailed(FileSystemError):
    def __init__(self, source: Path, destination: Path, reason: str | None = None) -> None:
        self.source = source
        self.destination = destination
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"Failed to move {source.name} to {destination}{detail}")


class ServiceUnavailable(FileSystemError):
    def __init__(self) -> None:
        super().__init__("File system service is unavailable")


__all__ = [
    "AccessDenied",
    "AttributesUnavailable",
    "DestinationExists",
    "DirectoryUnreadable",
    "FileSystemError",
    "InvalidMove",
    "MoveFailed",
    "ServiceUnavailable",
    "TokenCreationFailed",
    "TokenResolutionFailed",
]
