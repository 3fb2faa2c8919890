"""Directory enumeration into :class:`DirectoryNode` listings."""
from __future__ import annotations

import logging
import os
import stat
import unicodedata
from datetime import datetime
from pathlib import Path
from typing import Iterable

from .errors import AttributesUnavailable, DirectoryUnreadable
from .logger import component_logger, log_event
from .models import DirectoryNode, FileAttributes, FileFilter

LOGGER_NAME = "lister"


def _name_key(name: str) -> tuple[str, str, str]:
    # Accents sort with their base letter; the raw name keeps the order total.
    folded = name.casefold()
    base = "".join(ch for ch in unicodedata.normalize("NFKD", folded) if not unicodedata.combining(ch))
    return base, folded, name


def list_directory(
    location: str | Path,
    include_hidden: bool,
    *,
    directories_first: bool = False,
    logger: logging.Logger | None = None,
) -> list[DirectoryNode]:
    """Return the immediate children of *location* sorted by name.

    Entries whose name starts with ``.`` are dropped unless *include_hidden*
    is set. Raises :class:`DirectoryUnreadable` when the directory cannot be
    enumerated.
    """

    logger = component_logger(LOGGER_NAME, logger)
    directory = Path(location).expanduser().absolute()

    nodes: list[DirectoryNode] = []
    try:
        with os.scandir(directory) as entries:
            for entry in entries:
                if not include_hidden and entry.name.startswith("."):
                    continue
                try:
                    is_directory = entry.is_dir()
                except OSError:
                    is_directory = False
                nodes.append(DirectoryNode(path=directory / entry.name, is_directory=is_directory))
    except OSError as exc:
        log_event(
            logger,
            level=logging.WARNING,
            action="list.unreadable",
            message=f"Cannot enumerate {directory}",
            extra={"path": str(directory), "error": repr(exc)},
        )
        raise DirectoryUnreadable(directory, exc.strerror or str(exc)) from exc

    if directories_first:
        nodes.sort(key=lambda node: (not node.is_directory, _name_key(node.name)))
    else:
        nodes.sort(key=lambda node: _name_key(node.name))

    log_event(
        logger,
        level=logging.DEBUG,
        action="list.done",
        message=f"Listed {len(nodes)} entries",
        extra={"path": str(directory), "include_hidden": include_hidden},
    )
    return nodes


def filter_nodes(nodes: Iterable[DirectoryNode], file_filter: FileFilter) -> list[DirectoryNode]:
    """Keep directories and the files accepted by *file_filter*."""

    return [node for node in nodes if node.matches(file_filter)]


def is_accessible(location: str | Path) -> bool:
    return os.access(Path(location).expanduser(), os.R_OK)


def file_attributes(location: str | Path) -> FileAttributes:
    path = Path(location).expanduser().absolute()
    try:
        stat_result = path.stat()
    except OSError as exc:
        raise AttributesUnavailable(path, exc.strerror or str(exc)) from exc
    return FileAttributes(
        path=path,
        size=stat_result.st_size,
        modified_at=datetime.fromtimestamp(stat_result.st_mtime),
        is_directory=stat.S_ISDIR(stat_result.st_mode),
        mode=stat.S_IMODE(stat_result.st_mode),
    )


__all__ = ["file_attributes", "filter_nodes", "is_accessible", "list_directory"]
