"""Guarded move and rename of files and directories."""
from __future__ import annotations

import errno
import logging
import os
import shutil
import time
from pathlib import Path

from .access import AccessGuard
from .errors import AccessDenied, DestinationExists, InvalidMove, MoveFailed
from .logger import component_logger, log_event
from .models import MoveRequest

LOGGER_NAME = "mover"

_EXISTS_ERRNOS = {errno.EEXIST, errno.ENOTEMPTY}
_DENIED_ERRNOS = {errno.EACCES, errno.EPERM}
_NO_LINK_ERRNOS = {errno.EPERM, errno.ENOTSUP, errno.EOPNOTSUPP, errno.EMLINK, errno.ENOSYS}


def is_nested_or_same(child: Path, parent: Path) -> bool:
    """True when normalised *child* equals *parent* or lies beneath it."""

    return child == parent or str(child).startswith(str(parent).rstrip(os.sep) + os.sep)


class MoveValidator:
    """Side-effect free legality checks for a move."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = component_logger(LOGGER_NAME, logger)

    def check(self, source: str | Path, destination: str | Path) -> str | None:
        """Return why moving *source* to *destination* is illegal, or ``None``."""

        request = MoveRequest(Path(source), Path(destination))
        reason = self._first_failure(request)
        if reason is not None:
            log_event(
                self.logger,
                level=logging.DEBUG,
                action="move.check_failed",
                message=reason,
                extra={"source": str(request.source), "destination": str(request.destination)},
            )
        return reason

    def can_move(self, source: str | Path, destination: str | Path) -> bool:
        return self.check(source, destination) is None

    @staticmethod
    def _first_failure(request: MoveRequest) -> str | None:
        source = request.normalized_source
        destination = request.normalized_destination

        if source == destination:
            return "source and destination are the same"
        if is_nested_or_same(destination, source):
            return "destination is inside the source"
        if not os.path.lexists(source):
            return "source does not exist"
        if os.path.lexists(destination):
            return "destination already exists"
        if not os.access(source, os.R_OK):
            return "source is not readable"
        if not os.access(request.destination_parent, os.W_OK):
            return "destination directory is not writable"
        return None


class FileMover:
    """Validate, then move an entry while holding scoped access."""

    def __init__(
        self,
        guard: AccessGuard,
        *,
        validator: MoveValidator | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.guard = guard
        self.logger = component_logger(LOGGER_NAME, logger)
        self.validator = validator or MoveValidator(self.logger)

    def move(self, source: str | Path, destination: str | Path) -> Path:
        """Move *source* to *destination* and return the new location."""

        request = MoveRequest(Path(source), Path(destination))
        src = request.normalized_source
        dst = request.normalized_destination

        if os.path.lexists(dst):
            raise DestinationExists(dst)
        reason = self.validator.check(src, dst)
        if reason is not None:
            raise InvalidMove(src, dst, reason)

        started = time.perf_counter()
        with self.guard.access(src), self.guard.access(request.destination_parent):
            self._rename(src, dst)

        log_event(
            self.logger,
            level=logging.INFO,
            action="move.rename",
            message=f"Moved {src} -> {dst}",
            duration_ms=round((time.perf_counter() - started) * 1000, 3),
            extra={"source": str(src), "destination": str(dst)},
        )
        return dst

    def _rename(self, src: Path, dst: Path) -> None:
        try:
            try:
                if os.path.isdir(src) and not os.path.islink(src):
                    # rename(2) replaces an empty directory; check as late as possible.
                    if os.path.lexists(dst):
                        raise FileExistsError(errno.EEXIST, os.strerror(errno.EEXIST), str(dst))
                    os.rename(src, dst)
                else:
                    self._link_then_unlink(src, dst)
            except OSError as exc:
                if exc.errno != errno.EXDEV:
                    raise
                # Cross-volume: copy then delete.
                if os.path.lexists(dst):
                    raise FileExistsError(errno.EEXIST, os.strerror(errno.EEXIST), str(dst)) from exc
                shutil.move(str(src), str(dst))
        except OSError as exc:
            log_event(
                self.logger,
                level=logging.ERROR,
                action="move.error",
                message=f"Error moving {src} to {dst}: {exc}",
                extra={"source": str(src), "destination": str(dst), "errno": exc.errno},
            )
            if isinstance(exc, FileExistsError) or exc.errno in _EXISTS_ERRNOS:
                raise DestinationExists(dst) from exc
            if isinstance(exc, PermissionError) or exc.errno in _DENIED_ERRNOS:
                raise AccessDenied(dst, exc.strerror) from exc
            raise MoveFailed(src, dst, exc.strerror or str(exc)) from exc

    @staticmethod
    def _link_then_unlink(src: Path, dst: Path) -> None:
        """Move a non-directory without ever replacing an existing *dst*.

        link(2) fails with EEXIST instead of overwriting. Filesystems without
        hard links fall back to a re-checked rename.
        """

        try:
            os.link(src, dst, follow_symlinks=False)
        except OSError as exc:
            if exc.errno not in _NO_LINK_ERRNOS:
                raise
            if os.path.lexists(dst):
                raise FileExistsError(errno.EEXIST, os.strerror(errno.EEXIST), str(dst)) from exc
            os.rename(src, dst)
            return
        try:
            os.unlink(src)
        except OSError:
            os.unlink(dst)
            raise


__all__ = ["FileMover", "MoveValidator", "is_nested_or_same"]
