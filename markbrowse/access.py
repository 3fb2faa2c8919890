"""Persistent access tokens and bracketed scoped access.

A token records where a user-chosen location lived and which file it was
(device and inode), so a later resolution can tell a renamed target
(stale token) from a vanished one. Resolving a token registers the
location as a *scoped root*; touching anything beneath a scoped root then
requires a started access, which must be stopped again. :meth:`AccessGuard.access`
is the only bracket the rest of the package uses.
"""
from __future__ import annotations

import json
import logging
import os
import threading
from collections import Counter
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from .config import DEFAULT_MAX_SCOPED_ACCESSES
from .errors import AccessDenied, TokenCreationFailed, TokenResolutionFailed
from .logger import component_logger, log_event
from .models import AccessToken, ResolvedLocation, normalize_path

LOGGER_NAME = "access"

_TOKEN_MAGIC = b"MBTK1:"


def _is_within(path: Path, root: Path) -> bool:
    return path == root or root in path.parents


class AccessGuard:
    """Creates and resolves tokens and keeps the scoped-access ledger."""

    def __init__(
        self,
        *,
        max_scoped_accesses: int = DEFAULT_MAX_SCOPED_ACCESSES,
        logger: logging.Logger | None = None,
    ) -> None:
        self.max_scoped_accesses = max_scoped_accesses
        self.logger = component_logger(LOGGER_NAME, logger)
        self._lock = threading.Lock()
        self._scoped_roots: set[Path] = set()
        self._active: Counter[Path] = Counter()
        self.started_count = 0
        self.stopped_count = 0

    # -- tokens -----------------------------------------------------------

    def create_token(self, location: str | Path) -> AccessToken:
        """Create a read-only token for *location*."""

        path = normalize_path(location)
        try:
            stat_result = os.stat(path)
        except OSError as exc:
            raise TokenCreationFailed(path, exc.strerror or str(exc)) from exc
        if not os.access(path, os.R_OK):
            raise TokenCreationFailed(path, "location is not readable")

        payload = {
            "path": str(path),
            "dev": stat_result.st_dev,
            "ino": stat_result.st_ino,
            "scope": "read",
        }
        token = AccessToken(_TOKEN_MAGIC + json.dumps(payload, sort_keys=True).encode("utf-8"))
        log_event(
            self.logger,
            level=logging.INFO,
            action="access.token_created",
            message=f"Created access token for {path}",
            extra={"path": str(path)},
        )
        return token

    def resolve_token(self, token: AccessToken | bytes) -> ResolvedLocation:
        """Turn *token* back into a live location.

        Resolution does not grant access; callers bracket their work with
        :meth:`access`.
        """

        payload = _decode_token(bytes(token))
        recorded = Path(payload["path"])
        identity = (payload["dev"], payload["ino"])

        if _identity(recorded) == identity:
            resolved = ResolvedLocation(recorded, is_stale=False)
        else:
            moved_to = _find_by_identity(recorded.parent, identity)
            if moved_to is None:
                raise TokenResolutionFailed("location no longer exists", path=recorded)
            resolved = ResolvedLocation(moved_to, is_stale=True)
            log_event(
                self.logger,
                level=logging.WARNING,
                action="access.token_stale",
                message="Access token is stale and should be recreated",
                extra={"recorded": str(recorded), "path": str(moved_to)},
            )

        with self._lock:
            self._scoped_roots.add(resolved.path)
        return resolved

    # -- scoped access ----------------------------------------------------

    def is_scoped(self, location: str | Path) -> bool:
        path = normalize_path(location)
        with self._lock:
            return any(_is_within(path, root) for root in self._scoped_roots)

    @property
    def active_accesses(self) -> int:
        with self._lock:
            return sum(self._active.values())

    def start_access(self, location: str | Path) -> bool:
        """Begin scoped access to *location*.

        Returns ``False`` when the location lies outside every scoped root,
        in which case nothing was acquired and :meth:`stop_access` must not
        be called. Raises :class:`AccessDenied` when access is refused.
        """

        path = normalize_path(location)
        with self._lock:
            if not any(_is_within(path, root) for root in self._scoped_roots):
                return False
            total = sum(self._active.values())
            if total >= self.max_scoped_accesses:
                log_event(
                    self.logger,
                    level=logging.ERROR,
                    action="access.limit_reached",
                    message="Scoped access limit reached",
                    extra={"path": str(path), "limit": self.max_scoped_accesses},
                )
                raise AccessDenied(path, "scoped access limit reached")
            if os.path.lexists(path) and not os.access(path, os.R_OK):
                raise AccessDenied(path, "not readable")
            self._active[path] += 1
            self.started_count += 1

        log_event(
            self.logger,
            level=logging.DEBUG,
            action="access.start",
            message=f"Started scoped access to {path}",
            extra={"path": str(path)},
        )
        return True

    def stop_access(self, location: str | Path) -> None:
        path = normalize_path(location)
        with self._lock:
            if self._active.get(path, 0) <= 0:
                log_event(
                    self.logger,
                    level=logging.WARNING,
                    action="access.unbalanced_stop",
                    message=f"Stop without matching start for {path}",
                    extra={"path": str(path)},
                )
                return
            self._active[path] -= 1
            if not self._active[path]:
                del self._active[path]
            self.stopped_count += 1

        log_event(
            self.logger,
            level=logging.DEBUG,
            action="access.stop",
            message=f"Stopped scoped access to {path}",
            extra={"path": str(path)},
        )

    @contextmanager
    def access(self, location: str | Path) -> Iterator[bool]:
        """Hold scoped access to *location* for the duration of the block."""

        started = self.start_access(location)
        try:
            yield started
        finally:
            if started:
                self.stop_access(location)


def _decode_token(data: bytes) -> dict[str, Any]:
    if not data.startswith(_TOKEN_MAGIC):
        raise TokenResolutionFailed("unrecognised token format")
    try:
        payload = json.loads(data[len(_TOKEN_MAGIC):].decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise TokenResolutionFailed("token payload is corrupt") from exc

    if (
        not isinstance(payload, dict)
        or not isinstance(payload.get("path"), str)
        or not isinstance(payload.get("dev"), int)
        or not isinstance(payload.get("ino"), int)
    ):
        raise TokenResolutionFailed("token payload is incomplete")
    return payload


def _identity(path: Path) -> tuple[int, int] | None:
    try:
        stat_result = os.stat(path)
    except OSError:
        return None
    return stat_result.st_dev, stat_result.st_ino


def _find_by_identity(directory: Path, identity: tuple[int, int]) -> Path | None:
    try:
        with os.scandir(directory) as entries:
            for entry in entries:
                try:
                    stat_result = entry.stat()
                except OSError:
                    continue
                if (stat_result.st_dev, stat_result.st_ino) == identity:
                    return Path(entry.path)
    except OSError:
        return None
    return None


__all__ = ["AccessGuard"]
