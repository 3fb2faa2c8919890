"""Facade that serialises every file-system operation on one worker."""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, TypeVar

from . import lister
from .access import AccessGuard
from .config import ServiceConfig
from .errors import ServiceUnavailable
from .logger import component_logger, configure_logging, log_event
from .models import AccessToken, DirectoryNode, FileAttributes, ResolvedLocation
from .monitor import BackendFactory, ChangeMonitor, ChangeStream
from .mover import FileMover, MoveValidator

LOGGER_NAME = "service"

T = TypeVar("T")


class FileSystemService:
    """Entry point used by the UI layer.

    Listing, monitor setup and teardown, token work and moves all run on a
    single background thread, so they never interleave. Methods return
    :class:`~concurrent.futures.Future` objects; callers block only when they
    ask for the result.
    """

    def __init__(
        self,
        config: ServiceConfig | None = None,
        *,
        guard: AccessGuard | None = None,
        backend_factory: BackendFactory | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config or ServiceConfig()
        if logger is None and self.config.log_path is not None:
            configure_logging(self.config.log_path, level=self.config.logging_level)
        self.logger = component_logger(LOGGER_NAME, logger)

        self._worker_ident: int | None = None
        self._executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="markbrowse-fs",
            initializer=self._remember_worker,
        )
        self._closed = False
        self._close_lock = threading.Lock()

        self.guard = guard or AccessGuard(max_scoped_accesses=self.config.max_scoped_accesses)
        self.validator = MoveValidator()
        self.mover = FileMover(self.guard, validator=self.validator)
        self.change_monitor = ChangeMonitor(
            self.config.monitor_latency,
            backend_factory=backend_factory,
            dispatch=self._run_serialized,
        )

    # -- plumbing ---------------------------------------------------------

    def _remember_worker(self) -> None:
        self._worker_ident = threading.get_ident()

    def _submit(self, fn: Callable[..., T], *args: object) -> Future[T]:
        if self._closed:
            raise ServiceUnavailable()
        try:
            return self._executor.submit(fn, *args)
        except RuntimeError as exc:
            raise ServiceUnavailable() from exc

    def _run_serialized(self, fn: Callable[[], T]) -> T:
        if threading.get_ident() == self._worker_ident or self._closed:
            return fn()
        try:
            future = self._submit(fn)
        except ServiceUnavailable:
            # Executor already shut down mid-close; run inline.
            return fn()
        return future.result()

    # -- operations -------------------------------------------------------

    def list_directory(
        self,
        location: str | Path,
        include_hidden: bool | None = None,
    ) -> Future[list[DirectoryNode]]:
        if include_hidden is None:
            include_hidden = self.config.show_hidden_files
        return self._submit(
            lambda: lister.list_directory(
                location,
                include_hidden,
                directories_first=self.config.directories_first,
            )
        )

    def monitor(self, location: str | Path) -> ChangeStream:
        """Start monitoring *location*; any previous stream is ended first."""

        return self._submit(self.change_monitor.start, location).result()

    def stop_monitoring(self) -> None:
        self._run_serialized(self.change_monitor.stop)

    def create_token(self, location: str | Path) -> Future[AccessToken]:
        return self._submit(self.guard.create_token, location)

    def resolve_token(self, token: AccessToken | bytes) -> Future[ResolvedLocation]:
        return self._submit(self.guard.resolve_token, token)

    def can_move(self, source: str | Path, destination: str | Path) -> bool:
        return self.validator.can_move(source, destination)

    def move(self, source: str | Path, destination: str | Path) -> Future[Path]:
        return self._submit(self.mover.move, source, destination)

    def is_accessible(self, location: str | Path) -> Future[bool]:
        return self._submit(lister.is_accessible, location)

    def file_attributes(self, location: str | Path) -> Future[FileAttributes]:
        return self._submit(lister.file_attributes, location)

    # -- lifecycle --------------------------------------------------------

    def close(self) -> None:
        with self._close_lock:
            if self._closed:
                return
            try:
                self._run_serialized(self.change_monitor.stop)
            finally:
                self._closed = True
                self._executor.shutdown(wait=True)
        log_event(
            self.logger,
            level=logging.INFO,
            action="service.closed",
            message="File system service closed",
        )

    def __enter__(self) -> "FileSystemService":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = ["FileSystemService"]
