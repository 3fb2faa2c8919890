"""Directory change monitoring with coalesced, cancellable event streams."""
from __future__ import annotations

import itertools
import logging
import os
import sys
import threading
import time
from pathlib import Path
from queue import Empty, Queue
from typing import Any, Callable, Iterator, TypeVar

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from .config import DEFAULT_MONITOR_LATENCY
from .logger import component_logger, log_event
from .models import ChangeEvent, ChangeFlags

LOGGER_NAME = "monitor"

T = TypeVar("T")

RawChange = tuple[Path, ChangeFlags]
Deliver = Callable[[list[RawChange]], None]


class MonitorBackend:
    """A native change-notification subscription for one directory tree.

    ``stop`` must release every native resource and be safe to call after a
    failed or skipped ``start``.
    """

    def start(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def stop(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError


BackendFactory = Callable[[Path, Deliver], MonitorBackend]


_WATCHDOG_FLAGS = {
    EVENT_TYPE_CREATED: ChangeFlags.CREATED,
    EVENT_TYPE_MODIFIED: ChangeFlags.MODIFIED,
    EVENT_TYPE_DELETED: ChangeFlags.REMOVED,
}


def _adapt_watchdog(event: FileSystemEvent) -> list[RawChange]:
    kind = ChangeFlags.IS_DIRECTORY if event.is_directory else ChangeFlags.IS_FILE
    source = Path(os.fsdecode(event.src_path))
    if event.event_type == EVENT_TYPE_MOVED:
        destination = Path(os.fsdecode(event.dest_path))
        return [(source, ChangeFlags.RENAMED | kind), (destination, ChangeFlags.RENAMED | kind)]
    flag = _WATCHDOG_FLAGS.get(event.event_type)
    if flag is None:
        return []
    return [(source, flag | kind)]


class _WatchdogHandler(FileSystemEventHandler):
    def __init__(self, deliver: Deliver) -> None:
        super().__init__()
        self._deliver = deliver

    def on_any_event(self, event: FileSystemEvent) -> None:
        changes = _adapt_watchdog(event)
        if changes:
            self._deliver(changes)


class _WatchdogBackend(MonitorBackend):
    """Portable backend built on :mod:`watchdog` observers."""

    def __init__(self, root: Path, deliver: Deliver) -> None:
        if not root.is_dir():
            raise NotADirectoryError(f"Not a directory: {root}")
        self._observer = Observer()
        self._observer.schedule(_WatchdogHandler(deliver), str(root), recursive=True)

    def start(self) -> None:
        self._observer.start()

    def stop(self) -> None:
        self._observer.unschedule_all()
        self._observer.stop()
        if self._observer.is_alive():
            self._observer.join()


def _adapt_fsevents(event: Any) -> list[RawChange]:  # pragma: no cover - macOS only
    import fsevents

    mask = event.mask
    flags = ChangeFlags.NONE
    if mask & fsevents.IN_CREATE:
        flags |= ChangeFlags.CREATED
    if mask & (fsevents.IN_MODIFY | fsevents.IN_ATTRIB):
        flags |= ChangeFlags.MODIFIED
    if mask & fsevents.IN_DELETE:
        flags |= ChangeFlags.REMOVED
    if mask & (fsevents.IN_MOVED_FROM | fsevents.IN_MOVED_TO):
        flags |= ChangeFlags.RENAMED
    if not flags:
        return []
    path = Path(event.name)
    if path.is_dir():
        flags |= ChangeFlags.IS_DIRECTORY
    elif path.exists():
        flags |= ChangeFlags.IS_FILE
    return [(path, flags)]


class _FSEventsBackend(MonitorBackend):  # pragma: no cover - macOS only
    """macOS FSEvents backend."""

    def __init__(self, root: Path, deliver: Deliver) -> None:
        from fsevents import Observer as FSObserver, Stream

        if not root.is_dir():
            raise NotADirectoryError(f"Not a directory: {root}")
        self._deliver = deliver
        self._observer = FSObserver()
        self._stream = Stream(self._handle_event, str(root), file_events=True)

    def start(self) -> None:
        self._observer.schedule(self._stream)
        self._observer.start()

    def stop(self) -> None:
        try:
            self._observer.unschedule(self._stream)
        finally:
            self._observer.stop()
            if self._observer.is_alive():
                self._observer.join()

    def _handle_event(self, event: Any) -> None:
        changes = _adapt_fsevents(event)
        if changes:
            self._deliver(changes)


def default_backend_factory(root: Path, deliver: Deliver) -> MonitorBackend:
    if sys.platform == "darwin":
        return _FSEventsBackend(root, deliver)
    return _WatchdogBackend(root, deliver)


_Stop = object()


class ChangeStream:
    """Single-consumer iterator of :class:`ChangeEvent` values.

    Iteration blocks until events arrive and ends only after the stream is
    cancelled. Cancelling tears the native subscription down before it
    returns.
    """

    def __init__(self, root: Path, cancel: Callable[["ChangeStream"], None]) -> None:
        self.root = root
        self._cancel = cancel
        self._queue: Queue[ChangeEvent | object] = Queue()
        self._finished = threading.Event()
        self._exhausted = False

    def __iter__(self) -> Iterator[ChangeEvent]:
        return self

    def __next__(self) -> ChangeEvent:
        if self._exhausted:
            raise StopIteration
        item = self._queue.get()
        if item is _Stop:
            self._exhausted = True
            raise StopIteration
        return item  # type: ignore[return-value]

    def poll(self, timeout: float | None = None) -> ChangeEvent | None:
        """Return the next event, or ``None`` on timeout or after the end."""

        if self._exhausted:
            return None
        try:
            item = self._queue.get(timeout=timeout)
        except Empty:
            return None
        if item is _Stop:
            self._exhausted = True
            return None
        return item  # type: ignore[return-value]

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    def cancel(self) -> None:
        if not self._finished.is_set():
            self._cancel(self)

    close = cancel

    def __enter__(self) -> "ChangeStream":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cancel()

    def _publish(self, events: list[ChangeEvent]) -> None:
        if self._finished.is_set():
            return
        for event in events:
            self._queue.put(event)

    def _finish(self) -> None:
        if not self._finished.is_set():
            self._finished.set()
            self._queue.put(_Stop)


class _Subscription:
    """Native backend plus the worker that batches its raw events."""

    def __init__(
        self,
        root: Path,
        stream: ChangeStream,
        *,
        latency: float,
        next_id: Callable[[], int],
    ) -> None:
        self.root = root
        self.stream = stream
        self.latency = latency
        self.backend: MonitorBackend | None = None
        self._next_id = next_id
        self._inbox: Queue[list[RawChange] | object] = Queue()
        self._worker = threading.Thread(target=self._run, name="ChangeMonitor", daemon=True)

    def deliver(self, changes: list[RawChange]) -> None:
        self._inbox.put(changes)

    def start(self, backend: MonitorBackend) -> None:
        self.backend = backend
        self._worker.start()
        backend.start()

    def close(self) -> None:
        try:
            if self.backend is not None:
                self.backend.stop()
        finally:
            self.backend = None
            self._inbox.put(_Stop)
            if self._worker.is_alive():
                self._worker.join()
            self.stream._finish()

    def _run(self) -> None:
        pending: dict[Path, ChangeFlags] = {}
        batch_started: float | None = None

        while True:
            timeout = None
            if batch_started is not None:
                timeout = max(batch_started + self.latency - time.monotonic(), 0.0)
            try:
                item = self._inbox.get(timeout=timeout)
            except Empty:
                item = None

            if item is _Stop:
                return
            if item is not None:
                for path, flags in item:  # type: ignore[union-attr]
                    pending[path] = pending.get(path, ChangeFlags.NONE) | flags
                if batch_started is None:
                    batch_started = time.monotonic()

            if pending and batch_started is not None and time.monotonic() - batch_started >= self.latency:
                self.stream._publish(
                    [ChangeEvent(path=path, flags=flags, event_id=self._next_id()) for path, flags in pending.items()]
                )
                pending = {}
                batch_started = None


class ChangeMonitor:
    """Owns at most one native subscription and the stream fed by it."""

    def __init__(
        self,
        latency: float = DEFAULT_MONITOR_LATENCY,
        *,
        backend_factory: BackendFactory | None = None,
        dispatch: Callable[[Callable[[], T]], T] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.latency = latency
        self._backend_factory = backend_factory or default_backend_factory
        self._dispatch = dispatch or (lambda fn: fn())
        self.logger = component_logger(LOGGER_NAME, logger)
        self._lock = threading.RLock()
        self._subscription: _Subscription | None = None
        self._ids = itertools.count(1)

    @property
    def active_subscriptions(self) -> int:
        with self._lock:
            return 0 if self._subscription is None else 1

    def start(self, root: str | Path) -> ChangeStream:
        """Subscribe to changes under *root*, replacing any active subscription."""

        path = Path(root).expanduser().absolute()
        with self._lock:
            self._stop_locked()
            stream = ChangeStream(path, self._cancel_stream)
            subscription = _Subscription(path, stream, latency=self.latency, next_id=lambda: next(self._ids))
            try:
                backend = self._backend_factory(path, subscription.deliver)
                subscription.start(backend)
            except Exception as exc:
                log_event(
                    self.logger,
                    level=logging.WARNING,
                    action="monitor.backend_error",
                    message=f"Cannot monitor {path}",
                    extra={"path": str(path), "error": repr(exc)},
                )
                subscription.close()
                return stream

            self._subscription = subscription
            log_event(
                self.logger,
                level=logging.INFO,
                action="monitor.start",
                message=f"Monitoring {path}",
                extra={"path": str(path), "latency": self.latency},
            )
            return stream

    def stop(self) -> None:
        with self._lock:
            self._stop_locked()

    def _stop_locked(self) -> None:
        subscription = self._subscription
        if subscription is None:
            return
        self._subscription = None
        subscription.close()
        log_event(
            self.logger,
            level=logging.INFO,
            action="monitor.stop",
            message=f"Stopped monitoring {subscription.root}",
            extra={"path": str(subscription.root)},
        )

    def _cancel_stream(self, stream: ChangeStream) -> None:
        def cancel() -> None:
            with self._lock:
                if self._subscription is not None and self._subscription.stream is stream:
                    self._stop_locked()
                else:
                    stream._finish()

        self._dispatch(cancel)


__all__ = [
    "BackendFactory",
    "ChangeMonitor",
    "ChangeStream",
    "MonitorBackend",
    "default_backend_factory",
]
