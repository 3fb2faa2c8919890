"""Tests for :mod:`markbrowse.monitor`."""
from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest
from watchdog.events import DirCreatedEvent, FileClosedEvent, FileDeletedEvent, FileMovedEvent

from markbrowse.models import ChangeFlags
from markbrowse.monitor import ChangeMonitor, MonitorBackend, _adapt_watchdog


class FakeBackend(MonitorBackend):
    def __init__(self, root: Path, deliver, *, fail_on_start: bool = False) -> None:
        self.root = root
        self.deliver = deliver
        self.fail_on_start = fail_on_start
        self.started = False
        self.stopped = False

    def start(self) -> None:
        if self.fail_on_start:
            raise OSError("cannot start stream")
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    @property
    def live(self) -> bool:
        return self.started and not self.stopped


@pytest.fixture()
def monitor_factory():
    created: list[ChangeMonitor] = []

    def factory(latency: float = 0.05, **backend_kwargs: object) -> ChangeMonitor:
        backends: list[FakeBackend] = []

        def backend_factory(root: Path, deliver) -> FakeBackend:
            backend = FakeBackend(root, deliver, **backend_kwargs)
            backends.append(backend)
            return backend

        monitor = ChangeMonitor(latency, backend_factory=backend_factory)
        monitor._test_backends = backends  # type: ignore[attr-defined]
        created.append(monitor)
        return monitor

    yield factory

    for monitor in created:
        monitor.stop()


def backends_of(monitor: ChangeMonitor) -> list[FakeBackend]:
    return getattr(monitor, "_test_backends")  # type: ignore[no-any-return]


def collect(stream, count: int, *, timeout: float = 2.0):
    events = []
    deadline = time.monotonic() + timeout
    while len(events) < count and time.monotonic() < deadline:
        event = stream.poll(timeout=0.05)
        if event is not None:
            events.append(event)
    return events


def test_events_in_one_window_are_coalesced_per_path(monitor_factory, tmp_path):
    monitor = monitor_factory(latency=0.1)
    stream = monitor.start(tmp_path)
    backend = backends_of(monitor)[0]

    a = tmp_path / "a.md"
    b = tmp_path / "b.md"
    backend.deliver([(a, ChangeFlags.CREATED | ChangeFlags.IS_FILE)])
    backend.deliver([(b, ChangeFlags.CREATED | ChangeFlags.IS_FILE)])
    backend.deliver([(a, ChangeFlags.MODIFIED | ChangeFlags.IS_FILE)])

    events = collect(stream, 2)

    assert [event.path for event in events] == [a, b]
    assert events[0].is_created and events[0].is_modified and events[0].is_file
    assert events[0].event_id < events[1].event_id
    assert stream.poll(timeout=0.2) is None


def test_batches_are_published_in_order_with_increasing_ids(monitor_factory, tmp_path):
    monitor = monitor_factory(latency=0.02)
    stream = monitor.start(tmp_path)
    backend = backends_of(monitor)[0]

    paths = [tmp_path / f"file{index}.txt" for index in range(3)]
    for path in paths:
        backend.deliver([(path, ChangeFlags.CREATED)])
        time.sleep(0.06)

    events = collect(stream, 3)

    assert [event.path for event in events] == paths
    ids = [event.event_id for event in events]
    assert ids == sorted(ids) and len(set(ids)) == 3


def test_batch_waits_for_latency(monitor_factory, tmp_path):
    monitor = monitor_factory(latency=0.3)
    stream = monitor.start(tmp_path)
    backend = backends_of(monitor)[0]

    backend.deliver([(tmp_path / "late.txt", ChangeFlags.CREATED)])

    assert stream.poll(timeout=0.1) is None
    assert stream.poll(timeout=1.0) is not None


def test_cancel_before_first_event_releases_backend(monitor_factory, tmp_path):
    monitor = monitor_factory()
    stream = monitor.start(tmp_path)
    backend = backends_of(monitor)[0]
    assert monitor.active_subscriptions == 1
    assert backend.live

    stream.cancel()

    assert backend.stopped
    assert monitor.active_subscriptions == 0
    assert stream.finished
    assert list(stream) == []


def test_context_manager_cancels(monitor_factory, tmp_path):
    monitor = monitor_factory()
    with monitor.start(tmp_path) as stream:
        assert monitor.active_subscriptions == 1
    assert stream.finished
    assert backends_of(monitor)[0].stopped


def test_starting_again_tears_down_previous_subscription(monitor_factory, tmp_path):
    monitor = monitor_factory()
    first = monitor.start(tmp_path)
    second_root = tmp_path / "other"
    second_root.mkdir()
    second = monitor.start(second_root)

    old, new = backends_of(monitor)
    assert old.stopped
    assert new.live
    assert first.finished
    assert list(first) == []
    assert not second.finished
    assert monitor.active_subscriptions == 1

    # Cancelling the stale stream must not touch the live one.
    first.cancel()
    assert new.live


def test_backend_creation_failure_ends_stream_immediately(tmp_path):
    def broken_factory(root: Path, deliver):
        raise FileNotFoundError(root)

    monitor = ChangeMonitor(0.05, backend_factory=broken_factory)
    stream = monitor.start(tmp_path / "missing")

    assert stream.finished
    assert list(stream) == []
    assert monitor.active_subscriptions == 0


def test_backend_start_failure_still_releases(monitor_factory, tmp_path):
    monitor = monitor_factory(fail_on_start=True)
    stream = monitor.start(tmp_path)

    backend = backends_of(monitor)[0]
    assert backend.stopped
    assert list(stream) == []
    assert monitor.active_subscriptions == 0


def test_iteration_ends_when_cancelled_from_another_thread(monitor_factory, tmp_path):
    monitor = monitor_factory(latency=0.01)
    stream = monitor.start(tmp_path)
    backend = backends_of(monitor)[0]
    seen = []

    consumer = threading.Thread(target=lambda: seen.extend(stream))
    consumer.start()

    backend.deliver([(tmp_path / "x.txt", ChangeFlags.CREATED)])
    deadline = time.monotonic() + 2
    while not seen and time.monotonic() < deadline:
        time.sleep(0.01)

    stream.cancel()
    consumer.join(timeout=2)

    assert not consumer.is_alive()
    assert [event.path.name for event in seen] == ["x.txt"]


def test_dispatch_is_used_for_stream_cancellation(tmp_path):
    calls = []

    def dispatch(fn):
        calls.append(fn)
        return fn()

    monitor = ChangeMonitor(
        0.05,
        backend_factory=lambda root, deliver: FakeBackend(root, deliver),
        dispatch=dispatch,
    )
    stream = monitor.start(tmp_path)
    stream.cancel()

    assert len(calls) == 1
    assert monitor.active_subscriptions == 0


def test_adapt_watchdog_moves_report_both_paths():
    changes = _adapt_watchdog(FileMovedEvent("/watched/a.md", "/watched/b.md"))

    assert changes == [
        (Path("/watched/a.md"), ChangeFlags.RENAMED | ChangeFlags.IS_FILE),
        (Path("/watched/b.md"), ChangeFlags.RENAMED | ChangeFlags.IS_FILE),
    ]


def test_adapt_watchdog_flags():
    assert _adapt_watchdog(DirCreatedEvent("/watched/sub")) == [
        (Path("/watched/sub"), ChangeFlags.CREATED | ChangeFlags.IS_DIRECTORY)
    ]
    assert _adapt_watchdog(FileDeletedEvent("/watched/a.md")) == [
        (Path("/watched/a.md"), ChangeFlags.REMOVED | ChangeFlags.IS_FILE)
    ]
    assert _adapt_watchdog(FileClosedEvent("/watched/a.md")) == []


def test_default_backend_reports_real_changes(tmp_path):
    monitor = ChangeMonitor(0.1)
    stream = monitor.start(tmp_path)
    try:
        assert monitor.active_subscriptions == 1
        target = tmp_path / "notes.md"
        target.write_text("# hello", encoding="utf-8")

        deadline = time.monotonic() + 5
        seen = None
        while time.monotonic() < deadline:
            event = stream.poll(timeout=0.1)
            if event is not None and event.path.name == "notes.md":
                seen = event
                break
        assert seen is not None
        assert seen.is_created or seen.is_modified
    finally:
        stream.cancel()
    assert monitor.active_subscriptions == 0


def test_default_backend_rejects_missing_directory(tmp_path):
    monitor = ChangeMonitor(0.05)
    stream = monitor.start(tmp_path / "does-not-exist")

    assert list(stream) == []
    assert monitor.active_subscriptions == 0
