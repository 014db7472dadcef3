"""Scan scheduling and filesystem event handling."""

from __future__ import annotations

import asyncio
from pathlib import Path

from watchdog.events import DirModifiedEvent, FileClosedNoWriteEvent, FileCreatedEvent

from vetro.services.library import ScanReport
from vetro.services.watcher import LibraryWatcher, ScanScheduler, _StorageEventHandler


def test_requests_during_a_pass_coalesce_into_one_follow_up() -> None:
    calls = 0

    async def runner() -> ScanScheduler:
        gate = asyncio.Event()

        async def scan() -> ScanReport:
            nonlocal calls
            calls += 1
            await gate.wait()
            return ScanReport()

        scheduler = ScanScheduler(scan)
        scheduler.request()
        await asyncio.sleep(0)
        assert scheduler.running
        for _ in range(5):
            scheduler.request()
        gate.set()
        await scheduler.wait_idle()
        return scheduler

    scheduler = asyncio.run(runner())

    assert calls == 2
    assert scheduler.completed_passes == 2
    assert not scheduler.running


def test_failed_pass_does_not_stop_the_scheduler() -> None:
    outcomes = iter([RuntimeError("disk vanished"), None])

    async def runner() -> int:
        async def scan() -> ScanReport:
            outcome = next(outcomes)
            if outcome is not None:
                raise outcome
            return ScanReport()

        scheduler = ScanScheduler(scan)
        scheduler.request()
        await scheduler.wait_idle()
        scheduler.request()
        await scheduler.wait_idle()
        return scheduler.completed_passes

    assert asyncio.run(runner()) == 2


def test_stop_cancels_running_pass() -> None:
    async def runner() -> ScanScheduler:
        async def scan() -> ScanReport:
            await asyncio.sleep(60)
            return ScanReport()

        scheduler = ScanScheduler(scan)
        scheduler.request()
        await asyncio.sleep(0)
        await scheduler.stop()
        return scheduler

    scheduler = asyncio.run(runner())

    assert not scheduler.running
    assert scheduler.completed_passes == 0


class _RecordingReconciler:
    def __init__(self, root: Path) -> None:
        self.storage_root = root
        self.scans = 0

    async def scan(self, *, enrich: bool = False) -> ScanReport:
        self.scans += 1
        return ScanReport()


def test_event_bursts_are_debounced(tmp_path: Path) -> None:
    reconciler = _RecordingReconciler(tmp_path)

    async def runner() -> None:
        watcher = LibraryWatcher(reconciler, debounce_seconds=0.2)  # type: ignore[arg-type]
        for _ in range(10):
            watcher.notify()
            await asyncio.sleep(0.01)
        assert reconciler.scans == 0
        await asyncio.sleep(0.4)
        await watcher.scheduler.wait_idle()
        await watcher.stop()

    asyncio.run(runner())

    assert reconciler.scans == 1


def test_event_handler_ignores_noise() -> None:
    notified: list[int] = []

    async def runner() -> None:
        loop = asyncio.get_running_loop()
        handler = _StorageEventHandler(loop, lambda: notified.append(1))
        handler.on_any_event(FileCreatedEvent("/films/.DS_Store"))
        handler.on_any_event(FileClosedNoWriteEvent("/films/Heat.mkv"))
        handler.on_any_event(FileCreatedEvent("/films/Heat.1995.mkv"))
        handler.on_any_event(DirModifiedEvent("/films/heat"))
        await asyncio.sleep(0)

    asyncio.run(runner())

    assert len(notified) == 2
