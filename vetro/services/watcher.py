"""Debounced filesystem watching and single-slot scan scheduling."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Awaitable, Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .library import LibraryReconciler, ScanReport

logger = logging.getLogger(__name__)


class ScanScheduler:
    """Runs at most one reconciliation at a time.

    A request arriving while a pass is in flight does not start a second pass;
    it marks the current one as dirty so exactly one follow-up pass runs after
    it finishes.
    """

    def __init__(self, runner: Callable[[], Awaitable[ScanReport]]) -> None:
        self._runner = runner
        self._task: asyncio.Task[None] | None = None
        self._rerun = False
        self.completed_passes = 0

    @classmethod
    def for_reconciler(
        cls, reconciler: LibraryReconciler, *, enrich: bool = False
    ) -> "ScanScheduler":
        return cls(lambda: reconciler.scan(enrich=enrich))

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def request(self) -> None:
        """Ask for a pass; coalesced with any pass already running."""

        if self.running:
            self._rerun = True
            return
        self._task = asyncio.create_task(self._drain())

    async def wait_idle(self) -> None:
        while self._task is not None and not self._task.done():
            await asyncio.shield(self._task)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        self._rerun = False

    async def _drain(self) -> None:
        while True:
            self._rerun = False
            try:
                await self._runner()
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Library scan failed: %s", exc)
            self.completed_passes += 1
            if not self._rerun:
                return


class _StorageEventHandler(FileSystemEventHandler):
    """Forwards watchdog events from the observer thread into the event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop, notify: Callable[[], None]) -> None:
        self._loop = loop
        self._notify = notify

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type in {"opened", "closed_no_write"}:
            return
        path = str(getattr(event, "src_path", ""))
        if path.rsplit("/", 1)[-1].startswith("."):
            return
        self._loop.call_soon_threadsafe(self._notify)


class LibraryWatcher:
    """Watches the storage root and schedules debounced scans."""

    def __init__(
        self,
        reconciler: LibraryReconciler,
        *,
        debounce_seconds: float = 5.0,
        initial_delay_seconds: float = 2.0,
        enrich: bool = False,
    ) -> None:
        self._reconciler = reconciler
        self._debounce_seconds = debounce_seconds
        self._initial_delay_seconds = initial_delay_seconds
        self.scheduler = ScanScheduler.for_reconciler(reconciler, enrich=enrich)
        self._observer: Observer | None = None
        self._debounce: asyncio.TimerHandle | None = None
        self._initial: asyncio.TimerHandle | None = None

    def start(self) -> None:
        """Begin watching; must be called from a running event loop."""

        loop = asyncio.get_running_loop()
        root = self._reconciler.storage_root
        root.mkdir(parents=True, exist_ok=True)

        observer = Observer()
        observer.schedule(_StorageEventHandler(loop, self.notify), str(root), recursive=True)
        observer.daemon = True
        observer.start()
        self._observer = observer
        self._initial = loop.call_later(self._initial_delay_seconds, self.scheduler.request)
        logger.info("Watching for new films in %s", root)

    def notify(self) -> None:
        """Restart the debounce timer; files may still be copying."""

        loop = asyncio.get_running_loop()
        if self._debounce is not None:
            self._debounce.cancel()
        self._debounce = loop.call_later(self._debounce_seconds, self.scheduler.request)

    async def stop(self) -> None:
        for handle in (self._debounce, self._initial):
            if handle is not None:
                handle.cancel()
        self._debounce = self._initial = None
        if self._observer is not None:
            self._observer.stop()
            await asyncio.to_thread(self._observer.join, 5)
            self._observer = None
        await self.scheduler.stop()
