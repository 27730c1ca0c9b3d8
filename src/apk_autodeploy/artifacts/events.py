"""File-system event intake with debouncing."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path, PurePath

import structlog
from watchdog.events import FileSystemEvent, FileSystemEventHandler, FileSystemMovedEvent
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

logger = structlog.get_logger()


class Debouncer:
    """Restartable delay timer bound to an event loop.

    Every ``trigger`` cancels the pending timer and arms a new one; the
    callback runs once, ``delay`` seconds after the last trigger. Must be
    triggered from the loop thread (use ``trigger_threadsafe`` elsewhere).
    """

    def __init__(
        self,
        delay: float,
        callback: Callable[[], None],
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.delay = delay
        self._callback = callback
        self._loop = loop
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def trigger(self) -> None:
        loop = self._loop or asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        self._handle = loop.call_later(self.delay, self._fire)

    def trigger_threadsafe(self) -> None:
        if self._loop is None:
            raise RuntimeError("Debouncer is not bound to an event loop")
        self._loop.call_soon_threadsafe(self.trigger)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self._callback()


class ArtifactEventHandler(FileSystemEventHandler):
    """Forwards create/modify/rename events for matching files."""

    def __init__(self, glob: str, notify: Callable[[], None]) -> None:
        super().__init__()
        self._glob = glob
        self._notify = notify

    def matches(self, path: str | bytes) -> bool:
        if isinstance(path, bytes):
            path = path.decode(errors="replace")
        return bool(path) and PurePath(path).match(self._glob)

    def on_created(self, event: FileSystemEvent) -> None:
        self._handle(event)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._handle(event)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._handle(event)

    def _handle(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        paths = [event.src_path]
        if isinstance(event, FileSystemMovedEvent):
            paths.append(event.dest_path)
        if any(self.matches(path) for path in paths):
            logger.debug("artifact_event", event_type=event.event_type, path=str(paths[-1]))
            self._notify()


class ArtifactWatcher:
    """Runs a watchdog observer over the watched directory (non-recursive)."""

    def __init__(self, watch_dir: Path, glob: str, debouncer: Debouncer) -> None:
        self.watch_dir = watch_dir
        self._handler = ArtifactEventHandler(glob, debouncer.trigger_threadsafe)
        self._observer: BaseObserver | None = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self) -> bool:
        """Start watching; returns False if events are unavailable."""
        observer = Observer()
        try:
            observer.schedule(self._handler, str(self.watch_dir), recursive=False)
            observer.start()
        except OSError as exc:
            logger.warning("event_watch_unavailable", watch_dir=str(self.watch_dir), error=str(exc))
            return False
        self._observer = observer
        logger.info("event_watch_started", watch_dir=str(self.watch_dir))
        return True

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join()
        self._observer = None
        logger.info("event_watch_stopped", watch_dir=str(self.watch_dir))
