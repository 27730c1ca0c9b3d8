"""Daemon core - startup, run loop and shutdown of the deploy daemon."""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable
from datetime import datetime

import structlog

from apk_autodeploy.artifacts.events import ArtifactWatcher, Debouncer
from apk_autodeploy.artifacts.tracker import ArtifactTracker
from apk_autodeploy.bridge.client import BridgeClient
from apk_autodeploy.bridge.models import Target
from apk_autodeploy.config import DeployConfig
from apk_autodeploy.connection.watchdog import ConnectionWatchdog, resolve_target
from apk_autodeploy.console import Notifier, StatusLine, format_connected
from apk_autodeploy.install.coordinator import InstallCoordinator, InstallOutcome

logger = structlog.get_logger()


class DeployDaemon:
    """Ties the watchdog, the artifact tracker and the installer together."""

    def __init__(
        self,
        config: DeployConfig,
        bridge: BridgeClient | None = None,
        status_line: StatusLine | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config
        self.bridge = bridge or BridgeClient(config.adb_path)
        self.status_line = status_line or StatusLine()
        self.notifier = notifier or Notifier(bell=config.bell)
        self.tracker = ArtifactTracker(config.watch_dir, config.glob)
        self.debouncer = Debouncer(config.debounce_delay, self._on_events_settled)
        self.watcher = ArtifactWatcher(config.watch_dir, config.glob, self.debouncer)
        self.watchdog: ConnectionWatchdog | None = None
        self.coordinator: InstallCoordinator | None = None
        self._clock = clock
        self._wall_clock = wall_clock
        self._tasks: set[asyncio.Task[InstallOutcome | None]] = set()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> Target:
        """Resolve the target (blocking until a device is found) and start watching."""
        logger.info(
            "deploy_daemon_starting",
            watch_dir=str(self.config.watch_dir.resolve()),
            glob=self.config.glob,
            port=self.config.port,
        )
        await self.bridge.check_available()

        if self.config.target:
            target = Target.parse(self.config.target)
            logger.info("target_configured", target=str(target))
        else:
            resolved = await resolve_target(
                self.bridge, self.config.port, interval=self.config.resolve_interval
            )
            if resolved is None:
                raise RuntimeError("Target resolution stopped without a device")
            target = resolved

        self.watchdog = ConnectionWatchdog(
            self.bridge,
            target,
            clock=self._wall_clock,
            on_disconnect=self.status_line.clear,
        )
        self.coordinator = InstallCoordinator(
            self.bridge,
            self.watchdog,
            self.notifier,
            ready_timeout=self.config.ready_timeout,
            ready_poll_interval=self.config.ready_poll_interval,
        )
        await self.tracker.initialize()
        self.debouncer.bind(asyncio.get_running_loop())
        await asyncio.to_thread(self.watcher.start)
        self._running = True
        logger.info("deploy_daemon_started", target=str(target))
        return target

    async def stop(self) -> None:
        logger.info("deploy_daemon_stopping")
        self._running = False
        self.debouncer.cancel()
        await asyncio.to_thread(self.watcher.stop)
        for task in list(self._tasks):
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self.status_line.clear()
        logger.info("deploy_daemon_stopped")

    async def run(self) -> None:
        """Start, then loop until cancelled."""
        await self.start()
        try:
            await self.run_forever()
        finally:
            await self.stop()

    async def run_forever(self, iterations: int | None = None) -> None:
        """Tick the watchdog and, on its own cadence, poll the artifact."""
        last_poll = self._clock()
        count = 0
        while self._running and (iterations is None or count < iterations):
            count += 1
            try:
                await self.tick()
                if self._clock() - last_poll >= self.config.poll_interval:
                    last_poll = self._clock()
                    await self.check_artifact("poll")
            except Exception:
                logger.exception("run_loop_error")
            await asyncio.sleep(self.config.tick_interval)

    async def tick(self) -> bool:
        """Re-assert connectivity and refresh the status line."""
        if self.watchdog is None:
            raise RuntimeError("Daemon not started")
        connected = await self.watchdog.ensure_connected()
        if connected:
            self.status_line.render(
                format_connected(
                    self.watchdog.connected_since,
                    str(self.watchdog.target),
                    now=self.watchdog.now(),
                )
            )
        return connected

    async def check_artifact(self, source: str) -> InstallOutcome | None:
        """Install the latest artifact if it changed since the last check."""
        if self.coordinator is None:
            raise RuntimeError("Daemon not started")
        try:
            change = await self.tracker.detect_change(source)
        except OSError as exc:
            logger.warning("artifact_sample_failed", source=source, error=str(exc))
            return None
        if change is None:
            return None
        self.status_line.clear()
        return await self.coordinator.install(change.path)

    def _on_events_settled(self) -> None:
        task = asyncio.create_task(self._check_from_events())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _check_from_events(self) -> InstallOutcome | None:
        try:
            return await self.check_artifact("event")
        except Exception:
            logger.exception("event_check_error")
            return None
