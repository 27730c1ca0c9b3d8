"""Install coordinator - waits for a finished artifact and installs it."""

from __future__ import annotations

import asyncio
import errno
import sys
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import portalocker
import structlog

from apk_autodeploy.errors import (
    DeployError,
    file_not_found_error,
    file_not_ready_error,
)

if TYPE_CHECKING:
    from apk_autodeploy.bridge.client import BridgeClient
    from apk_autodeploy.bridge.models import Target
    from apk_autodeploy.connection.watchdog import ConnectionWatchdog
    from apk_autodeploy.console import Notifier

logger = structlog.get_logger()


@dataclass(frozen=True)
class InstallOutcome:
    """Result of one install attempt."""

    apk_path: str
    exit_code: int | None
    succeeded: bool
    reason: str | None = None


def try_open_exclusive(path: Path) -> bool:
    """Return True if the file opens and takes a non-blocking exclusive lock."""
    try:
        with path.open("rb") as handle:
            portalocker.lock(handle, portalocker.LOCK_EX | portalocker.LOCK_NB)
            portalocker.unlock(handle)
    except (OSError, portalocker.LockException):
        return False
    return True


def has_open_writers(path: Path) -> bool:
    """Return True if some process holds the file open for writing.

    Uses a Linux read lease, which the kernel refuses while any writable
    descriptor exists. Elsewhere, or where leases are unsupported, returns
    False and the caller relies on size/mtime stability.
    """
    if not sys.platform.startswith("linux"):
        return False
    import fcntl

    set_lease = getattr(fcntl, "F_SETLEASE", 1024)
    try:
        with path.open("rb") as handle:
            try:
                fcntl.fcntl(handle.fileno(), set_lease, fcntl.F_RDLCK)
            except OSError as exc:
                return exc.errno in (errno.EAGAIN, errno.EBUSY)
            fcntl.fcntl(handle.fileno(), set_lease, fcntl.F_UNLCK)
    except OSError:
        return False
    return False


def file_snapshot(path: Path) -> tuple[int, int] | None:
    """Size and mtime of a file nobody is writing, or None while it is busy."""
    if not try_open_exclusive(path) or has_open_writers(path):
        return None
    try:
        stat = path.stat()
    except OSError:
        return None
    return stat.st_size, stat.st_mtime_ns


async def wait_for_file_ready(
    path: Path,
    timeout: float = 60.0,
    poll_interval: float = 0.2,
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """Poll until the file is unlocked and unchanged across two polls.

    Gives up once ``timeout`` elapses.
    """
    deadline = clock() + timeout
    previous: tuple[int, int] | None = None
    while True:
        current = await asyncio.to_thread(file_snapshot, path)
        if current is not None and current == previous:
            return True
        previous = current
        if clock() >= deadline:
            return False
        await asyncio.sleep(poll_interval)


class InstallCoordinator:
    """Serializes install attempts behind the connectivity watchdog.

    Attempts are never retried: a skipped or failed install waits for the
    next artifact change.
    """

    def __init__(
        self,
        bridge: BridgeClient,
        watchdog: ConnectionWatchdog,
        notifier: Notifier | None = None,
        ready_timeout: float = 60.0,
        ready_poll_interval: float = 0.2,
    ) -> None:
        self._bridge = bridge
        self._watchdog = watchdog
        self._notifier = notifier
        self.ready_timeout = ready_timeout
        self.ready_poll_interval = ready_poll_interval
        self._lock = asyncio.Lock()

    async def install(self, apk_path: str | Path, target: Target | None = None) -> InstallOutcome:
        async with self._lock:
            return await self._install(Path(apk_path), target or self._watchdog.target)

    async def _install(self, path: Path, target: Target) -> InstallOutcome:
        apk = str(path)
        if not path.exists():
            error = file_not_found_error(apk)
            logger.error("install_aborted", reason=str(error), path=apk)
            return InstallOutcome(apk, None, False, error.code)

        logger.info("install_waiting_for_file", path=apk, timeout=self.ready_timeout)
        if not await wait_for_file_ready(path, self.ready_timeout, self.ready_poll_interval):
            error = file_not_ready_error(apk, self.ready_timeout)
            logger.error("install_aborted", reason=str(error), path=apk)
            return InstallOutcome(apk, None, False, error.code)

        if not await self._watchdog.ensure_connected():
            logger.warning("install_skipped", reason="target unreachable", target=str(target), path=apk)
            return InstallOutcome(apk, None, False, "unreachable")

        logger.info("install_started", target=str(target), path=apk)
        try:
            exit_code = await self._bridge.install_package(target, apk)
        except DeployError as exc:
            logger.error("install_failed", path=apk, error=str(exc))
            self._notify(False)
            return InstallOutcome(apk, None, False, exc.code)

        if exit_code == 0:
            logger.info("install_succeeded", target=str(target), path=apk)
        else:
            logger.error("install_failed", target=str(target), path=apk, exit_code=exit_code)
        self._notify(exit_code == 0)
        return InstallOutcome(apk, exit_code, exit_code == 0)

    def _notify(self, succeeded: bool) -> None:
        if self._notifier is None:
            return
        if succeeded:
            self._notifier.success()
        else:
            self._notifier.failure()
