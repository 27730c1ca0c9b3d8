"""Connectivity watchdog - keeps the wireless adb target reachable."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

import structlog

from apk_autodeploy.bridge.models import DeviceHandle, Target
from apk_autodeploy.errors import DeployError

if TYPE_CHECKING:
    from apk_autodeploy.bridge.client import BridgeClient

logger = structlog.get_logger()


class ConnectionState(Enum):
    """Reachability of the target as last observed."""

    UNKNOWN = "unknown"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class ConnectionWatchdog:
    """Owns the target and its connection state.

    Only this class mutates ``state`` and ``connected_since``. Calls to
    ``ensure_connected`` are serialized so the run loop and the install path
    never recover concurrently.
    """

    def __init__(
        self,
        bridge: BridgeClient,
        target: Target,
        clock: Callable[[], datetime] = datetime.now,
        on_disconnect: Callable[[], None] | None = None,
    ) -> None:
        self._bridge = bridge
        self._target = target
        self._clock = clock
        self._on_disconnect = on_disconnect
        self._lock = asyncio.Lock()
        self.state = ConnectionState.UNKNOWN
        self.connected_since: datetime | None = None

    @property
    def target(self) -> Target:
        return self._target

    def now(self) -> datetime:
        """Current time on the clock that stamps ``connected_since``."""
        return self._clock()

    async def ensure_connected(self) -> bool:
        """Return True if the target is reachable, recovering it if needed.

        When already reachable this costs a single ``adb devices`` call.
        """
        async with self._lock:
            if await self._check():
                self._mark_connected()
                return True

            self._mark_disconnected()
            reachable = await self._recover()
            if reachable:
                self._mark_connected()
                logger.info("connection_restored", target=str(self._target))
            else:
                logger.warning("connection_recovery_failed", target=str(self._target))
            return reachable

    async def _check(self) -> bool:
        try:
            return await self._bridge.is_reachable(self._target)
        except DeployError as exc:
            logger.warning("reachability_check_failed", error=str(exc))
            return False

    async def _recover(self) -> bool:
        """Re-arm the device listener over USB if possible, then reconnect."""
        try:
            usb = first_usb_device(await self._bridge.list_devices())
            if usb is not None:
                logger.info(
                    "recovery_enable_network_mode",
                    serial=usb.serial,
                    port=self._target.port,
                )
                await self._bridge.enable_network_mode(usb.serial, self._target.port)
            else:
                logger.info("recovery_no_usb_device", target=str(self._target))
            logger.info("recovery_connect", target=str(self._target))
            await self._bridge.connect(self._target)
        except DeployError as exc:
            logger.warning("recovery_error", error=str(exc))
        return await self._check()

    def _mark_connected(self) -> None:
        if self.state is not ConnectionState.CONNECTED:
            self.connected_since = self._clock()
        self.state = ConnectionState.CONNECTED

    def _mark_disconnected(self) -> None:
        if self.state is not ConnectionState.DISCONNECTED:
            # Clear the status line before any discrete log lines
            if self._on_disconnect is not None:
                self._on_disconnect()
            logger.warning(
                "connection_lost",
                target=str(self._target),
                previous_state=self.state.value,
            )
        self.state = ConnectionState.DISCONNECTED
        self.connected_since = None


def first_usb_device(devices: list[DeviceHandle]) -> DeviceHandle | None:
    """Pick the first online USB-attached device."""
    for device in devices:
        if device.is_usb and device.is_online:
            return device
    return None


async def resolve_target(
    bridge: BridgeClient,
    port: int,
    interval: float = 2.0,
    attempts: int | None = None,
) -> Target | None:
    """Block until a USB device reports a routed IP and build the target.

    Retries every ``interval`` seconds, forever unless ``attempts`` is given.
    """
    attempt = 0
    while attempts is None or attempt < attempts:
        attempt += 1
        try:
            usb = first_usb_device(await bridge.list_devices())
            if usb is None:
                logger.info("target_unresolved", reason="no USB device attached", attempt=attempt)
            else:
                ip = await bridge.get_routed_ip(usb.serial)
                if ip is None:
                    logger.info(
                        "target_unresolved",
                        reason="device has no routed IP",
                        serial=usb.serial,
                        attempt=attempt,
                    )
                else:
                    target = Target(host=ip, port=port)
                    logger.info("target_resolved", serial=usb.serial, target=str(target))
                    return target
        except DeployError as exc:
            logger.warning("target_unresolved", reason=str(exc), attempt=attempt)
        if attempts is None or attempt < attempts:
            await asyncio.sleep(interval)
    return None
