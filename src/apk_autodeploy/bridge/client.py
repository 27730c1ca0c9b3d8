"""Bridge client - thin synchronous wrappers around the adb CLI."""

from __future__ import annotations

import asyncio
import shutil
import subprocess

import structlog

from apk_autodeploy.bridge.models import DeviceHandle, Target
from apk_autodeploy.errors import DeployError, adb_command_error, adb_not_found_error
from apk_autodeploy.validation import parse_route_src

logger = structlog.get_logger()

INSTALL_FLAGS = ["-r", "-t", "--no-streaming"]


class BridgeClient:
    """Issues adb commands and interprets their output.

    Every call blocks its awaiting task until the adb process exits. Calls are
    not time-bounded: a hung adb hangs the caller.
    """

    def __init__(self, adb_path: str = "adb") -> None:
        self.adb_path = adb_path

    async def check_available(self) -> bool:
        """Run ``adb version``; log a warning instead of failing."""
        try:
            result = await self._run_adb(["version"])
        except DeployError as exc:
            logger.warning("adb_unavailable", error=str(exc), remediation=exc.remediation)
            return False
        if result.returncode != 0:
            reason = (result.stderr or result.stdout).strip()
            logger.warning("adb_unavailable", error=str(adb_command_error("version", reason)))
            return False
        first_line = result.stdout.strip().splitlines()[0] if result.stdout.strip() else ""
        logger.info("adb_available", version=first_line)
        return True

    async def list_devices(self) -> list[DeviceHandle]:
        """List attached devices from ``adb devices``."""
        result = await self._run_adb(["devices"])
        return parse_devices(result.stdout)

    async def get_routed_ip(self, serial: str) -> str | None:
        """Return the device's source IP from its routing table."""
        result = await self._run_adb(["-s", serial, "shell", "ip", "route"])
        if result.returncode != 0:
            logger.debug("ip_route_failed", serial=serial, output=_combined(result))
            return None
        return parse_route_src(result.stdout)

    async def enable_network_mode(self, serial: str, port: int) -> list[str]:
        """Switch a USB device into TCP/IP listening mode (best-effort)."""
        try:
            result = await self._run_adb(["-s", serial, "tcpip", str(port)])
        except DeployError as exc:
            logger.warning("enable_network_mode_failed", serial=serial, error=str(exc))
            return []
        lines = _combined(result).splitlines()
        if result.returncode != 0:
            logger.warning(
                "enable_network_mode_failed",
                serial=serial,
                port=port,
                exit_code=result.returncode,
                output=lines,
            )
        else:
            logger.info("enable_network_mode", serial=serial, port=port, output=lines)
        return lines

    async def is_reachable(self, target: Target) -> bool:
        """True iff ``adb devices`` lists exactly ``<target> device``."""
        result = await self._run_adb(["devices"])
        expected = f"{target} device"
        return any(" ".join(line.split()) == expected for line in result.stdout.splitlines())

    async def connect(self, target: Target) -> list[str]:
        """Attempt ``adb connect``; callers must re-check reachability."""
        try:
            result = await self._run_adb(["connect", str(target)])
        except DeployError as exc:
            logger.warning("connect_failed", target=str(target), error=str(exc))
            return []
        lines = _combined(result).splitlines()
        logger.info("connect_attempted", target=str(target), output=lines)
        return lines

    async def install_package(self, target: Target, path: str) -> int:
        """Install an APK on the target and return adb's exit code verbatim.

        Streamed installs fail more often over wireless transport, so the
        package is pushed first and installed from device storage.
        """
        result = await self._run_adb(["-s", str(target), "install", *INSTALL_FLAGS, "--", path])
        output = _combined(result).splitlines()
        logger.info("install_output", target=str(target), exit_code=result.returncode, output=output)
        return result.returncode

    async def _run_adb(self, args: list[str]) -> subprocess.CompletedProcess[str]:
        def _run() -> subprocess.CompletedProcess[str]:
            adb_path = shutil.which(self.adb_path)
            if not adb_path:
                raise adb_not_found_error(self.adb_path)
            return subprocess.run(
                [adb_path, *args],
                check=False,
                capture_output=True,
                text=True,
                errors="replace",
            )

        try:
            return await asyncio.to_thread(_run)
        except DeployError:
            raise
        except FileNotFoundError as exc:
            raise adb_not_found_error(self.adb_path) from exc


def parse_devices(output: str) -> list[DeviceHandle]:
    """Parse ``adb devices`` rows, skipping the header and blank lines."""
    devices: list[DeviceHandle] = []
    for line in output.splitlines():
        line = line.strip()
        if not line or line.startswith("List of devices") or line.startswith("*"):
            continue
        parts = line.split()
        if len(parts) < 2:
            continue
        devices.append(DeviceHandle(serial=parts[0], state=parts[1]))
    return devices


def _combined(result: subprocess.CompletedProcess[str]) -> str:
    return "\n".join(part.strip() for part in (result.stdout, result.stderr) if part and part.strip())
