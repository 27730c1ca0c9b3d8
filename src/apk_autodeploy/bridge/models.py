"""Data models for the device bridge."""

from __future__ import annotations

from dataclasses import dataclass

from apk_autodeploy.validation import is_network_serial, parse_target


@dataclass(frozen=True)
class Target:
    """Network endpoint of the device's wireless debug listener."""

    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"

    @classmethod
    def parse(cls, value: str) -> Target:
        host, port = parse_target(value)
        return cls(host=host, port=port)


@dataclass(frozen=True)
class DeviceHandle:
    """One row of ``adb devices`` output."""

    serial: str
    state: str = "device"

    @property
    def is_usb(self) -> bool:
        return not is_network_serial(self.serial)

    @property
    def is_online(self) -> bool:
        return self.state == "device"
