"""Validation helpers for targets, serials and device output."""

from __future__ import annotations

import re

from apk_autodeploy.errors import invalid_port_error, invalid_target_error

# Network serials look like host:port; anything else is a USB transport id
NETWORK_SERIAL_PATTERN = re.compile(r"^[^\s:]+:\d+$")

ROUTE_SRC_PATTERN = re.compile(r"\bsrc\s+(\d{1,3}(?:\.\d{1,3}){3})\b")


def validate_port(port: int) -> int:
    """Validate a TCP port number.

    Raises:
        DeployError: If port is outside 1..65535
    """
    if not 1 <= port <= 65535:
        raise invalid_port_error(port)
    return port


def is_network_serial(serial: str) -> bool:
    """Return True if the serial is a host:port network transport."""
    return bool(NETWORK_SERIAL_PATTERN.match(serial))


def parse_target(value: str) -> tuple[str, int]:
    """Split ``host:port`` into its parts.

    Args:
        value: Target string (e.g., '192.168.1.50:5555')

    Returns:
        Tuple of host and port

    Raises:
        DeployError: If the value is not host:port
    """
    host, sep, port_str = value.strip().rpartition(":")
    if not sep or not host or not port_str.isdigit():
        raise invalid_target_error(value)
    port = int(port_str)
    if not 1 <= port <= 65535:
        raise invalid_target_error(value)
    return host, port


def parse_route_src(output: str) -> str | None:
    """Extract the first ``src <ipv4>`` address from ``ip route`` output."""
    for match in ROUTE_SRC_PATTERN.finditer(output):
        ip = match.group(1)
        if all(0 <= int(octet) <= 255 for octet in ip.split(".")):
            return ip
    return None
