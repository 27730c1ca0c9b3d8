"""Error model - Actionable errors with remediation hints."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class DeployError(Exception):
    """
    Base error with context and remediation guidance.

    Errors are logged by the component that hits them; only invalid user input
    reaches the command line.
    """

    code: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)
    remediation: str = ""

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "code": self.code,
            "message": self.message,
            "context": self.context,
            "remediation": self.remediation,
        }


def adb_not_found_error(adb_path: str = "adb") -> DeployError:
    """Create error for missing adb binary."""
    return DeployError(
        code="ERR_ADB_NOT_FOUND",
        message=f"adb command not found: {adb_path}",
        context={"adb_path": adb_path},
        remediation="Install Android platform-tools and ensure adb is in PATH.",
    )


def adb_command_error(command: str, reason: str) -> DeployError:
    """Create error for adb command failure."""
    return DeployError(
        code="ERR_ADB_COMMAND",
        message=f"adb command failed: {command}",
        context={"command": command, "reason": reason},
        remediation="Check adb connection and command arguments, then retry.",
    )


def file_not_found_error(path: str) -> DeployError:
    """Create error for missing local file."""
    return DeployError(
        code="ERR_FILE_NOT_FOUND",
        message=f"Local file not found: {path}",
        context={"path": path},
        remediation="Verify the build output path and try again.",
    )


def file_not_ready_error(path: str, timeout: float) -> DeployError:
    """Create error for an artifact that stayed locked by its writer."""
    return DeployError(
        code="ERR_FILE_NOT_READY",
        message=f"File still being written after {timeout:g}s: {path}",
        context={"path": path, "timeout": timeout},
        remediation="Wait for the build to finish; the next change will retrigger the install.",
    )


def invalid_target_error(target: str) -> DeployError:
    """Create error for a malformed host:port target."""
    return DeployError(
        code="ERR_INVALID_TARGET",
        message=f"Invalid target: {target}",
        context={"target": target},
        remediation="Use host:port, e.g. 192.168.1.50:5555.",
    )


def invalid_port_error(port: int) -> DeployError:
    """Create error for a port outside the TCP range."""
    return DeployError(
        code="ERR_INVALID_PORT",
        message=f"Invalid port: {port}",
        context={"port": port},
        remediation="Port must be between 1 and 65535.",
    )


def invalid_config_error(reason: str) -> DeployError:
    """Create error for rejected configuration values."""
    return DeployError(
        code="ERR_INVALID_CONFIG",
        message=f"Invalid configuration: {reason}",
        context={"reason": reason},
        remediation="Check the command line options and retry.",
    )
