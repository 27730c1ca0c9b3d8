"""Pytest configuration and fixtures."""

from __future__ import annotations

import os
import subprocess
from collections.abc import Callable
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest


@pytest.fixture
def fake_bridge() -> MagicMock:
    """Bridge client whose adb calls are all AsyncMocks.

    Defaults: target reachable, no devices attached, installs succeed.
    """
    bridge = MagicMock()
    bridge.check_available = AsyncMock(return_value=True)
    bridge.list_devices = AsyncMock(return_value=[])
    bridge.get_routed_ip = AsyncMock(return_value=None)
    bridge.enable_network_mode = AsyncMock(return_value=[])
    bridge.is_reachable = AsyncMock(return_value=True)
    bridge.connect = AsyncMock(return_value=[])
    bridge.install_package = AsyncMock(return_value=0)
    return bridge


@pytest.fixture
def make_artifact(tmp_path: Path) -> Callable[..., Path]:
    """Write a file of ``size`` bytes with a fixed modification time."""

    def _make(name: str, size: int = 100, mtime: float = 1_700_000_000.0) -> Path:
        path = tmp_path / name
        path.write_bytes(b"\0" * size)
        ns = int(mtime * 1_000_000_000)
        os.utime(path, ns=(ns, ns))
        return path

    return _make


@pytest.fixture
def completed() -> Callable[..., subprocess.CompletedProcess[str]]:
    """Build a finished adb process result."""

    def _completed(
        stdout: str = "", returncode: int = 0, stderr: str = ""
    ) -> subprocess.CompletedProcess[str]:
        return subprocess.CompletedProcess(
            args=[], returncode=returncode, stdout=stdout, stderr=stderr
        )

    return _completed
