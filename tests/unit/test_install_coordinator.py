"""Tests for InstallCoordinator."""

from __future__ import annotations

import sys
import threading
import time
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest


def _coordinator(bridge: MagicMock, notifier: MagicMock | None = None, ready_timeout: float = 1.0):
    from apk_autodeploy.bridge.models import Target
    from apk_autodeploy.connection.watchdog import ConnectionWatchdog
    from apk_autodeploy.install.coordinator import InstallCoordinator

    watchdog = ConnectionWatchdog(bridge, Target("192.168.1.50", 5555))
    return InstallCoordinator(
        bridge,
        watchdog,
        notifier,
        ready_timeout=ready_timeout,
        ready_poll_interval=0.01,
    )


class TestFileReadiness:
    """Tests for the readiness wait."""

    def test_unlocked_file_is_ready(self, tmp_path: Path) -> None:
        """Should open a file nobody is writing."""
        from apk_autodeploy.install.coordinator import file_snapshot, try_open_exclusive

        path = tmp_path / "app.apk"
        path.write_bytes(b"apk")

        assert try_open_exclusive(path) is True
        assert try_open_exclusive(tmp_path / "missing.apk") is False
        assert file_snapshot(path) == (3, path.stat().st_mtime_ns)
        assert file_snapshot(tmp_path / "missing.apk") is None

    @pytest.mark.skipif(not sys.platform.startswith("linux"), reason="uses Linux leases")
    def test_open_writer_detected(self, tmp_path: Path) -> None:
        """Should report a file that is still open for writing."""
        from apk_autodeploy.install.coordinator import file_snapshot, has_open_writers

        path = tmp_path / "app.apk"
        with path.open("wb") as writer:
            writer.write(b"PK\x03\x04partial")
            writer.flush()
            assert has_open_writers(path) is True
            assert file_snapshot(path) is None

        assert has_open_writers(path) is False

    @pytest.mark.skipif(not sys.platform.startswith("linux"), reason="uses Linux leases")
    @pytest.mark.asyncio
    async def test_open_writer_times_out(self, tmp_path: Path) -> None:
        """Should not report ready while a writer keeps the file open."""
        from apk_autodeploy.install.coordinator import wait_for_file_ready

        path = tmp_path / "app.apk"
        with path.open("wb") as writer:
            writer.write(b"PK\x03\x04partial")
            writer.flush()
            ready = await wait_for_file_ready(path, timeout=0.3, poll_interval=0.02)

        assert ready is False

    @pytest.mark.asyncio
    async def test_growing_file_times_out(self, tmp_path: Path) -> None:
        """Should not report ready while the file keeps changing size."""
        from apk_autodeploy.install.coordinator import wait_for_file_ready

        path = tmp_path / "app.apk"
        path.write_bytes(b"PK")
        stop = threading.Event()

        def _append() -> None:
            # Reopen per chunk so no descriptor stays open between writes
            while not stop.is_set():
                with path.open("ab") as handle:
                    handle.write(b"\0" * 64)
                time.sleep(0.005)

        writer = threading.Thread(target=_append)
        writer.start()
        try:
            ready = await wait_for_file_ready(path, timeout=0.3, poll_interval=0.05)
        finally:
            stop.set()
            writer.join()

        assert ready is False

    @pytest.mark.asyncio
    async def test_finished_file_is_ready(self, tmp_path: Path) -> None:
        """Should report ready once a closed file is stable across two polls."""
        from apk_autodeploy.install.coordinator import wait_for_file_ready

        path = tmp_path / "app.apk"
        path.write_bytes(b"PK\x03\x04complete")

        assert await wait_for_file_ready(path, timeout=1.0, poll_interval=0.01) is True

    @pytest.mark.asyncio
    async def test_waits_for_two_equal_snapshots(self, tmp_path: Path) -> None:
        """Should keep polling until the same snapshot is seen twice in a row."""
        from apk_autodeploy.install.coordinator import wait_for_file_ready

        probe = MagicMock(side_effect=[None, (10, 1), (20, 2), (20, 2)])
        with patch("apk_autodeploy.install.coordinator.file_snapshot", probe):
            ready = await wait_for_file_ready(tmp_path / "app.apk", timeout=5.0, poll_interval=0.001)

        assert ready is True
        assert probe.call_count == 4

    @pytest.mark.asyncio
    async def test_times_out(self, tmp_path: Path) -> None:
        """Should give up once the timeout elapses."""
        from apk_autodeploy.install.coordinator import wait_for_file_ready

        with patch("apk_autodeploy.install.coordinator.file_snapshot", return_value=None):
            ready = await wait_for_file_ready(tmp_path / "app.apk", timeout=0.05, poll_interval=0.01)

        assert ready is False


class TestInstall:
    """Tests for InstallCoordinator.install."""

    @pytest.mark.asyncio
    async def test_missing_file_fails_fast(self, fake_bridge, tmp_path: Path) -> None:
        """Should abort without touching the device."""
        coordinator = _coordinator(fake_bridge)

        outcome = await coordinator.install(tmp_path / "gone.apk")

        assert outcome.succeeded is False
        assert outcome.exit_code is None
        assert outcome.reason == "ERR_FILE_NOT_FOUND"
        fake_bridge.is_reachable.assert_not_awaited()
        fake_bridge.install_package.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_not_ready_aborts(self, fake_bridge, make_artifact) -> None:
        """Should skip the install when the file stays locked."""
        notifier = MagicMock()
        coordinator = _coordinator(fake_bridge, notifier, ready_timeout=0.03)
        apk = make_artifact("app.apk")

        with patch("apk_autodeploy.install.coordinator.try_open_exclusive", return_value=False):
            outcome = await coordinator.install(apk)

        assert outcome.reason == "ERR_FILE_NOT_READY"
        fake_bridge.install_package.assert_not_awaited()
        notifier.success.assert_not_called()
        notifier.failure.assert_not_called()

    @pytest.mark.asyncio
    async def test_unreachable_skips(self, fake_bridge, make_artifact) -> None:
        """Should skip the install when connectivity cannot be restored."""
        fake_bridge.is_reachable.return_value = False
        coordinator = _coordinator(fake_bridge)

        outcome = await coordinator.install(make_artifact("app.apk"))

        assert outcome.succeeded is False
        assert outcome.reason == "unreachable"
        fake_bridge.connect.assert_awaited_once()
        fake_bridge.install_package.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_success_notifies(self, fake_bridge, make_artifact) -> None:
        """Should install on the target and fire the success cue."""
        from apk_autodeploy.bridge.models import Target

        notifier = MagicMock()
        coordinator = _coordinator(fake_bridge, notifier)
        apk = make_artifact("app.apk")

        outcome = await coordinator.install(apk)

        assert outcome.succeeded is True
        assert outcome.exit_code == 0
        fake_bridge.install_package.assert_awaited_once_with(Target("192.168.1.50", 5555), str(apk))
        notifier.success.assert_called_once()
        notifier.failure.assert_not_called()

    @pytest.mark.asyncio
    async def test_failure_notifies(self, fake_bridge, make_artifact) -> None:
        """Should report nonzero exit codes as failures without retrying."""
        fake_bridge.install_package = AsyncMock(return_value=1)
        notifier = MagicMock()
        coordinator = _coordinator(fake_bridge, notifier)

        outcome = await coordinator.install(make_artifact("app.apk"))

        assert outcome.succeeded is False
        assert outcome.exit_code == 1
        fake_bridge.install_package.assert_awaited_once()
        notifier.failure.assert_called_once()
        notifier.success.assert_not_called()

    @pytest.mark.asyncio
    async def test_explicit_target(self, fake_bridge, make_artifact) -> None:
        """Should install to the target passed by the caller."""
        from apk_autodeploy.bridge.models import Target

        coordinator = _coordinator(fake_bridge)
        apk = make_artifact("app.apk")

        await coordinator.install(apk, Target("10.0.0.7", 5555))

        fake_bridge.install_package.assert_awaited_once_with(Target("10.0.0.7", 5555), str(apk))
