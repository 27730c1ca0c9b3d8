"""CLI entry point using Typer."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, NoReturn

import typer
from pydantic import ValidationError

from apk_autodeploy.bridge.client import BridgeClient
from apk_autodeploy.bridge.models import Target
from apk_autodeploy.config import DEFAULT_GLOB, DEFAULT_PORT, DeployConfig
from apk_autodeploy.connection.watchdog import ConnectionWatchdog, resolve_target
from apk_autodeploy.console import Notifier, StatusLine, configure_logging
from apk_autodeploy.daemon.core import DeployDaemon
from apk_autodeploy.errors import DeployError, invalid_config_error
from apk_autodeploy.install.coordinator import InstallCoordinator

app = typer.Typer(
    name="apk-autodeploy",
    help="Keep a wireless adb connection alive and install the newest APK",
    no_args_is_help=True,
)


def format_json(data: Any) -> str:
    return json.dumps(data, indent=2, sort_keys=True)


def render_error(error: DeployError) -> NoReturn:
    typer.echo(f"{error.code}: {error.message}")
    if error.remediation:
        typer.echo(f"Hint: {error.remediation}")
    raise typer.Exit(code=1)


def build_config(**values: Any) -> DeployConfig:
    try:
        return DeployConfig(**values)
    except ValidationError as exc:
        reasons = "; ".join(err["msg"] for err in exc.errors())
        render_error(invalid_config_error(reasons))


@app.command()
def version() -> None:
    """Show version information."""
    from apk_autodeploy import __version__

    typer.echo(f"apk-autodeploy v{__version__}")


@app.command("run")
def run(
    watch_dir: Path = typer.Argument(Path("."), help="Directory holding build artifacts"),
    port: int = typer.Option(DEFAULT_PORT, "--port", help="Wireless adb port"),
    tick: float = typer.Option(5.0, "--tick", help="Watchdog tick interval in seconds"),
    glob: str = typer.Option(DEFAULT_GLOB, "--glob", help="Artifact file pattern"),
    debounce_ms: int = typer.Option(1200, "--debounce-ms", help="Quiet period after file events"),
    poll: float = typer.Option(5.0, "--poll", help="Artifact poll interval in seconds"),
    adb: str = typer.Option("adb", "--adb", help="adb executable"),
    target: str | None = typer.Option(
        None, "--target", help="Use host:port instead of resolving it over USB"
    ),
    bell: bool = typer.Option(True, "--bell/--no-bell", help="Ring the terminal bell on installs"),
    log_level: str = typer.Option("info", "--log-level", help="debug|info|warning|error"),
) -> None:
    """Watch a directory and deploy each new APK to the device."""
    config = build_config(
        port=port,
        tick_interval=tick,
        watch_dir=watch_dir,
        glob=glob,
        debounce_delay=debounce_ms / 1000,
        poll_interval=poll,
        adb_path=adb,
        target=target,
        bell=bell,
    )
    status_line = StatusLine()
    try:
        configure_logging(log_level, status_line)
    except DeployError as exc:
        render_error(exc)

    daemon = DeployDaemon(config, status_line=status_line)
    try:
        asyncio.run(daemon.run())
    except KeyboardInterrupt:
        status_line.clear()
        typer.echo("Stopped")


@app.command("devices")
def devices(
    adb: str = typer.Option("adb", "--adb", help="adb executable"),
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """List attached devices and the routed IP of USB devices."""
    bridge = BridgeClient(adb)

    async def _collect() -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        for device in await bridge.list_devices():
            ip = await bridge.get_routed_ip(device.serial) if device.is_usb else None
            rows.append(
                {
                    "serial": device.serial,
                    "state": device.state,
                    "transport": "usb" if device.is_usb else "network",
                    "ip": ip,
                }
            )
        return rows

    try:
        rows = asyncio.run(_collect())
    except DeployError as exc:
        render_error(exc)

    if json_output:
        typer.echo(format_json({"devices": rows}))
        return
    if not rows:
        typer.echo("No devices attached")
        return
    for row in rows:
        ip = f" ip={row['ip']}" if row["ip"] else ""
        typer.echo(f"{row['serial']}\t{row['state']}\t{row['transport']}{ip}")


@app.command("install")
def install(
    apk: Path = typer.Argument(..., help="APK to install"),
    target: str | None = typer.Option(None, "--target", help="Device host:port"),
    port: int = typer.Option(DEFAULT_PORT, "--port", help="Wireless adb port"),
    adb: str = typer.Option("adb", "--adb", help="adb executable"),
    bell: bool = typer.Option(True, "--bell/--no-bell", help="Ring the terminal bell"),
) -> None:
    """Install one APK through the same readiness and connectivity checks."""
    config = build_config(port=port, adb_path=adb, target=target, bell=bell)
    bridge = BridgeClient(config.adb_path)

    async def _install() -> bool:
        if config.target:
            resolved: Target | None = Target.parse(config.target)
        else:
            resolved = await resolve_target(bridge, config.port, attempts=1)
        if resolved is None:
            typer.echo("No USB device with a routed IP found; pass --target host:port")
            return False
        watchdog = ConnectionWatchdog(bridge, resolved)
        coordinator = InstallCoordinator(
            bridge,
            watchdog,
            Notifier(bell=config.bell),
            ready_timeout=config.ready_timeout,
            ready_poll_interval=config.ready_poll_interval,
        )
        outcome = await coordinator.install(apk)
        return outcome.succeeded

    if not asyncio.run(_install()):
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
