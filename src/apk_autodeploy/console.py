"""Console output - the overwritten status line, user cues, logging setup."""

from __future__ import annotations

import logging
from collections.abc import MutableMapping
from datetime import datetime
from typing import Any

import structlog
import typer

from apk_autodeploy.errors import invalid_config_error

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class StatusLine:
    """A single console line rewritten in place with a carriage return."""

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self._width = 0

    @property
    def active(self) -> bool:
        return self._width > 0

    def render(self, text: str) -> None:
        if not self.enabled:
            return
        # Pad to the previous width so a shorter line fully overwrites it
        typer.echo("\r" + text.ljust(self._width), nl=False)
        self._width = len(text)

    def clear(self) -> None:
        if not self._width:
            return
        typer.echo("\r" + " " * self._width + "\r", nl=False)
        self._width = 0

    def processor(
        self, _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
    ) -> MutableMapping[str, Any]:
        """structlog processor that clears the line before a record prints."""
        self.clear()
        return event_dict


def format_connected(since: datetime | None, target: str, now: datetime | None = None) -> str:
    if since is None:
        return f"connected -> {target}"
    now = now or datetime.now()
    elapsed = now.replace(microsecond=0) - since.replace(microsecond=0)
    return f"connected since {since:%H:%M:%S} ({elapsed}) -> {target}"


class Notifier:
    """Distinct success and failure cues for finished installs."""

    def __init__(self, bell: bool = True) -> None:
        self.bell = bell

    def success(self) -> None:
        self._cue("✓ Install succeeded", bells=1)

    def failure(self) -> None:
        self._cue("✗ Install failed", bells=3)

    def _cue(self, message: str, bells: int) -> None:
        typer.echo(message + ("\a" * bells if self.bell else ""))


def configure_logging(level: str = "info", status_line: StatusLine | None = None) -> None:
    """Configure structlog for console output."""
    level = level.lower()
    if level not in LOG_LEVELS:
        raise invalid_config_error(f"unknown log level {level!r}")
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
    ]
    if status_line is not None:
        processors.append(status_line.processor)
    processors.append(structlog.dev.ConsoleRenderer())
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(LOG_LEVELS[level]),
        cache_logger_on_first_use=True,
    )
