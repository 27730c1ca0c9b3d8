"""Runtime configuration for the deploy daemon."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, field_validator, model_validator

from apk_autodeploy.errors import DeployError
from apk_autodeploy.validation import parse_target, validate_port

DEFAULT_PORT = 5555
DEFAULT_GLOB = "*.apk"
# Fixed in normal use; only tests shorten it
FILE_READY_TIMEOUT = 60.0


class DeployConfig(BaseModel):
    port: int = DEFAULT_PORT
    tick_interval: float = 5.0
    watch_dir: Path = Path(".")
    glob: str = DEFAULT_GLOB
    debounce_delay: float = 1.2
    poll_interval: float = 5.0
    ready_timeout: float = FILE_READY_TIMEOUT
    ready_poll_interval: float = 0.2
    resolve_interval: float = 2.0
    adb_path: str = "adb"
    target: str | None = None  # host:port; skips USB resolution when set
    bell: bool = True

    @field_validator("port")
    @classmethod
    def check_port(cls, value: int) -> int:
        try:
            return validate_port(value)
        except DeployError as exc:
            raise ValueError(exc.message) from exc

    @field_validator("target")
    @classmethod
    def check_target(cls, value: str | None) -> str | None:
        if value is not None:
            try:
                parse_target(value)
            except DeployError as exc:
                raise ValueError(exc.message) from exc
        return value

    @field_validator("glob")
    @classmethod
    def check_glob(cls, value: str) -> str:
        if not value or "/" in value or "\\" in value:
            raise ValueError("glob must be a non-empty file name pattern")
        return value

    @model_validator(mode="after")
    def check_intervals(self) -> DeployConfig:
        """Reject zero or negative timings."""
        for name in (
            "tick_interval",
            "debounce_delay",
            "poll_interval",
            "ready_timeout",
            "ready_poll_interval",
            "resolve_interval",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        return self
