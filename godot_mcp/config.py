"""Runtime settings for the Godot MCP server, read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Any

from .connection import DEFAULT_URL, GodotConnection


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    """Connection and logging settings.

    Durations are in seconds.
    """

    url: str = DEFAULT_URL
    timeout: float = 20.0
    max_retries: int = 3
    retry_delay: float = 2.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from ``GODOT_MCP_*`` environment variables."""
        return cls(
            url=os.getenv("GODOT_MCP_URL") or DEFAULT_URL,
            timeout=_env_float("GODOT_MCP_TIMEOUT", cls.timeout),
            max_retries=_env_int("GODOT_MCP_MAX_RETRIES", cls.max_retries),
            retry_delay=_env_float("GODOT_MCP_RETRY_DELAY", cls.retry_delay),
            log_level=(os.getenv("GODOT_MCP_LOG_LEVEL") or cls.log_level).upper(),
        )

    def override(self, **values: Any) -> "Settings":
        """Return a copy with every non-None value in ``values`` applied."""
        return replace(self, **{k: v for k, v in values.items() if v is not None})

    def connection(self) -> GodotConnection:
        return GodotConnection(
            url=self.url,
            timeout=self.timeout,
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
        )
