from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from protocol import DecodeLimits


def _int(env: Mapping[str, str], name: str, default: int, minimum: int = 1) -> int:
    raw = env.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{name} must be at least {minimum}, got {value}")
    return value


def _timeout(env: Mapping[str, str], name: str) -> Optional[float]:
    raw = env.get(name)
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number of seconds, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


@dataclass(frozen=True)
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 6379
    read_size: int = 4096
    idle_timeout: Optional[float] = None
    max_depth: int = 32
    max_elements: int = 1_000_000
    max_bulk_length: int = 512 * 1024 * 1024
    max_line_length: int = 64 * 1024
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.read_size < 1:
            raise ValueError(f"read_size must be positive, got {self.read_size}")
        # DecodeLimits raises for out-of-range decoder bounds.
        _ = self.limits

    @property
    def limits(self) -> DecodeLimits:
        return DecodeLimits(
            max_depth=self.max_depth,
            max_elements=self.max_elements,
            max_bulk_length=self.max_bulk_length,
            max_line_length=self.max_line_length,
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> ServerConfig:
        """Build a config from ``KV_*`` environment variables."""
        env = os.environ if environ is None else environ

        log_level = env.get("KV_LOG_LEVEL", "INFO").upper()
        if not isinstance(logging.getLevelName(log_level), int):
            raise ValueError(f"KV_LOG_LEVEL is not a logging level: {log_level!r}")

        return cls(
            host=env.get("KV_HOST", "0.0.0.0"),
            port=_int(env, "KV_PORT", 6379, minimum=0),
            read_size=_int(env, "KV_READ_SIZE", 4096),
            idle_timeout=_timeout(env, "KV_IDLE_TIMEOUT"),
            max_depth=_int(env, "KV_MAX_DEPTH", 32),
            max_elements=_int(env, "KV_MAX_ELEMENTS", 1_000_000, minimum=0),
            max_bulk_length=_int(env, "KV_MAX_BULK_LEN", 512 * 1024 * 1024, minimum=0),
            max_line_length=_int(env, "KV_MAX_LINE_LEN", 64 * 1024),
            log_level=log_level,
        )
