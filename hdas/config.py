# hdas/config.py
"""Runtime settings, read from the environment (and a ``.env`` file)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

from dotenv import load_dotenv

from .errors import ConfigError

Address = Tuple[str, int]

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///data.db"
DEFAULT_LISTEN_ADDR = "127.0.0.1:5804"
DEFAULT_COLLECTOR_ADDR = "127.0.0.1:4242"
DEFAULT_EXPORT_INTERVAL = 1.0
DEFAULT_CLEAN_INTERVAL = 600.0


def parse_address(value: str) -> Address:
    """Split ``host:port`` (or ``[v6]:port``) into a ``(host, port)`` tuple."""
    host, sep, port = value.strip().rpartition(":")
    if not sep or not host:
        raise ConfigError(f"expected HOST:PORT, got {value!r}")
    host = host.strip("[]")
    try:
        port_number = int(port)
    except ValueError:
        raise ConfigError(f"invalid port in address {value!r}") from None
    if not 0 <= port_number <= 65535:
        raise ConfigError(f"port out of range in address {value!r}")
    return host, port_number


def _parse_interval(name: str, value: str) -> float:
    try:
        seconds = float(value)
    except ValueError:
        raise ConfigError(f"{name} must be a number of seconds, got {value!r}") from None
    if seconds <= 0:
        raise ConfigError(f"{name} must be positive, got {value!r}")
    return seconds


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    listen_addr: Address = field(default_factory=lambda: parse_address(DEFAULT_LISTEN_ADDR))
    collector_addr: Address = field(default_factory=lambda: parse_address(DEFAULT_COLLECTOR_ADDR))
    export_interval: float = DEFAULT_EXPORT_INTERVAL
    clean_interval: float = DEFAULT_CLEAN_INTERVAL
    log_level: str = "INFO"

    def with_overrides(self, **overrides) -> "Settings":
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Build ``Settings`` from ``HDAS_*`` environment variables.

    Values already present in the environment win over the ``.env`` file.
    """
    load_dotenv(env_file)

    return Settings(
        database_url=os.getenv("HDAS_DATABASE_URL", DEFAULT_DATABASE_URL),
        listen_addr=parse_address(os.getenv("HDAS_LISTEN_ADDR", DEFAULT_LISTEN_ADDR)),
        collector_addr=parse_address(os.getenv("HDAS_COLLECTOR_ADDR", DEFAULT_COLLECTOR_ADDR)),
        export_interval=_parse_interval(
            "HDAS_EXPORT_INTERVAL", os.getenv("HDAS_EXPORT_INTERVAL", str(DEFAULT_EXPORT_INTERVAL))
        ),
        clean_interval=_parse_interval(
            "HDAS_CLEAN_INTERVAL", os.getenv("HDAS_CLEAN_INTERVAL", str(DEFAULT_CLEAN_INTERVAL))
        ),
        log_level=os.getenv("HDAS_LOG_LEVEL", "INFO").upper(),
    )
