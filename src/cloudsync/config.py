from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping, Optional

from dotenv import find_dotenv, load_dotenv

from .constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CLIENT_PORT,
    DEFAULT_REPORT_INTERVAL_S,
    DEFAULT_SCAN_INTERVAL_S,
    DEFAULT_SERVER_PORT,
    MAX_DATAGRAM_SIZE,
)
from .errors import ConfigError
from .packet import ENVELOPE_OVERHEAD

log = logging.getLogger(__name__)

ENV_PREFIX = "CLOUDSYNC_"
# room left in a datagram for the file name after the envelope header
NAME_ALLOWANCE = 255


@dataclass(frozen=True, slots=True)
class Settings:
    server_host: str = "127.0.0.1"
    server_port: int = DEFAULT_SERVER_PORT
    client_host: str = "0.0.0.0"
    client_port: int = DEFAULT_CLIENT_PORT
    sync_dir: str = "synced"
    storage_dir: str = "storage"
    chunk_size: int = DEFAULT_CHUNK_SIZE
    scan_interval: float = DEFAULT_SCAN_INTERVAL_S
    report_interval: float = DEFAULT_REPORT_INTERVAL_S
    loss_rate: float = 0.0
    delay_ms: int = 0
    log_level: str = "INFO"

    def validate(self) -> "Settings":
        for port in (self.server_port, self.client_port):
            if not 0 <= port <= 65535:
                raise ConfigError(f"port out of range: {port}")
        if self.chunk_size <= 0:
            raise ConfigError(f"chunk size must be positive, got {self.chunk_size}")
        if self.scan_interval <= 0 or self.report_interval <= 0:
            raise ConfigError("intervals must be positive")
        if not 0.0 <= self.loss_rate <= 1.0:
            raise ConfigError(f"loss rate must be within [0, 1], got {self.loss_rate}")
        if self.delay_ms < 0:
            raise ConfigError(f"delay must not be negative, got {self.delay_ms}")
        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigError(f"unknown log level: {self.log_level}")
        return self

    @property
    def max_datagram_chunk(self) -> int:
        return MAX_DATAGRAM_SIZE - ENVELOPE_OVERHEAD - NAME_ALLOWANCE

    def warn_if_oversized(self) -> bool:
        if self.chunk_size > self.max_datagram_chunk:
            log.warning(
                "chunk size %d does not fit in one UDP datagram; sends will fail "
                "unless it is lowered to %d or less",
                self.chunk_size,
                self.max_datagram_chunk,
            )
            return True
        return False

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Return a copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes).validate()


def _convert(name: str, raw: str, kind: type) -> Any:
    try:
        return kind(raw)
    except ValueError as e:
        raise ConfigError(f"{ENV_PREFIX}{name.upper()}={raw!r} is not a valid {kind.__name__}") from e


def load_settings(
    env_file: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Build Settings from ``CLOUDSYNC_*`` variables.

    A ``.env`` file is loaded first (``env_file`` or one found from the
    working directory); real environment variables take precedence over it.
    """
    if environ is None:
        load_dotenv(env_file or find_dotenv(usecwd=True), override=False)
        environ = os.environ

    defaults = Settings()
    values = {}
    for f in fields(Settings):
        raw = environ.get(ENV_PREFIX + f.name.upper())
        if raw is None or raw == "":
            continue
        kind = type(getattr(defaults, f.name))
        values[f.name] = _convert(f.name, raw, kind)
    return Settings(**values).validate()
