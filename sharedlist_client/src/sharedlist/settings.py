from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List

# Upper bound imposed by the remote "in" query predicate.
MAX_IN_QUERY_VALUES = 10


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.

    Env vars:
    - PREFERENCES_BACKEND: 'memory' (default) or 'sqlite'
    - PREFERENCES_DB_PATH: path to sqlite db file. Default './data/preferences.db'
    - REORDER_SETTLE_DELAY_MS: delay before inbound snapshots apply again after a reorder (default 500)
    - NICKNAME_BATCH_SIZE: user ids per nickname query, 1..10 (default 10)
    - SHARE_CODE_LENGTH: number of characters in a share code (default 6)
    - SHARE_CODE_ATTEMPTS: tries to find an unused share code (default 5)
    - CORS_ALLOW_ORIGINS: comma-separated list of allowed origins; '*' by default
    - LOG_LEVEL: logging level name (default INFO)
    """

    preferences_backend: str
    preferences_db_path: str
    reorder_settle_delay_ms: int
    nickname_batch_size: int
    share_code_length: int
    share_code_attempts: int
    cors_allow_origins: List[str]
    log_level: str

    @property
    def reorder_settle_delay(self) -> float:
        """Settle delay in seconds."""
        return self.reorder_settle_delay_ms / 1000.0


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name, default)
    if value is None or value == "":
        return default
    return value


def _parse_int(value: str, default: int, minimum: int, maximum: int) -> int:
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return min(max(parsed, minimum), maximum)


def _parse_origins(origins_value: str) -> List[str]:
    """
    Parse CORS origins from env. Supports:
    - '*' to allow all origins
    - Comma-separated list of origins
    """
    value = origins_value.strip()
    if value == "*":
        return ["*"]
    return [o.strip() for o in value.split(",") if o.strip()]


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Return application settings loaded from environment variables."""
    backend = _get_env("PREFERENCES_BACKEND", "memory").strip().lower()
    if backend not in {"memory", "sqlite"}:
        # Fallback to memory if unsupported
        backend = "memory"

    db_path = _get_env("PREFERENCES_DB_PATH", "./data/preferences.db").strip()
    settle_ms = _parse_int(_get_env("REORDER_SETTLE_DELAY_MS", "500"), 500, 0, 60_000)
    batch_size = _parse_int(
        _get_env("NICKNAME_BATCH_SIZE", str(MAX_IN_QUERY_VALUES)),
        MAX_IN_QUERY_VALUES,
        1,
        MAX_IN_QUERY_VALUES,
    )
    code_length = _parse_int(_get_env("SHARE_CODE_LENGTH", "6"), 6, 2, 32)
    code_attempts = _parse_int(_get_env("SHARE_CODE_ATTEMPTS", "5"), 5, 1, 50)
    origins = _parse_origins(_get_env("CORS_ALLOW_ORIGINS", "*"))

    log_level = _get_env("LOG_LEVEL", "INFO").strip().upper()
    if log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        log_level = "INFO"

    return Settings(
        preferences_backend=backend,
        preferences_db_path=db_path,
        reorder_settle_delay_ms=settle_ms,
        nickname_batch_size=batch_size,
        share_code_length=code_length,
        share_code_attempts=code_attempts,
        cors_allow_origins=origins,
        log_level=log_level,
    )
