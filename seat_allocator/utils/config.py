"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str

    database_path: Path
    database_timeout_seconds: float

    admin_token: Optional[str]
    system_actor: str

    history_default_limit: int
    history_recent_limit: int
    history_retention_days: int

    expiring_default_days: int
    expiration_warning_days: int
    auto_rotation_enabled: bool
    password_length: int

    date_format: str


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process from environment variables."""
    return Settings(
        app_name=os.getenv("APP_NAME", "Seat Allocator"),
        app_version=os.getenv("APP_VERSION", "1.0.0"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        database_path=Path(os.getenv("DATABASE_PATH", "data/seat_allocator.db")),
        database_timeout_seconds=_env_float("DATABASE_TIMEOUT_SECONDS", 5.0),
        admin_token=os.getenv("ADMIN_TOKEN") or None,
        system_actor=os.getenv("SYSTEM_ACTOR", "system"),
        history_default_limit=_env_int("HISTORY_DEFAULT_LIMIT", 50),
        history_recent_limit=_env_int("HISTORY_RECENT_LIMIT", 100),
        history_retention_days=_env_int("HISTORY_RETENTION_DAYS", 365),
        expiring_default_days=_env_int("EXPIRING_DEFAULT_DAYS", 7),
        expiration_warning_days=_env_int("EXPIRATION_WARNING_DAYS", 2),
        auto_rotation_enabled=_env_bool("AUTO_ROTATION_ENABLED", False),
        password_length=_env_int("PASSWORD_LENGTH", 12),
        date_format="%Y-%m-%d",
    )
