"""Configuration helpers for the Spaced Review Scheduler runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass


DEFAULT_HORIZON_DAYS = 7
DEFAULT_STORAGE_TIMEOUT_SECONDS = 5.0
DEFAULT_STATS_CACHE_TTL_SECONDS = 300.0
DEFAULT_MAX_UPDATE_ATTEMPTS = 3


def _read_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer.") from exc


def _read_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number.") from exc


@dataclass(frozen=True)
class AppSettings:
    """Strongly typed application settings loaded from environment variables."""

    app_name: str
    app_env: str
    log_level: str
    horizon_days: int
    storage_timeout: float
    stats_cache_ttl: float
    max_update_attempts: int
    use_memory_fallback: bool

    @classmethod
    def from_env(cls) -> AppSettings:
        """Construct settings directly from environment variables."""
        app_name = os.getenv("APP_NAME", "Spaced Review Scheduler")
        app_env = os.getenv("APP_ENV", "development")
        log_level = os.getenv("LOG_LEVEL", "INFO").upper()

        horizon_days = _read_int("DUE_HORIZON_DAYS", DEFAULT_HORIZON_DAYS)
        if horizon_days < 0:
            raise RuntimeError("DUE_HORIZON_DAYS must not be negative.")

        storage_timeout = _read_float("STORAGE_TIMEOUT_SECONDS", DEFAULT_STORAGE_TIMEOUT_SECONDS)
        if storage_timeout <= 0:
            raise RuntimeError("STORAGE_TIMEOUT_SECONDS must be a positive number.")

        stats_cache_ttl = _read_float("STATS_CACHE_TTL_SECONDS", DEFAULT_STATS_CACHE_TTL_SECONDS)
        if stats_cache_ttl < 0:
            raise RuntimeError("STATS_CACHE_TTL_SECONDS must not be negative.")

        max_update_attempts = _read_int("MAX_UPDATE_ATTEMPTS", DEFAULT_MAX_UPDATE_ATTEMPTS)
        if max_update_attempts < 1:
            raise RuntimeError("MAX_UPDATE_ATTEMPTS must be a positive integer.")

        use_memory_fallback = os.getenv("USE_MEMORY_FALLBACK", "false").lower() in {
            "1",
            "true",
            "yes",
            "on",
        }

        return cls(
            app_name=app_name,
            app_env=app_env,
            log_level=log_level,
            horizon_days=horizon_days,
            storage_timeout=storage_timeout,
            stats_cache_ttl=stats_cache_ttl,
            max_update_attempts=max_update_attempts,
            use_memory_fallback=use_memory_fallback,
        )
