# src/config/settings.py — v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for storage backend selection, snapshot behaviour,
remote-storage retry policy, handler-health thresholds and logging.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Event storage ===
    event_store_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = ""
    redis_key_prefix: str = "checkout_ledger:pipeline"

    # === Tracker ===
    auto_snapshot: bool = True

    # === Remote storage retry ===
    storage_max_retries: int = 3
    storage_retry_base_delay_s: float = 0.2
    storage_retry_backoff_factor: float = 2.0
    storage_retry_jitter: bool = True

    # === Handler health ===
    health_window_minutes: int = 60
    health_healthy_threshold: float = 95.0
    health_degraded_threshold: float = 50.0

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("storage_max_retries", "health_window_minutes")
    @classmethod
    def validate_non_negative(cls, v: int, info) -> int:  # noqa: N805
        if v < 0:
            raise ValueError(f"{info.field_name} must be >= 0")
        return v

    @field_validator("redis_key_prefix")
    @classmethod
    def validate_key_prefix(cls, v: str) -> str:  # noqa: N805
        v = v.strip().rstrip(":")
        if not v:
            raise ValueError("redis_key_prefix must not be empty")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.event_store_backend == "redis" and not self.redis_url:
            errors.append("REDIS_URL must be set when EVENT_STORE_BACKEND=redis")

        if not 0.0 <= self.health_degraded_threshold <= self.health_healthy_threshold <= 100.0:
            errors.append(
                "HEALTH thresholds must satisfy "
                "0 <= HEALTH_DEGRADED_THRESHOLD <= HEALTH_HEALTHY_THRESHOLD <= 100"
            )

        if self.storage_retry_base_delay_s < 0 or self.storage_retry_backoff_factor < 1.0:
            errors.append(
                "STORAGE_RETRY_BASE_DELAY_S must be >= 0 and "
                "STORAGE_RETRY_BACKOFF_FACTOR must be >= 1"
            )

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or embedding apps).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
