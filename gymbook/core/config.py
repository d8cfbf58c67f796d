# gymbook/core/config.py
"""
gymbook configuration - environment-driven settings.

All configuration is loaded from GYMBOOK_* environment variables (or a
.env file next to the working directory).
"""

import logging
import os
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


class Settings(BaseSettings):
    """Platform-wide configuration loaded from environment."""

    model_config = SettingsConfigDict(
        env_prefix="GYMBOOK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Platform ---
    log_level: str = Field(default="INFO")

    # --- Database ---
    database_url: str = Field(
        default="sqlite:///./gymbook.db",
        description="SQLAlchemy database URL",
    )
    db_echo: bool = Field(default=False, description="Echo SQL statements to the log")
    sqlite_busy_timeout_seconds: float = Field(
        default=30.0,
        description="How long a SQLite writer waits for the database lock",
    )

    # --- Classes & booking ---
    default_class_capacity: int = Field(default=20, ge=1)
    default_credit_cost: int = Field(default=1, ge=0)
    booking_max_attempts: int = Field(
        default=2,
        description="Attempts for a booking transaction on serialization failures (1 retry)",
    )
    slow_operation_threshold_seconds: float = Field(default=1.0, gt=0)

    # --- Tenancy ---
    tenant_bypass_paths: List[str] = Field(
        default_factory=lambda: ["/auth/login", "/auth/register", "/health"],
        description="Paths served without a tenant scope; they must not touch scoped storage",
    )

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        normalized = (value or "").strip().upper()
        if normalized not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}")
        return normalized

    @field_validator("booking_max_attempts")
    @classmethod
    def _validate_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("booking_max_attempts must be at least 1")
        return value


settings = Settings()
