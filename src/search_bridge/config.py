"""Centralized configuration for search-bridge using Pydantic Settings."""

from functools import lru_cache
import logging
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BridgeSettings(BaseSettings):
    """Strictly typed configuration loaded from ``SEARCH_BRIDGE_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SEARCH_BRIDGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_default=True,
        extra="ignore",
    )

    # Logging
    log_level: str = Field(default="info", description="Root logging level")
    log_json: bool = Field(default=True, description="Emit structured JSON logs")
    callback_failure_log_level: str = Field(
        default="warning",
        description="Level used when a callback raises inside a trampoline",
    )

    # Databases
    default_backend: Literal["auto", "sqlite", "inmemory"] = Field(
        default="auto",
        description="Backend used when a writable database is opened without an explicit one",
    )
    sqlite_cache_size_kb: int = Field(default=65536, ge=0, description="SQLite page cache per connection in KiB")
    sqlite_mmap_size_bytes: int = Field(default=268435456, ge=0, description="SQLite mmap window in bytes")
    lock_retry_timeout_ms: int = Field(
        default=30000,
        ge=0,
        description="How long RETRY_LOCK and readers wait for a busy database",
    )

    # Callbacks
    max_registrations: int = Field(
        default=4096,
        ge=1,
        description="Upper bound on live callback registrations per registry",
    )

    @field_validator("log_level", "callback_failure_log_level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        if not isinstance(logging.getLevelName(value.upper()), int):
            raise ValueError(f"Unknown log level: {value}")
        return value.lower()

    @model_validator(mode="after")
    def _check_cache_budget(self) -> "BridgeSettings":
        # mmap smaller than the page cache only wastes address space
        if self.sqlite_mmap_size_bytes and self.sqlite_mmap_size_bytes < self.sqlite_cache_size_kb * 1024:
            raise ValueError(
                "SEARCH_BRIDGE_SQLITE_MMAP_SIZE_BYTES must be 0 or at least SEARCH_BRIDGE_SQLITE_CACHE_SIZE_KB * 1024"
            )
        return self

    def failure_log_level(self) -> int:
        """Numeric level for callback failure records."""
        return logging.getLevelName(self.callback_failure_log_level.upper())


@lru_cache(maxsize=1)
def get_settings() -> BridgeSettings:
    return BridgeSettings()


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    get_settings.cache_clear()
