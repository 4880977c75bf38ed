from __future__ import annotations

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings


class CacheEngineSettings(BaseSettings):
    """Settings for the chat history cache, loaded from environment variables."""

    storage_key_prefix: str = "chat-history-"
    meta_key: str = "chat-history-meta"

    soft_threshold: float = 0.85
    hard_threshold: float = 0.95
    fallback_usage: float = 0.1
    default_capacity_bytes: int = 100 * 1024 * 1024

    max_keys: int = 300
    max_messages_per_key: int = 100
    stale_after_days: int = 30
    emergency_fraction: float = 0.5

    max_title_length: int = 200
    max_assignee_length: int = 100

    operation_timeout: float = 30.0
    relay_write_timeout: float = 30.0
    relay_read_timeout: float = 10.0

    disk_path: str = ".context_cache"

    log_level: str = "INFO"
    log_format: str = "console"

    @field_validator("soft_threshold", "hard_threshold", "fallback_usage", "emergency_fraction")
    @classmethod
    def _validate_fraction(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("Fractions must be in (0, 1]")
        return v

    @field_validator(
        "max_keys",
        "max_messages_per_key",
        "stale_after_days",
        "max_title_length",
        "max_assignee_length",
        "default_capacity_bytes",
    )
    @classmethod
    def _validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Limits must be positive")
        return v

    @field_validator("log_level")
    @classmethod
    def _validate_level(cls, v: str) -> str:
        valid = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {valid}")
        return v.upper()

    @model_validator(mode="after")
    def _validate_thresholds(self) -> "CacheEngineSettings":
        if self.soft_threshold >= self.hard_threshold:
            raise ValueError("soft_threshold must be lower than hard_threshold")
        return self

    class Config:
        env_prefix = "CONTEXT_CACHE_"
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"
