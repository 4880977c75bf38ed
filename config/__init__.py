"""Environment-aware settings for the context cache."""

from __future__ import annotations

import os
from functools import lru_cache

from .settings import CacheEngineSettings


class Development(CacheEngineSettings):
    """Default development configuration."""

    log_format: str = "console"


class Production(CacheEngineSettings):
    """Settings for production deployments."""

    log_format: str = "json"


_env_map = {
    "development": Development,
    "production": Production,
}


@lru_cache
def get_settings() -> CacheEngineSettings:
    """Return settings based on ``APP_ENV``."""

    env = os.getenv("APP_ENV", "development").lower()
    cls = _env_map.get(env, Development)
    return cls()


__all__ = [
    "CacheEngineSettings",
    "Development",
    "Production",
    "get_settings",
]
