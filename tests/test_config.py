import pytest
from pydantic import ValidationError

from config import get_settings
from config.settings import CacheEngineSettings


def test_defaults():
    settings = CacheEngineSettings()
    assert settings.soft_threshold == 0.85
    assert settings.hard_threshold == 0.95
    assert settings.max_keys == 300
    assert settings.max_messages_per_key == 100
    assert settings.storage_key_prefix == "chat-history-"


def test_env_override(monkeypatch):
    monkeypatch.setenv("CONTEXT_CACHE_MAX_KEYS", "50")
    monkeypatch.setenv("CONTEXT_CACHE_LOG_LEVEL", "debug")
    settings = CacheEngineSettings()
    assert settings.max_keys == 50
    assert settings.log_level == "DEBUG"


def test_thresholds_must_be_ordered():
    with pytest.raises(ValidationError):
        CacheEngineSettings(soft_threshold=0.96, hard_threshold=0.95)
    with pytest.raises(ValidationError):
        CacheEngineSettings(hard_threshold=1.5)
    with pytest.raises(ValidationError):
        CacheEngineSettings(max_messages_per_key=0)


def test_get_settings_by_environment(monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    get_settings.cache_clear()
    try:
        assert get_settings().log_format == "json"
    finally:
        get_settings.cache_clear()
