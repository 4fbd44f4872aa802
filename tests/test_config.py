"""
Tests for centralized configuration.
"""
import pytest
from notechart.core.config import Settings, get_settings, reload_settings

ENV_KEYS = [
    "RATE_LIMIT_PER_MINUTE", "REQUEST_TIMEOUT_SECONDS", "LOG_LEVEL", "SAMPLE_WINDOW_MAX_NOTES",
    "ANALYSIS_CACHE_TTL_SECONDS", "INFERENCE_TIMEOUT_SECONDS", "POLICY_PATH",
]


@pytest.fixture
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    yield monkeypatch
    reload_settings()


def test_settings_defaults(clean_env):
    """Test that settings have sensible defaults."""
    settings = Settings.from_env()

    assert settings.rate_limit_per_minute == 30
    assert settings.request_timeout_seconds == 120
    assert settings.sample_window_max_notes == 500
    assert settings.analysis_cache_ttl_seconds == 900
    assert settings.inference_timeout_seconds == 15.0
    assert settings.policy_path is None
    assert settings.log_level == "INFO"


def test_settings_from_env(clean_env):
    """Test loading settings from environment variables."""
    clean_env.setenv("SAMPLE_WINDOW_MAX_NOTES", "200")
    clean_env.setenv("INFERENCE_TIMEOUT_SECONDS", "4.5")
    clean_env.setenv("POLICY_PATH", "/etc/notechart/policy.yaml")
    clean_env.setenv("LOG_LEVEL", "debug")

    settings = reload_settings()

    assert settings.sample_window_max_notes == 200
    assert settings.inference_timeout_seconds == 4.5
    assert settings.policy_path == "/etc/notechart/policy.yaml"
    assert settings.log_level == "DEBUG"


def test_blank_policy_path_is_unset():
    assert Settings(policy_path="   ").policy_path is None


def test_settings_validation():
    """Test that settings validate input ranges."""
    with pytest.raises(ValueError):
        Settings(sample_window_max_notes=0)

    with pytest.raises(ValueError):
        Settings(inference_timeout_seconds=0)

    with pytest.raises(ValueError):
        Settings(log_level="INVALID")


def test_settings_properties():
    """Test computed properties."""
    settings = Settings(allowed_origins="https://a.example, https://b.example,")

    assert settings.allowed_origins_list == ["https://a.example", "https://b.example"]


def test_settings_singleton():
    """Test that get_settings returns singleton."""
    assert get_settings() is get_settings()
