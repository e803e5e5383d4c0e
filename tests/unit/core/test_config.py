# tests/unit/core/test_config.py
import pytest

from app.core.config import Settings, clear_settings_cache, get_settings


def test_defaults():
    settings = Settings(DATABASE_URL="sqlite+aiosqlite:///:memory:")

    assert settings.SYNC_INTERVAL_MINUTES == 15
    assert settings.SYNC_ADVANCE_WATERMARK_ON_PARTIAL is True
    assert settings.SKIP_SCHEDULER_AUTH is False
    assert settings.is_production is False
    assert "DEBUG" not in Settings.model_fields


def test_scheduler_auth_bypass_only_in_development():
    settings = Settings(ENVIRONMENT="development", SKIP_SCHEDULER_AUTH=True)
    assert settings.SKIP_SCHEDULER_AUTH is True

    for environment in ("production", "staging", "testing"):
        with pytest.raises(ValueError, match="SKIP_SCHEDULER_AUTH"):
            Settings(ENVIRONMENT=environment, SKIP_SCHEDULER_AUTH=True)


@pytest.mark.parametrize("overrides", [
    {"SYNC_INTERVAL_MINUTES": 0},
    {"SYNC_INTERVAL_MINUTES": -10},
    {"SYNC_MAX_CONCURRENT": 0},
    {"SYNC_INTERVAL_MINUTES": 10081},
    {"SYNC_PAGE_SIZE": 0},
    {"SYNC_CALL_TIMEOUT_SECONDS": 0},
    {"SYNC_CALL_TIMEOUT_SECONDS": float("nan")},
    {"SYNC_STALE_AFTER_MINUTES": 0},
    {"SYNC_STALE_AFTER_MINUTES": -1},
    {"REPRICING_INTERVAL_MINUTES": 0},
    {"REPRICING_INTERVAL_MINUTES": 20000},
])
def test_invalid_sync_settings(overrides):
    with pytest.raises(ValueError):
        Settings(**overrides)


def test_credentials_from_environment(monkeypatch):
    monkeypatch.setenv("MARKETPLACE_CREDENTIALS", '{"cred-shopify": {"access_token": "abc"}}')

    settings = Settings()

    assert settings.MARKETPLACE_CREDENTIALS == {"cred-shopify": {"access_token": "abc"}}


def test_settings_are_cached():
    clear_settings_cache()
    first = get_settings()
    assert get_settings() is first

    clear_settings_cache()
    assert get_settings() is not first
    clear_settings_cache()
