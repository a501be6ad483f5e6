"""Tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from src.config.settings import Environment, LogLevel, Settings, get_settings


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings(_env_file=None)
        assert settings.LRS_VERSION == "1.0.3"
        assert settings.BASE_ACTIVITY_ID == "http://hulab.edu.hk"
        assert settings.ANALYTICS_CACHE_TTL_S == 300.0
        assert settings.ANALYTICS_MAX_EVENTS == 10_000
        assert settings.INVITATION_TTL_DAYS == 7
        assert settings.LOG_LEVEL == LogLevel.INFO
        assert not settings.is_production

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LRS_ENDPOINT", "https://lrs.example.org/xapi/")
        monkeypatch.setenv("environment", "prod")
        monkeypatch.setenv("ANALYTICS_MAX_EVENTS", "250")
        settings = get_settings()
        assert settings.LRS_ENDPOINT == "https://lrs.example.org/xapi/"
        assert settings.ENVIRONMENT == Environment.PROD
        assert settings.ANALYTICS_MAX_EVENTS == 250
        assert settings.is_production

    def test_bounds_are_validated(self) -> None:
        with pytest.raises(ValidationError):
            Settings(LRS_PAGE_SIZE=0, _env_file=None)
        with pytest.raises(ValidationError):
            Settings(ANALYTICS_SCAN_TIMEOUT_S=0, _env_file=None)
