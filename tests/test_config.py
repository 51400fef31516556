import dataclasses

import pytest
from pydantic import ValidationError

from tasknest.config import AuthConfig, Settings, get_settings, reset_settings_cache


class TestSettings:
    def test_secret_required_outside_test_mode(self, monkeypatch):
        monkeypatch.delenv("JWT_SECRET", raising=False)
        monkeypatch.setenv("TEST_MODE", "false")

        with pytest.raises(ValidationError):
            Settings.from_env()

    def test_ephemeral_secret_in_test_mode(self, monkeypatch):
        monkeypatch.delenv("JWT_SECRET", raising=False)
        monkeypatch.setenv("TEST_MODE", "true")

        first = Settings.from_env()
        second = Settings.from_env()

        assert len(first.jwt_secret) > 32
        assert first.jwt_secret != second.jwt_secret

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("ACCESS_TOKEN_TTL_MINUTES", "15")
        monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://a.example, https://b.example")

        settings = Settings.from_env()

        assert settings.access_token_ttl_minutes == 15
        assert settings.cors_allow_origins == ["https://a.example", "https://b.example"]

    @pytest.mark.parametrize(
        "name", ["ACCESS_TOKEN_TTL_MINUTES", "SIGNUP_CODE_TTL_SECONDS", "RATE_LIMIT_WINDOW_SECONDS"]
    )
    def test_non_positive_durations_rejected(self, monkeypatch, name):
        monkeypatch.setenv(name, "0")
        with pytest.raises(ValidationError):
            Settings.from_env()

    def test_cache_reset(self, monkeypatch):
        reset_settings_cache()
        before = get_settings()
        assert get_settings() is before

        monkeypatch.setenv("REFRESH_TOKEN_COOKIE_NAME", "rt")
        reset_settings_cache()
        assert get_settings().refresh_token_cookie_name == "rt"
        reset_settings_cache()


class TestAuthConfig:
    def test_from_settings(self, monkeypatch):
        monkeypatch.setenv("ACCESS_TOKEN_REISSUE_THRESHOLD_MINUTES", "2")
        settings = Settings.from_env()

        config = AuthConfig.from_settings(settings)

        assert config.jwt_secret == settings.jwt_secret
        assert config.reissue_threshold_minutes == 2
        assert config.refresh_token_ttl_minutes == 60 * 24 * 30

    def test_immutable(self):
        config = AuthConfig(jwt_secret="fixed-secret-value")
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.jwt_secret = "swapped"
