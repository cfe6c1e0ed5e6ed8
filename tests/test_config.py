"""Tests for core/config.py: per-environment secret resolution and derived values."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import CodecConfig, Settings

SECRET = "x" * 32


def _settings(**kwargs) -> Settings:
    return Settings(_env_file=None, **kwargs)


class TestJwtSecret:
    def test_secret_follows_environment(self):
        settings = _settings(app_env="production", jwt_secret_prod=SECRET, jwt_secret_dev="d" * 40)
        assert settings.jwt_secret == SECRET
        assert settings.codec_config == CodecConfig(secret=SECRET, algorithm="HS256")

    def test_missing_secret_is_fatal(self):
        with pytest.raises(ValidationError) as exc:
            _settings(app_env="production", jwt_secret_prod="")
        assert "JWT_SECRET_PROD" in str(exc.value)

    def test_short_secret_is_fatal(self):
        with pytest.raises(ValidationError) as exc:
            _settings(app_env="development", jwt_secret_dev="short")
        assert "at least 32" in str(exc.value)

    def test_other_environment_secret_is_not_used(self):
        with pytest.raises(ValidationError):
            _settings(app_env="development", jwt_secret_dev="", jwt_secret_prod=SECRET)

    def test_secret_read_from_environment(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "production")
        monkeypatch.setenv("JWT_SECRET_PROD", SECRET)
        assert _settings().jwt_secret == SECRET


class TestOtherSettings:
    def test_defaults(self):
        settings = _settings(app_env="test", jwt_secret_test=SECRET)
        assert settings.otp_length == 4
        assert settings.otp_expiration_minutes == 5
        assert settings.otp_max_attempts == 0
        assert settings.sms_sender == "REXTO"
        assert settings.sms_country_code == "225"

    def test_cors_origins_split(self):
        settings = _settings(app_env="test", jwt_secret_test=SECRET, cors_origins=" https://a.ci, ,https://b.ci ")
        assert settings.cors_origin_list == ["https://a.ci", "https://b.ci"]

    @pytest.mark.parametrize("field, value", [("otp_length", 0), ("otp_max_attempts", -1)])
    def test_bad_otp_settings_rejected(self, field, value):
        with pytest.raises(ValidationError):
            _settings(app_env="test", jwt_secret_test=SECRET, **{field: value})
