"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for O'secours happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret_prod -> JWT_SECRET_PROD).

  @model_validator(mode="after"): Resolves the JWT signing secret for the
      deployment environment once, at startup. Each of development / test /
      production binds its own secret variable.

  CodecConfig: the resolved secret is handed to auth.tokens.TokenCodec as an
      explicit immutable value. The codec never reads settings itself, so tests
      can build codecs with distinct secrets side by side.

Security notes:
  A missing secret for the active environment is a startup failure, never a
  runtime error. Secrets shorter than 32 characters are rejected outright.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
otp/, sms/, or audit/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("osecours.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'osecours.db'}"

_MIN_SECRET_LENGTH = 32


@dataclass(frozen=True)
class CodecConfig:
    """Signing material for bearer tokens."""

    secret: str
    algorithm: str = "HS256"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Every field has a default except the JWT secret for the active
    environment, which the model_validator requires.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Application identity
    # ------------------------------------------------------------------

    app_name: str = "O'secours Backend"
    app_author: str = "MEDEV GROUP"
    app_version: str = "1.0.0"
    project_description: str = (
        "API backend du système d'alerte et de coordination des secours O'secours, " "développé par MEDEV GROUP."
    )
    app_env: Literal["development", "test", "production"] = "development"

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    # One secret per deployment environment; only the one matching app_env is used.
    jwt_secret_dev: str = ""
    jwt_secret_test: str = ""
    jwt_secret_prod: str = ""
    jwt_algorithm: str = "HS256"

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # SMS gateway (Letexto). Empty base URL or key disables delivery.
    # ------------------------------------------------------------------

    sms_base_url: str = ""
    sms_api_key: str = ""
    sms_sender: str = "REXTO"
    sms_country_code: str = "225"
    sms_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # OTP
    # ------------------------------------------------------------------

    otp_length: int = 4
    otp_expiration_minutes: int = 5
    # 0 disables the limit: a code can be retried until it expires.
    otp_max_attempts: int = 0

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    otp_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_origins: str = "http://localhost,http://localhost:3000,http://127.0.0.1"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_jwt_secret(self) -> "Settings":
        """Refuse to start without a usable secret for the active environment."""
        secret = self.jwt_secret
        env_var = _SECRET_ENV_VARS[self.app_env]
        if not secret:
            raise ValueError(f"{env_var} is required when APP_ENV={self.app_env}.")
        if len(secret) < _MIN_SECRET_LENGTH:
            raise ValueError(f"{env_var} must be at least {_MIN_SECRET_LENGTH} characters.")
        if self.otp_length < 1:
            raise ValueError("OTP_LENGTH must be a positive integer.")
        if self.otp_max_attempts < 0:
            raise ValueError("OTP_MAX_ATTEMPTS must be zero (disabled) or positive.")
        return self

    @property
    def jwt_secret(self) -> str:
        if self.app_env == "production":
            return self.jwt_secret_prod
        if self.app_env == "test":
            return self.jwt_secret_test
        return self.jwt_secret_dev

    @property
    def codec_config(self) -> CodecConfig:
        return CodecConfig(secret=self.jwt_secret, algorithm=self.jwt_algorithm)

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


_SECRET_ENV_VARS = {
    "development": "JWT_SECRET_DEV",
    "test": "JWT_SECRET_TEST",
    "production": "JWT_SECRET_PROD",
}


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
