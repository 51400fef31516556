from __future__ import annotations

import os
import secrets
from dataclasses import dataclass
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from tasknest.logging import get_logger

logger = get_logger(__name__)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Process settings read from the environment (and an optional .env file)."""

    database_url: str = env_field(
        "postgresql://localhost:5432/tasknest", "DATABASE_URL"
    )
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    shared_fs_root: str | None = env_field(
        None,
        "SHARED_FS_ROOT",
        description="Directory where the memory store snapshots its state; unset keeps it in-process only",
    )
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Deterministic testing behaviors; allows running without Redis.",
    )
    # Declared after test_mode: the secret validator reads it
    jwt_secret: str = env_field(None, "JWT_SECRET", validate_default=True)
    access_token_ttl_minutes: int = env_field(
        30, "ACCESS_TOKEN_TTL_MINUTES", description="Access token lifetime"
    )
    refresh_token_ttl_minutes: int = env_field(
        60 * 24 * 30,
        "REFRESH_TOKEN_TTL_MINUTES",
        description="Refresh token lifetime (30 days)",
    )
    access_token_reissue_threshold_minutes: int = env_field(
        5,
        "ACCESS_TOKEN_REISSUE_THRESHOLD_MINUTES",
        description="Window before access expiry in which a refresh is accepted",
    )
    signup_code_ttl_seconds: int = env_field(300, "SIGNUP_CODE_TTL_SECONDS")
    reset_password_code_ttl_seconds: int = env_field(
        300, "RESET_PASSWORD_CODE_TTL_SECONDS"
    )
    refresh_token_cookie_name: str = env_field(
        "refreshToken", "REFRESH_TOKEN_COOKIE_NAME"
    )
    rate_limit_max_requests: int = env_field(
        5, "RATE_LIMIT_MAX_REQUESTS", description="Requests allowed per window per client"
    )
    rate_limit_window_seconds: int = env_field(10, "RATE_LIMIT_WINDOW_SECONDS")
    trust_forwarded_for: bool = env_field(
        True,
        "TRUST_FORWARDED_FOR",
        description="Use the first X-Forwarded-For entry as the client address",
    )
    cors_allow_origins: list[str] = env_field([], "CORS_ALLOW_ORIGINS")
    # Email service settings; unset host means dev mode (emails are logged)
    smtp_host: str | None = env_field(None, "SMTP_HOST")
    smtp_port: int = env_field(587, "SMTP_PORT")
    smtp_user: str | None = env_field(None, "SMTP_USER")
    smtp_password: str | None = env_field(None, "SMTP_PASSWORD")
    smtp_use_tls: bool = env_field(True, "SMTP_USE_TLS")
    email_from_address: str | None = env_field(None, "EMAIL_FROM_ADDRESS")
    email_from_name: str = env_field("TaskNest", "EMAIL_FROM_NAME")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator(
        "access_token_ttl_minutes",
        "refresh_token_ttl_minutes",
        "signup_code_ttl_seconds",
        "reset_password_code_ttl_seconds",
        "rate_limit_window_seconds",
    )
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("access_token_reissue_threshold_minutes")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @field_validator("jwt_secret", mode="before")
    @classmethod
    def _ensure_jwt_secret(cls, value: str | None, info: ValidationInfo) -> str:
        if value:
            return value
        if info.data.get("test_mode"):
            logger.warning(
                "jwt_secret_generated",
                message="JWT_SECRET unset; using an ephemeral secret for TEST_MODE",
            )
            return secrets.token_urlsafe(64)
        raise ValueError("JWT_SECRET must be set outside TEST_MODE")


@dataclass(frozen=True)
class AuthConfig:
    """Token and verification-code policy, fixed for the life of the process."""

    jwt_secret: str
    access_token_ttl_minutes: int = 30
    refresh_token_ttl_minutes: int = 60 * 24 * 30
    reissue_threshold_minutes: int = 5
    signup_code_ttl_seconds: int = 300
    reset_password_code_ttl_seconds: int = 300

    @classmethod
    def from_settings(cls, settings: Settings) -> "AuthConfig":
        return cls(
            jwt_secret=settings.jwt_secret,
            access_token_ttl_minutes=settings.access_token_ttl_minutes,
            refresh_token_ttl_minutes=settings.refresh_token_ttl_minutes,
            reissue_threshold_minutes=settings.access_token_reissue_threshold_minutes,
            signup_code_ttl_seconds=settings.signup_code_ttl_seconds,
            reset_password_code_ttl_seconds=settings.reset_password_code_ttl_seconds,
        )


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
