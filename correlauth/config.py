from __future__ import annotations

import os
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from correlauth.logging import get_logger

logger = get_logger(__name__)

# 14 days in seconds
DEFAULT_TOKEN_LIFETIME = 14 * 24 * 60 * 60
# One year in seconds
DEFAULT_COOKIE_MAX_AGE = 365 * 24 * 60 * 60


class StoreBackend(str, Enum):
    """Correlation store implementations selectable at startup."""

    MEMORY = "memory"
    REDIS = "redis"
    POSTGRES = "postgres"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for token signing, correlation storage and transport."""

    jwt_secret: str | None = env_field(
        None, "JWT_SECRET", description="Shared HS256 secret; ignored when PRIVATE_KEY is set"
    )
    heroku_app_id: str | None = env_field(None, "HEROKU_APP_ID")
    private_key: str | None = env_field(
        None,
        "PRIVATE_KEY",
        description="Base64-encoded PKCS#1 PEM RSA private key; selects RS256",
    )
    jwt_expires_in: int = env_field(DEFAULT_TOKEN_LIFETIME, "JWT_EXPIRES_IN")
    jwt_issuer: str = env_field("jwt", "JWT_ISSUER")
    jwt_subject: str = env_field("jwt", "JWT_SUBJECT")
    jwt_audience: str = env_field("everyone", "JWT_AUDIENCE")
    correlation_cookie_name: str = env_field("x-correlation-id", "CORRELATION_COOKIE_NAME")
    correlation_cookie_max_age: int = env_field(
        DEFAULT_COOKIE_MAX_AGE, "CORRELATION_COOKIE_MAX_AGE"
    )
    store_backend: StoreBackend = env_field(StoreBackend.MEMORY, "STORE_BACKEND")
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    database_url: str = env_field(
        "postgresql://localhost:5432/correlauth", "DATABASE_URL"
    )
    debug: bool = env_field(
        False,
        "DEBUG",
        description="Expose authentication failure causes on the diagnostic channel; never enable in production.",
    )
    test_mode: bool = env_field(False, "TEST_MODE")

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

    @field_validator("store_backend")
    @classmethod
    def _validate_store_backend(cls, value: StoreBackend) -> StoreBackend:
        return StoreBackend(value)

    @field_validator("jwt_expires_in", "correlation_cookie_max_age")
    @classmethod
    def _positive_seconds(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive number of seconds")
        return value

    @model_validator(mode="after")
    def _fallback_secret(self) -> "Settings":
        if not self.jwt_secret and self.heroku_app_id:
            logger.info("jwt_secret_from_app_id")
            self.jwt_secret = self.heroku_app_id
        return self


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
