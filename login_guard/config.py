"""Application configuration and environment validation."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .rate_limit import RateLimitConfig


REQUIRED_ENV_VARS = [
    "SUPABASE_URL",
    "SUPABASE_ANON_KEY",
    "LOG_LEVEL",
]

MINUTE_MS = 60 * 1000


class ConfigError(RuntimeError):
    """Raised when the environment configuration is invalid."""


class RateLimitPolicies(BaseModel):
    """Named policies handed to the limiter by each call site."""

    model_config = ConfigDict(frozen=True)

    login: RateLimitConfig
    api: RateLimitConfig


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    supabase_url: str = Field(..., alias="SUPABASE_URL")
    supabase_anon_key: str = Field(..., alias="SUPABASE_ANON_KEY")
    log_level: str = Field(..., alias="LOG_LEVEL")
    trust_forwarded_for: bool = Field(False, alias="TRUST_FORWARDED_FOR")

    login_max_attempts: int = Field(5, alias="LOGIN_MAX_ATTEMPTS")
    login_window_ms: float = Field(15 * MINUTE_MS, alias="LOGIN_WINDOW_MS")
    login_block_duration_ms: float = Field(30 * MINUTE_MS, alias="LOGIN_BLOCK_DURATION_MS")

    api_max_requests: int = Field(100, alias="API_MAX_REQUESTS")
    api_window_ms: float = Field(MINUTE_MS, alias="API_WINDOW_MS")
    api_block_duration_ms: float = Field(5 * MINUTE_MS, alias="API_BLOCK_DURATION_MS")

    limiter_stale_after_ms: float = Field(24 * 60 * MINUTE_MS, alias="LIMITER_STALE_AFTER_MS")
    limiter_sweep_interval_seconds: float = Field(300.0, alias="LIMITER_SWEEP_INTERVAL_SECONDS")

    @field_validator("supabase_url", "supabase_anon_key", "log_level")
    @classmethod
    def non_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("supabase_url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("SUPABASE_URL must be an http(s) URL")
        return value.rstrip("/")

    @field_validator("limiter_stale_after_ms", "limiter_sweep_interval_seconds")
    @classmethod
    def validate_sweep(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("limiter sweep settings must be positive")
        return value

    def policies(self) -> RateLimitPolicies:
        return RateLimitPolicies(
            login=RateLimitConfig(
                window_ms=self.login_window_ms,
                max_attempts=self.login_max_attempts,
                block_duration_ms=self.login_block_duration_ms,
            ),
            api=RateLimitConfig(
                window_ms=self.api_window_ms,
                max_attempts=self.api_max_requests,
                block_duration_ms=self.api_block_duration_ms,
            ),
        )


def _missing_required_env() -> list[str]:
    return [key for key in REQUIRED_ENV_VARS if key not in os.environ or os.environ[key] == ""]


def load_settings() -> Settings:
    missing = _missing_required_env()
    if missing:
        raise ConfigError(f"Missing required environment variables: {', '.join(sorted(missing))}")
    try:
        env_values = {
            field.alias: os.environ.get(field.alias)
            for field in Settings.model_fields.values()
            if field.alias and os.environ.get(field.alias) is not None
        }
        settings = Settings(**env_values)
        # Build the policies once so a bad override fails at load time.
        settings.policies()
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc
    return settings


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


def reset_settings_cache() -> None:
    get_settings.cache_clear()  # type: ignore[attr-defined]


def is_environment_valid() -> tuple[bool, Optional[str]]:
    try:
        reset_settings_cache()
        get_settings()
    except ConfigError as exc:
        return False, str(exc)
    return True, None
