from __future__ import annotations

import os
import secrets
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from clinicauth.logging import get_logger

logger = get_logger(__name__)

_SAMESITE_VALUES = {"strict", "lax", "none"}


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the clinic auth service, read once at startup."""

    database_url: str = env_field(
        "postgresql://localhost:5432/clinic", "DATABASE_URL"
    )
    redis_url: str | None = env_field("redis://localhost:6379/0", "REDIS_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    memory_store_path: str | None = env_field(
        None,
        "MEMORY_STORE_PATH",
        description="Directory where the in-memory store snapshots its state",
    )
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Relaxes secret requirements and allows runtime resets in tests.",
    )
    log_level: str = env_field("INFO", "LOG_LEVEL")

    # Access tokens
    jwt_secret: str | None = env_field(None, "JWT_SECRET")
    jwt_algorithm: str = env_field(
        "HS256", "JWT_ALGORITHM", description="Informational; only HS256 is accepted."
    )
    jwt_issuer: str = env_field("clinic-api", "JWT_ISSUER")
    jwt_access_ttl: int = env_field(
        900, "JWT_ACCESS_TTL", description="Access token lifetime in seconds"
    )
    jwt_refresh_ttl: int = env_field(
        604800, "JWT_REFRESH_TTL", description="Refresh token lifetime in seconds"
    )

    # CSRF
    csrf_ttl: int = env_field(3600, "CSRF_TTL", description="CSRF token lifetime in seconds")

    # Field encryption
    encryption_key: str | None = env_field(None, "ENCRYPTION_KEY")
    hash_secret: str | None = env_field(
        None,
        "HASH_SECRET",
        description="Key for the lookup hash of encrypted fields (email_hash)",
    )

    # Cookies
    refresh_cookie_name: str = env_field("refresh_token", "REFRESH_COOKIE_NAME")
    refresh_cookie_secure: bool = env_field(False, "REFRESH_COOKIE_SECURE")
    refresh_cookie_samesite: str = env_field("strict", "REFRESH_COOKIE_SAMESITE")
    refresh_cookie_path: str = env_field("/api", "REFRESH_COOKIE_PATH")
    session_cookie_name: str = env_field("session_id", "SESSION_COOKIE_NAME")

    # Maintenance
    session_stale_days: int = env_field(
        30, "SESSION_STALE_DAYS", description="Idle sessions older than this are purged"
    )

    cors_allow_origins: list[str] = env_field([], "CORS_ALLOW_ORIGINS")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, Any] = {}
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

    @field_validator("refresh_cookie_samesite")
    @classmethod
    def _validate_samesite(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in _SAMESITE_VALUES:
            raise ValueError(
                f"REFRESH_COOKIE_SAMESITE must be one of {sorted(_SAMESITE_VALUES)}"
            )
        return normalized

    @field_validator("jwt_algorithm")
    @classmethod
    def _validate_algorithm(cls, value: str) -> str:
        if value.upper() != "HS256":
            raise ValueError("only HS256 access tokens are supported")
        return "HS256"

    @field_validator("jwt_access_ttl", "jwt_refresh_ttl", "csrf_ttl", "session_stale_days")
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("TTL values must be positive")
        return value

    @model_validator(mode="after")
    def _ensure_secrets(self) -> "Settings":
        # Outside test mode every secret must come from the environment
        for name in ("jwt_secret", "encryption_key", "hash_secret"):
            if getattr(self, name):
                continue
            if not self.test_mode:
                raise ValueError(f"{name.upper()} must be set")
            generated = secrets.token_urlsafe(48)
            logger.warning(
                "secret_generated_for_test_mode",
                setting=name.upper(),
                message="Ephemeral secret; data encrypted with it is unreadable after restart",
            )
            setattr(self, name, generated)
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
