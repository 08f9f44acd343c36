from __future__ import annotations

import os
import secrets
import tempfile
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from apptokens.logging import get_logger

logger = get_logger(__name__)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the token service."""

    shared_fs_root: str = env_field("/srv/apptokens", "SHARED_FS_ROOT")
    token_secret: str = env_field(
        None,
        "TOKEN_SECRET",
        validate_default=True,
        description="HMAC key for stored token hashes; generated and persisted when unset",
    )
    session_ttl_minutes: int = env_field(
        24 * 60,
        "SESSION_TTL_MINUTES",
        description="Idle lifetime of session-derived tokens",
    )
    activity_update_interval_seconds: int = env_field(
        60,
        "ACTIVITY_UPDATE_INTERVAL_SECONDS",
        description="Minimum delay between two last-activity writes for one token",
    )
    password_confirmation_ttl_minutes: int = env_field(
        30,
        "PASSWORD_CONFIRMATION_TTL_MINUTES",
        description="How long a password confirmation allows creating app passwords",
    )
    token_cleanup_interval_seconds: int = env_field(
        300,
        "TOKEN_CLEANUP_INTERVAL_SECONDS",
        description="Interval of the expired session token sweep",
    )
    activity_history_size: int = env_field(1000, "ACTIVITY_HISTORY_SIZE")
    cookie_secure: bool = env_field(True, "COOKIE_SECURE")
    cors_allow_origins: list[str] = env_field([], "CORS_ALLOW_ORIGINS")
    cors_allow_credentials: bool = env_field(True, "CORS_ALLOW_CREDENTIALS")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Toggle deterministic testing behaviors",
    )

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
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("session_ttl_minutes", "password_confirmation_ttl_minutes")
    @classmethod
    def _positive_minutes(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive number of minutes")
        return value

    @field_validator("token_secret", mode="before")
    @classmethod
    def _ensure_token_secret(cls, value: str | None) -> str:
        if value:
            return value
        # Persist a generated secret so stored token hashes stay valid across restarts
        fs_root = Path(os.getenv("SHARED_FS_ROOT", "/srv/apptokens"))
        secret_path = fs_root / ".token_secret"

        try:
            fs_root.mkdir(parents=True, exist_ok=True)
            os.chmod(fs_root, 0o700)
        except PermissionError:
            # Directory may already exist with different permissions (e.g., in container)
            pass
        except OSError as exc:
            logger.warning(
                "token_secret_dir_setup",
                error=str(exc),
                path=str(fs_root),
            )

        if secret_path.exists() and not secret_path.is_symlink():
            try:
                persisted = secret_path.read_text().strip()
                if persisted and len(persisted) >= 32:
                    return persisted
            except OSError as exc:
                logger.error(
                    "token_secret_read_failed", error=str(exc), path=str(secret_path)
                )

        generated = secrets.token_urlsafe(64)
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=str(fs_root), prefix=".token_secret_", suffix=".tmp"
            )
            try:
                os.write(fd, generated.encode())
                os.fchmod(fd, 0o600)
            finally:
                os.close(fd)
            os.rename(tmp_path, str(secret_path))
        except OSError as exc:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            logger.error(
                "token_secret_persist_failed", error=str(exc), path=str(secret_path)
            )
            raise RuntimeError(
                "Unable to persist token secret; set TOKEN_SECRET or make SHARED_FS_ROOT writable"
            ) from exc
        return generated


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
