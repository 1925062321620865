from __future__ import annotations

import os
import secrets
import tempfile
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from notevault.logging import get_logger

logger = get_logger(__name__)

MIN_SECRET_LENGTH = 16


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


def _load_or_create_secret(filename: str) -> str:
    """Return a signing secret persisted under DATA_ROOT, creating it once.

    Tokens must stay valid across restarts, so a generated secret is written
    with 0600 permissions and reused on the next start.
    """
    data_root = Path(os.getenv("DATA_ROOT", "/srv/notevault"))
    secret_path = data_root / filename
    try:
        data_root.mkdir(parents=True, exist_ok=True)
        os.chmod(data_root, 0o700)
    except PermissionError:
        pass
    except OSError as exc:
        logger.warning("secret_dir_setup", error=str(exc), path=str(data_root))

    if secret_path.exists() and not secret_path.is_symlink():
        try:
            persisted = secret_path.read_text().strip()
            if len(persisted) >= MIN_SECRET_LENGTH:
                return persisted
        except OSError as exc:
            logger.error("secret_read_failed", error=str(exc), path=str(secret_path))

    generated = secrets.token_urlsafe(64)
    fd, tmp_path = tempfile.mkstemp(dir=str(data_root), prefix=f"{filename}_", suffix=".tmp")
    try:
        try:
            os.write(fd, generated.encode())
            os.fchmod(fd, 0o600)
        finally:
            os.close(fd)
        os.rename(tmp_path, str(secret_path))
    except OSError as exc:
        Path(tmp_path).unlink(missing_ok=True)
        logger.error("secret_persist_failed", error=str(exc), path=str(secret_path))
        raise RuntimeError(
            f"Unable to persist {filename}; set the secret env var or make DATA_ROOT writable"
        ) from exc
    logger.warning("secret_generated", path=str(secret_path))
    return generated


class Settings(BaseModel):
    """Runtime settings, each field bound to one environment variable."""

    database_url: str = env_field(
        "postgresql://localhost:5432/notevault", "DATABASE_URL"
    )
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    data_root: str = env_field("/srv/notevault", "DATA_ROOT")
    test_mode: bool = env_field(False, "TEST_MODE")

    # Token signing
    jwt_secret: str = env_field(
        None,
        "JWT_SECRET",
        description="Access-token signing secret",
        validate_default=True,
    )
    refresh_token_secret: str = env_field(
        None,
        "REFRESH_TOKEN_SECRET",
        description="Refresh-token signing secret",
        validate_default=True,
    )
    jwt_issuer: str = env_field("notevault", "JWT_ISSUER")
    jwt_audience: str = env_field("notevault-clients", "JWT_AUDIENCE")
    access_token_ttl_minutes: int = env_field(15, "ACCESS_TOKEN_TTL_MINUTES")
    refresh_token_ttl_minutes: int = env_field(
        7 * 24 * 60, "REFRESH_TOKEN_TTL_MINUTES"
    )
    max_refresh_tokens: int = env_field(
        5,
        "MAX_REFRESH_TOKENS",
        description="Live refresh tokens kept per user; oldest are evicted first",
    )

    # GitHub OAuth
    github_client_id: str | None = env_field(None, "GITHUB_CLIENT_ID")
    github_client_secret: str | None = env_field(None, "GITHUB_CLIENT_SECRET")
    github_callback_url: str | None = env_field(None, "GITHUB_CALLBACK_URL")
    github_scope: str = env_field("read:user user:email", "GITHUB_SCOPE")
    oauth_http_timeout_seconds: float = env_field(10.0, "OAUTH_HTTP_TIMEOUT_SECONDS")
    oauth_state_ttl_seconds: int = env_field(600, "OAUTH_STATE_TTL_SECONDS")
    frontend_url: str = env_field("http://localhost:3000", "FRONTEND_URL")
    cookie_secure: bool = env_field(False, "COOKIE_SECURE")

    # HTTP
    cors_allow_origins: list[str] = env_field(
        [
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:3000",
        ],
        "CORS_ALLOW_ORIGINS",
    )
    default_page_size: int = env_field(10, "DEFAULT_PAGE_SIZE")
    max_page_size: int = env_field(100, "MAX_PAGE_SIZE")

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

    @field_validator("jwt_secret", mode="before")
    @classmethod
    def _ensure_jwt_secret(cls, value: str | None) -> str:
        if value:
            return value
        return _load_or_create_secret(".jwt_secret")

    @field_validator("refresh_token_secret", mode="before")
    @classmethod
    def _ensure_refresh_secret(cls, value: str | None) -> str:
        if value:
            return value
        return _load_or_create_secret(".refresh_token_secret")

    @field_validator("access_token_ttl_minutes", "refresh_token_ttl_minutes", "max_refresh_tokens")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @model_validator(mode="after")
    def _check_secrets(self) -> "Settings":
        for name in ("jwt_secret", "refresh_token_secret"):
            if len(getattr(self, name)) < MIN_SECRET_LENGTH:
                raise ValueError(f"{name} must be at least {MIN_SECRET_LENGTH} characters")
        # A leaked access secret must not be able to mint refresh tokens
        if self.jwt_secret == self.refresh_token_secret:
            raise ValueError("jwt_secret and refresh_token_secret must differ")
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
