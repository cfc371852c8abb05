# Runtime configuration.
# Created: 2026-02-20
#
# Settings are read from AUTHGATE_* environment variables (or a .env file)
# once, then handed to the engines at construction time.

from __future__ import annotations

import logging
import secrets

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Authorization server settings."""

    model_config = SettingsConfigDict(
        env_prefix="AUTHGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server
    host: str = Field(default="127.0.0.1", description="Bind address for `authgate serve`")
    port: int = Field(default=8890, description="Bind port for `authgate serve`")
    cors_allowed_origins: list[str] = Field(default_factory=list)
    issuer: str = Field(default="http://localhost:8890", description="`iss` of issued ID tokens")
    login_url: str = Field(default="/login", description="Where unauthenticated users are sent")

    # Signing
    jwt_secret: str = Field(default="", description="HMAC key for access and ID tokens")
    jwt_algorithm: str = Field(default="HS256")
    user_jwt_secret: str = Field(
        default="",
        description="Key for end-user session bearer tokens (falls back to jwt_secret)",
    )

    # Token lifetimes, in seconds
    access_token_ttl: int = 3600
    refresh_token_ttl: int = 604800
    client_credentials_ttl: int = 3600
    auth_code_ttl: int = 600

    # Device authorization (RFC 8628)
    device_code_ttl: int = 1800
    device_poll_interval: int = 5
    device_verification_uri: str = "/oauth/device"

    # CIBA
    ciba_default_expiry: int = 600
    ciba_min_expiry: int = 60
    ciba_max_expiry: int = 1800
    ciba_poll_interval: int = 5

    # Pushed authorization requests (RFC 9126)
    par_ttl: int = Field(default=90, description="Lifetime of a pushed request_uri, in seconds")
    require_pushed_authorization_requests: bool = False

    # Scopes and clients
    default_scopes: list[str] = Field(default_factory=list)
    restricted_scopes: list[str] = Field(
        default_factory=lambda: ["*", "admin"],
        description="Granted only to clients that list them in allowed_scopes",
    )
    client_secret_length: int = 64
    hash_client_secrets: bool = False
    admin_client_id: str = Field(
        default="", description="Client registered at startup with allowed_scopes=['admin']"
    )
    admin_client_secret: str = ""

    # mTLS: certificate headers are only read from these peers
    trusted_proxy_ips: list[str] = Field(
        default_factory=list,
        description="Addresses of TLS terminators allowed to forward client certificates",
    )

    # Background work
    sweep_interval: int = 300
    notification_timeout: float = 5.0
    user_prompt_webhook_url: str = Field(
        default="",
        description="Optional endpoint that receives CIBA approval prompts for end users",
    )
    audit_log_path: str = Field(default="", description="JSONL audit log (empty: ~/.authgate)")

    @model_validator(mode="after")
    def _ensure_secrets(self) -> Settings:
        if not self.jwt_secret:
            logger.warning(
                "AUTHGATE_JWT_SECRET is not set; using a random per-process secret. "
                "Tokens will not survive a restart."
            )
            self.jwt_secret = secrets.token_urlsafe(48)
        if not self.user_jwt_secret:
            self.user_jwt_secret = self.jwt_secret
        return self

    @classmethod
    def load(cls) -> Settings:
        """Build settings from the environment."""
        return cls()


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None
