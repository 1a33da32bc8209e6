"""
Configuration Module for the Lingosky gateway

This module defines the configuration system for the gateway, using Pydantic for
settings validation and dependency injection through AppKeys.

The Settings class is loaded from environment variables and validated once at
startup into an immutable value. In production an unusable token endpoint is a
startup failure rather than a per-request one. All application components access
settings and shared resources through typed AppKeys.

Key configuration areas include:
- Service identification and networking
- OAuth client registration and the authorization server
- Redis connection and at-rest encryption
- Monitoring and error reporting
"""

import base64
import logging
from typing import Final, List, Literal, Optional
from urllib.parse import urlparse

from aiohttp import ClientSession, web
from cryptography.fernet import Fernet
from pydantic import AliasChoices, Field, RedisDsn, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from redis import asyncio as redis

from social.lingosky.app.metrics import MetricsClient
from social.lingosky.model.store import OAuthStore

logger = logging.getLogger(__name__)


def is_http_url(value: Optional[str], https_only: bool = False) -> bool:
    if not value:
        return False
    parsed = urlparse(value)
    schemes = ("https",) if https_only else ("http", "https")
    return parsed.scheme in schemes and bool(parsed.netloc)


class Settings(BaseSettings):
    """
    Application settings for the gateway.

    Values are read from environment variables (case-insensitive), with defaults
    suitable for development. The instance is frozen after validation.

    Settings are organized into the following categories:
    - Environment and debugging
    - OAuth client and authorization server
    - Redis and encryption
    - Monitoring and observability
    """

    model_config = SettingsConfigDict(frozen=True)

    # Environment and debugging settings
    debug: bool = False
    """
    Enable debug mode for verbose logging and the development routes.
    Set with DEBUG=true environment variable.
    """

    environment: Literal["development", "production"] = "development"
    """
    Deployment environment. Production enables strict token endpoint validation.
    Set with ENVIRONMENT environment variable.
    """

    allowed_origins: str = "*"
    """
    Comma-separated list of origins allowed for CORS, or * for any origin.
    Set with ALLOWED_ORIGINS environment variable.
    """

    # Network settings
    http_port: int = Field(
        default=5100, validation_alias=AliasChoices("http_port", "port")
    )
    """
    HTTP port for the service to listen on.
    Set with PORT or HTTP_PORT environment variable.
    """

    http_timeout: float = 15.0
    """
    Total timeout in seconds for every outbound HTTP request.
    Set with HTTP_TIMEOUT environment variable.
    """

    # OAuth client and authorization server settings
    bsky_issuer: str = "https://bsky.social"
    """
    Authorization server issuer. The authorize URL is derived from it.
    Set with BSKY_ISSUER environment variable.
    """

    client_id: str
    """
    OAuth client id (required, no default).
    Set with CLIENT_ID environment variable.
    """

    redirect_uri: str
    """
    Registered OAuth redirect URI (required, no default).
    Set with REDIRECT_URI environment variable.
    """

    dev_client_id: Optional[str] = None
    """Client id used together with dev_redirect_uri when ?redirect=dev is requested."""

    dev_redirect_uri: Optional[str] = None
    """Redirect URI selected when ?redirect=dev is requested."""

    scope: str = "atproto transition:generic"
    """Scope requested at the authorize endpoint."""

    required_scope: str = "atproto"
    """Scope token a token response must contain before a session is created."""

    token_endpoint: Optional[str] = None
    """
    Token endpoint URL. Required (https) in production, defaults to
    <bsky_issuer>/oauth/token otherwise.
    Set with TOKEN_ENDPOINT environment variable.
    """

    plc_directory_url: str = "https://plc.directory"
    """
    PLC directory used to resolve did:plc subjects to their PDS.
    Set with PLC_DIRECTORY_URL environment variable.
    """

    # Redis and encryption settings
    redis_dsn: RedisDsn = Field(
        "redis://valkey:6379/1",
        validation_alias=AliasChoices("redis_dsn", "redis_url"),
    )  # type: ignore
    """
    Redis connection string for PKCE records and sessions.
    Set with REDIS_DSN or REDIS_URL environment variables.
    """

    encryption_key: Fernet = Fernet(Fernet.generate_key())
    """
    Fernet symmetric encryption key for stored records.
    Can be set to a Fernet object or base64-encoded key string.
    Set with ENCRYPTION_KEY environment variable.
    """

    # Monitoring and error reporting
    sentry_dsn: Optional[str] = None
    """
    Sentry DSN for error reporting. Optional, no error reporting if not set.
    Set with SENTRY_DSN environment variable.
    """

    metrics_backend: Literal["telegraf", "none"] = "none"
    """
    Metrics backend.
    Set with METRICS_BACKEND environment variable.
    """

    statsd_host: str = Field(
        default="telegraf", validation_alias=AliasChoices("statsd_host", "telegraf_host")
    )
    """
    StatsD/Telegraf host for metrics collection.
    Set with TELEGRAF_HOST environment variable.
    """

    statsd_port: int = Field(
        default=8125, validation_alias=AliasChoices("statsd_port", "telegraf_port")
    )
    """
    StatsD/Telegraf port for metrics collection.
    Set with TELEGRAF_PORT environment variable.
    """

    @field_validator("encryption_key", mode="before")
    @classmethod
    def decode_encryption_key(cls, v) -> Fernet:
        """
        Validate and process the encryption_key setting.

        This validator accepts either:
        - An existing Fernet object (for programmatic configuration)
        - A base64-encoded string containing a Fernet key

        Raises:
            ValueError: If the input is neither a Fernet object nor a valid base64 key
        """
        if isinstance(v, Fernet):
            return v
        elif isinstance(v, str):
            key_data = base64.b64decode(v)
            return Fernet(key_data)
        raise ValueError(
            "encryption_key must be a Fernet object or a base64-encoded key string"
        )

    @field_validator("bsky_issuer", "plc_directory_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        if not is_http_url(v):
            raise ValueError(f"{v!r} is not an http(s) URL")
        return v.rstrip("/")

    @field_validator("redirect_uri", "dev_redirect_uri")
    @classmethod
    def check_redirect_uri(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not is_http_url(v):
            raise ValueError(f"{v!r} is not an http(s) URL")
        return v

    @model_validator(mode="after")
    def check_token_endpoint(self) -> "Settings":
        """
        Validate the token endpoint for the selected environment.

        Production refuses to start without an explicit https token endpoint.
        Elsewhere a configured value must still be an http(s) URL.
        """
        if self.environment == "production":
            if not is_http_url(self.token_endpoint, https_only=True):
                raise ValueError(
                    "token_endpoint must be set to an https URL in production"
                )
        elif self.token_endpoint is not None and not is_http_url(self.token_endpoint):
            raise ValueError(f"{self.token_endpoint!r} is not an http(s) URL")
        return self

    @property
    def token_endpoint_url(self) -> str:
        if self.token_endpoint:
            return self.token_endpoint
        return f"{self.bsky_issuer}/oauth/token"

    @property
    def authorize_endpoint_url(self) -> str:
        return f"{self.bsky_issuer}/oauth/authorize"

    @property
    def allowed_origin_list(self) -> List[str]:
        return [
            origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()
        ]

    @property
    def dev_routes_enabled(self) -> bool:
        return self.debug or self.dev_redirect_uri is not None


# Application context keys for dependency injection
SettingsAppKey: Final = web.AppKey("settings", Settings)
"""AppKey for accessing the application settings"""

SessionAppKey: Final = web.AppKey("http_session", ClientSession)
"""AppKey for accessing the shared aiohttp client session"""

RedisClientAppKey: Final = web.AppKey("redis_client", redis.Redis)
"""AppKey for accessing the Redis client"""

OAuthStoreAppKey: Final = web.AppKey("oauth_store", OAuthStore)
"""AppKey for accessing the PKCE record and session store"""

MetricsClientAppKey: Final = web.AppKey("metrics_client", MetricsClient)
"""AppKey for the metrics client"""
