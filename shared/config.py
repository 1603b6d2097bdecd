"""
Shared configuration management for the CourtListener Proxy.
"""

from typing import Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_UPSTREAM_BASE_URL = "https://www.courtlistener.com/api/rest/v4"


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="PROXY_",
        env_file=".env",
        case_sensitive=False,
        extra="allow",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Key-value backend
    redis_url: str = Field(default="redis://localhost:6379/0")
    redis_socket_timeout: float = Field(default=2.0)

    # Upstream API
    upstream_base_url: str = Field(default=DEFAULT_UPSTREAM_BASE_URL)
    upstream_api_token: Optional[SecretStr] = Field(default=None)
    upstream_auth_scheme: str = Field(default="Token")
    upstream_timeout_seconds: float = Field(default=30.0, gt=0, le=30.0)

    # Inbound limits and response headers
    cors_allow_origin: str = Field(default="*")
    max_body_bytes: int = Field(default=1024 * 1024, gt=0)

    # Webhooks
    idempotency_retention_seconds: int = Field(default=7 * 24 * 3600, gt=0)

    @property
    def has_upstream_token(self) -> bool:
        """Whether a non-empty upstream credential is configured."""
        return bool(self.upstream_api_token and self.upstream_api_token.get_secret_value())


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
