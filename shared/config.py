"""
Shared configuration management for the OAuth Session Lab.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="OAUTH_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")
    user_store_url: str = Field(default="http://localhost:4000")
    token_service_url: str = Field(default="http://localhost:8020")
    http_timeout: float = Field(default=10.0)

    # Redirect handling
    base_url: str = Field(default="http://localhost:3000")
    callback_path: str = Field(default="/callback")

    # Provider credentials; a missing pair disables that provider's grants
    discord_client_id: str = Field(default="")
    discord_client_secret: str = Field(default="")
    github_client_id: str = Field(default="")
    github_client_secret: str = Field(default="")
    google_client_id: str = Field(default="")
    google_client_secret: str = Field(default="")

    # Token and session lifetimes
    default_expires_in: int = Field(default=3600)
    active_session_seconds: int = Field(default=600)
    inactivity_timeout_seconds: int = Field(default=300)
    inactivity_warning_seconds: int = Field(default=60)

    @property
    def redirect_uri(self) -> str:
        """Redirect URI registered with every provider."""
        return f"{self.base_url.rstrip('/')}{self.callback_path}"

    def credentials_for(self, provider_id: str) -> tuple:
        """Return the (client_id, client_secret) pair for a provider."""
        return (
            getattr(self, f"{provider_id}_client_id", ""),
            getattr(self, f"{provider_id}_client_secret", ""),
        )


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


def get_client_config(**overrides) -> BaseConfig:
    """Get configuration for code running outside a service (session manager, mocks)."""
    return BaseConfig(**overrides)


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    """Render a credential for logs without exposing it."""
    if not value:
        return "<unset>"
    return value[:visible] + "..."
