"""
Provider registry for the OAuth token service.
"""

from enum import Enum
from typing import Dict, Iterable, Optional, Tuple
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict

from shared.config import BaseConfig, mask_secret
from shared.errors import InvalidProviderError
from shared.logging import get_logger


class ResponseEncoding(str, Enum):
    """Encoding a provider uses for token endpoint success bodies; FORM makes the parser try query-string decoding first."""
    JSON = "json"
    FORM = "form"


class ProviderConfig(BaseModel):
    """Immutable configuration for one identity provider."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    auth_endpoint: str
    token_endpoint: str
    user_info_endpoint: str
    emails_endpoint: Optional[str] = None
    scopes: Tuple[str, ...]
    response_encoding: ResponseEncoding = ResponseEncoding.JSON
    extra_auth_params: Tuple[Tuple[str, str], ...] = ()
    client_id: str = ""
    client_secret: str = ""

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @property
    def scope_string(self) -> str:
        return " ".join(self.scopes)


_OFFLINE_CONSENT = (("access_type", "offline"), ("prompt", "consent"))

PROVIDER_DEFINITIONS: Dict[str, dict] = {
    "discord": {
        "name": "Discord",
        "auth_endpoint": "https://discord.com/api/oauth2/authorize",
        "token_endpoint": "https://discord.com/api/oauth2/token",
        "user_info_endpoint": "https://discord.com/api/users/@me",
        "scopes": ("identify", "email"),
        "response_encoding": ResponseEncoding.JSON,
    },
    "github": {
        "name": "GitHub",
        "auth_endpoint": "https://github.com/login/oauth/authorize",
        "token_endpoint": "https://github.com/login/oauth/access_token",
        "user_info_endpoint": "https://api.github.com/user",
        "emails_endpoint": "https://api.github.com/user/emails",
        "scopes": ("user:email", "read:user"),
        "response_encoding": ResponseEncoding.FORM,
        "extra_auth_params": _OFFLINE_CONSENT,
    },
    "google": {
        "name": "Google",
        "auth_endpoint": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_endpoint": "https://oauth2.googleapis.com/token",
        "user_info_endpoint": "https://www.googleapis.com/oauth2/v3/userinfo",
        "scopes": ("openid", "profile", "email"),
        "response_encoding": ResponseEncoding.JSON,
        "extra_auth_params": _OFFLINE_CONSENT,
    },
}


class ProviderRegistry:
    """Read-only lookup of provider configurations."""

    def __init__(self, providers: Iterable[ProviderConfig]):
        self._providers: Dict[str, ProviderConfig] = {p.id: p for p in providers}
        self.logger = get_logger("oauth.providers")

    def get(self, provider_id: Optional[str]) -> ProviderConfig:
        """Return the provider config or raise InvalidProviderError."""
        provider = self._providers.get(provider_id or "")
        if provider is None:
            raise InvalidProviderError(provider_id)
        return provider

    def ids(self) -> Tuple[str, ...]:
        return tuple(self._providers)

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._providers

    def build_authorization_url(self, provider_id: str, state: str, redirect_uri: str) -> str:
        """Build the provider authorize URL for the code flow."""
        provider = self.get(provider_id)
        params = [
            ("client_id", provider.client_id),
            ("redirect_uri", redirect_uri),
            ("scope", provider.scope_string),
            ("response_type", "code"),
            ("state", state),
        ]
        params.extend(provider.extra_auth_params)
        return f"{provider.auth_endpoint}?{urlencode(params)}"


def build_registry(config: BaseConfig) -> ProviderRegistry:
    """Combine the static provider table with credentials from configuration."""
    logger = get_logger("oauth.providers")
    providers = []
    for provider_id, definition in PROVIDER_DEFINITIONS.items():
        client_id, client_secret = config.credentials_for(provider_id)
        provider = ProviderConfig(
            id=provider_id,
            client_id=client_id or "",
            client_secret=client_secret or "",
            **definition
        )
        if not provider.is_configured:
            logger.warning(
                "Provider credentials missing; grants will fail",
                provider=provider_id,
                client_id=mask_secret(client_id)
            )
        providers.append(provider)
    return ProviderRegistry(providers)
