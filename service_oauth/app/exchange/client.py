"""
Provider token exchange client for the OAuth token service.
"""

import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Tuple

import httpx

from shared.clock import Clock, system_clock
from shared.errors import (
    ProfileFetchFailedError,
    ProviderUnavailableError,
    RefreshFailedError,
    TokenExchangeFailedError,
)
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.models import TokenSet, UserProfile
from ..providers.registry import ProviderConfig, ProviderRegistry, ResponseEncoding
from .normalize import (
    DEFAULT_EXPIRES_IN,
    build_token_set,
    normalize_profile,
    parse_token_body,
    select_primary_email,
)

USER_AGENT = "OAuth-Session-Lab/1.0"


class TokenExchangeClient:
    """Executes grants against provider token endpoints and reads user info."""

    def __init__(
        self,
        registry: ProviderRegistry,
        timeout: float = 10.0,
        clock: Clock = system_clock,
        http_client: Optional[httpx.AsyncClient] = None,
        metrics: Optional[MetricsCollector] = None,
        default_expires_in: int = DEFAULT_EXPIRES_IN,
    ):
        self.registry = registry
        self.timeout = timeout
        self.clock = clock
        self.metrics = metrics
        self.default_expires_in = default_expires_in
        self._http_client = http_client
        self.logger = get_logger("oauth.exchange")

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    @staticmethod
    def _headers(extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }
        if extra:
            headers.update(extra)
        return headers

    def _observe(self, provider_id: str, operation: str, started: float) -> None:
        if self.metrics:
            self.metrics.get_metric("oauth_provider_request_duration_seconds").labels(
                provider=provider_id,
                operation=operation
            ).observe(time.time() - started)

    async def _post_token_endpoint(self, provider: ProviderConfig, form: Dict[str, str], operation: str) -> httpx.Response:
        started = time.time()
        try:
            async with self._client() as client:
                return await client.post(
                    provider.token_endpoint,
                    data=form,
                    headers=self._headers({"Content-Type": "application/x-www-form-urlencoded"})
                )
        except httpx.TimeoutException as e:
            self.logger.error("Provider token endpoint timeout", provider=provider.id, operation=operation)
            raise ProviderUnavailableError(provider.id, "Token endpoint timeout") from e
        except httpx.RequestError as e:
            self.logger.error("Provider token endpoint unreachable", provider=provider.id, error=str(e))
            raise ProviderUnavailableError(provider.id, "Token endpoint unavailable") from e
        finally:
            self._observe(provider.id, operation, started)

    async def _get_with_token(self, provider: ProviderConfig, url: str, tokens: TokenSet) -> httpx.Response:
        try:
            async with self._client() as client:
                return await client.get(
                    url,
                    headers=self._headers({"Authorization": f"{tokens.token_type} {tokens.access_token}"})
                )
        except httpx.TimeoutException as e:
            self.logger.error("Provider user-info timeout", provider=provider.id)
            raise ProviderUnavailableError(provider.id, "User-info endpoint timeout") from e
        except httpx.RequestError as e:
            self.logger.error("Provider user-info unreachable", provider=provider.id, error=str(e))
            raise ProviderUnavailableError(provider.id, "User-info endpoint unavailable") from e

    async def request_tokens(self, provider_id: str, code: str, redirect_uri: str) -> TokenSet:
        """Run the authorization_code grant and return the normalized TokenSet."""
        provider = self.registry.get(provider_id)
        if not provider.is_configured:
            raise TokenExchangeFailedError(provider.id, message="Provider credentials are not configured")

        response = await self._post_token_endpoint(
            provider,
            {
                "client_id": provider.client_id,
                "client_secret": provider.client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": redirect_uri,
            },
            operation="exchange"
        )

        if not response.is_success:
            self.logger.error(
                "Token exchange failed",
                provider=provider.id,
                status_code=response.status_code,
                raw_body=response.text
            )
            self._count("oauth_token_exchanges_total", provider.id, "failed")
            raise TokenExchangeFailedError(provider.id, response.status_code, response.text)

        data = self._parse(provider, response)
        tokens = build_token_set(
            data,
            now_ms=self.clock.now_ms(),
            default_scope=provider.scope_string,
            default_expires_in=self.default_expires_in
        )
        self._count("oauth_token_exchanges_total", provider.id, "success")
        self.logger.info("Token exchange succeeded", provider=provider.id, expires_in=tokens.expires_in)
        return tokens

    async def fetch_profile(self, provider_id: str, tokens: TokenSet) -> Dict[str, Any]:
        """Fetch the raw user-info payload with the given access token."""
        provider = self.registry.get(provider_id)
        started = time.time()
        try:
            response = await self._get_with_token(provider, provider.user_info_endpoint, tokens)
        finally:
            self._observe(provider.id, "profile", started)

        if not response.is_success:
            self.logger.error(
                "User profile fetch failed",
                provider=provider.id,
                status_code=response.status_code,
                raw_body=response.text
            )
            raise ProfileFetchFailedError(provider.id, response.status_code, response.text)

        try:
            return response.json()
        except ValueError as e:
            raise ProfileFetchFailedError(provider.id, response.status_code, response.text,
                                          message="User profile was not JSON") from e

    async def fetch_primary_email(self, provider_id: str, tokens: TokenSet) -> Optional[str]:
        """Look up the primary address for providers that hide it from user-info."""
        provider = self.registry.get(provider_id)
        if not provider.emails_endpoint:
            return None

        try:
            response = await self._get_with_token(provider, provider.emails_endpoint, tokens)
        except ProviderUnavailableError as e:
            self.logger.warning("Email lookup unavailable", provider=provider.id, error=e.message)
            return None

        if not response.is_success:
            self.logger.warning("Email lookup failed", provider=provider.id, status_code=response.status_code)
            return None

        try:
            entries = response.json()
        except ValueError:
            self.logger.warning("Email lookup returned malformed body", provider=provider.id)
            return None

        return select_primary_email(entries if isinstance(entries, list) else [])

    async def exchange_code(self, provider_id: str, code: str, redirect_uri: str) -> Tuple[TokenSet, UserProfile]:
        """Exchange an authorization code for tokens and a normalized profile."""
        tokens = await self.request_tokens(provider_id, code, redirect_uri)
        raw_profile = await self.fetch_profile(provider_id, tokens)

        email = None
        if not raw_profile.get("email"):
            email = await self.fetch_primary_email(provider_id, tokens)

        profile = normalize_profile(provider_id, raw_profile, email=email)
        return tokens, profile

    async def refresh(self, provider_id: str, refresh_token: str) -> TokenSet:
        """Run the refresh_token grant. The prior refresh token is kept when none is returned."""
        provider = self.registry.get(provider_id)
        if not provider.is_configured:
            raise RefreshFailedError(provider.id, message="Provider credentials are not configured")

        response = await self._post_token_endpoint(
            provider,
            {
                "client_id": provider.client_id,
                "client_secret": provider.client_secret,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
            operation="refresh"
        )

        if not response.is_success:
            self.logger.warning(
                "Token refresh failed",
                provider=provider.id,
                status_code=response.status_code,
                raw_body=response.text
            )
            self._count("oauth_token_refreshes_total", provider.id, "failed")
            raise RefreshFailedError(provider.id, response.status_code, response.text)

        data = self._parse(provider, response)
        tokens = build_token_set(
            data,
            now_ms=self.clock.now_ms(),
            default_scope=provider.scope_string,
            prior_refresh_token=refresh_token,
            default_expires_in=self.default_expires_in
        )
        self._count("oauth_token_refreshes_total", provider.id, "success")
        self.logger.info("Token refreshed", provider=provider.id, expires_in=tokens.expires_in)
        return tokens

    async def verify_access_token(self, provider_id: str, access_token: str, token_type: str = "Bearer") -> bool:
        """Liveness check: any 2xx from user-info means the token is accepted."""
        provider = self.registry.get(provider_id)
        probe = TokenSet(access_token=access_token, token_type=token_type, expires_in=0, expires_at=0)
        started = time.time()
        try:
            response = await self._get_with_token(provider, provider.user_info_endpoint, probe)
        finally:
            self._observe(provider.id, "verify", started)

        valid = response.is_success
        if self.metrics:
            self.metrics.increment_counter(
                "oauth_token_verifications_total",
                provider=provider.id,
                valid=str(valid).lower()
            )
        self.logger.info("Token liveness checked", provider=provider.id, valid=valid)
        return valid

    @staticmethod
    def _parse(provider: ProviderConfig, response: httpx.Response) -> Dict[str, Any]:
        return parse_token_body(
            provider.id,
            response.text,
            response.headers.get("content-type", ""),
            prefer_form=provider.response_encoding == ResponseEncoding.FORM
        )

    def is_token_expired(self, tokens: TokenSet) -> bool:
        return tokens.is_expired(self.clock.now_ms())

    def _count(self, metric: str, provider_id: str, status: str) -> None:
        if self.metrics:
            self.metrics.increment_counter(metric, provider=provider_id, status=status)
