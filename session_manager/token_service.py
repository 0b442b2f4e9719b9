"""
Client for the OAuth token service.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx

from shared.errors import ProviderUnavailableError, TokenExchangeFailedError
from shared.logging import get_logger
from shared.models import TokenSet, UserSession


class TokenServiceClient:
    """Client for communicating with the token service."""

    def __init__(
        self,
        token_service_url: str,
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.token_service_url = token_service_url.rstrip('/')
        self.timeout = timeout
        self._http_client = http_client
        self.logger = get_logger("oauth.session.token_service")

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    async def exchange(self, code: str, provider: str, state: str) -> UserSession:
        """Exchange an authorization code for a full user session."""
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.token_service_url}/oauth/token",
                    json={"code": code, "provider": provider, "state": state}
                )
        except httpx.TimeoutException as e:
            self.logger.error("Token service timeout", provider=provider)
            raise ProviderUnavailableError("token_service", "Token service timeout") from e
        except httpx.RequestError as e:
            self.logger.error("Token service request error", provider=provider, error=str(e))
            raise ProviderUnavailableError("token_service", "Token service unavailable") from e

        if response.status_code != 200:
            self.logger.warning(
                "Code exchange rejected",
                provider=provider,
                status_code=response.status_code
            )
            raise TokenExchangeFailedError(
                provider,
                response.status_code,
                response.text,
                message=_error_message(response, "Token exchange failed")
            )

        return UserSession.model_validate(response.json())

    async def refresh(self, refresh_token: str, provider: str, user_id: str) -> Optional[TokenSet]:
        """Refresh through the token service. None on any failure."""
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.token_service_url}/oauth/token",
                    json={
                        "grant_type": "refresh_token",
                        "refresh_token": refresh_token,
                        "provider": provider,
                        "user_id": user_id,
                    }
                )
        except httpx.RequestError as e:
            self.logger.error("Token service request error", provider=provider, error=str(e))
            return None

        if response.status_code != 200:
            self.logger.warning(
                "Token refresh failed",
                provider=provider,
                status_code=response.status_code,
                error=_error_message(response, "")
            )
            return None

        try:
            tokens = TokenSet.model_validate(response.json()["tokens"])
        except (KeyError, TypeError, ValueError) as e:
            self.logger.error("Malformed refresh response", provider=provider, error=str(e))
            return None

        return tokens.with_refresh_token(refresh_token)

    async def verify(self, tokens: TokenSet, provider: str) -> bool:
        """Ask the token service whether the provider still accepts the access token."""
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.token_service_url}/oauth/verify",
                    json={
                        "access_token": tokens.access_token,
                        "token_type": tokens.token_type,
                        "provider": provider,
                    }
                )
        except httpx.RequestError as e:
            self.logger.error("Token verification error", provider=provider, error=str(e))
            return False

        if not response.is_success:
            return False

        try:
            return response.json().get("valid") is True
        except ValueError:
            return False

    async def health_check(self) -> bool:
        """Check if the token service is healthy."""
        try:
            async with self._client() as client:
                response = await client.get(f"{self.token_service_url}/health")
                return response.status_code == 200
        except httpx.RequestError:
            return False


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or default
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return default
