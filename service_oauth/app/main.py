"""
OAuth token service for the OAuth Session Lab.
"""

import secrets
from typing import Optional

from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.clock import Clock, system_clock
from shared.errors import (
    MissingParametersError,
    OAuthLabException,
    UnknownUserError,
)
from shared.logging import set_user_context
from .exchange import TokenExchangeClient
from .persistence import UserStoreClient
from .providers import build_registry
from .schemas import AuthorizeResponse, RefreshResponse, TokenRequest, VerifyRequest


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


class OAuthService(BaseService):
    """Token service implementation."""

    def __init__(
        self,
        exchange_client: Optional[TokenExchangeClient] = None,
        user_store: Optional[UserStoreClient] = None,
        clock: Clock = system_clock,
        **config_overrides
    ):
        super().__init__("oauth", 8020, **config_overrides)
        self.clock = clock
        self.registry = build_registry(self.config)
        self.exchange_client = exchange_client or TokenExchangeClient(
            self.registry,
            timeout=self.config.http_timeout,
            clock=clock,
            metrics=self.metrics,
            default_expires_in=self.config.default_expires_in
        )
        self.user_store = user_store or UserStoreClient(
            self.config.user_store_url,
            timeout=self.config.http_timeout,
            clock=clock
        )

        self._setup_oauth_routes()

    def _setup_oauth_routes(self):
        """Set up token-service routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "oauth",
                "message": "OAuth Session Lab - Token Service",
                "version": "1.0.0",
                "providers": list(self.registry.ids())
            }

        @self.app.post("/oauth/token")
        async def token(request: TokenRequest):
            """Authorization code exchange, or refresh when a refresh token is sent."""
            if request.is_refresh:
                return await self._handle_refresh(request)
            return await self._handle_exchange(request)

        @self.app.post("/oauth/verify")
        async def verify(request: VerifyRequest):
            """Provider liveness check for an access token."""
            if not (request.access_token and request.token_type and request.provider):
                return self._failure(MissingParametersError())
            if request.provider not in self.registry:
                return _error(400, "Invalid provider")

            try:
                valid = await self.exchange_client.verify_access_token(
                    request.provider,
                    request.access_token,
                    request.token_type
                )
            except OAuthLabException as e:
                self.logger.error("Token verification error", provider=request.provider, error=e.message)
                self.metrics.record_error(e.code)
                return _error(500, "Internal server error")

            if valid:
                return {"valid": True}
            return JSONResponse(status_code=401, content={"valid": False})

        @self.app.get("/oauth/authorize/{provider}", response_model=AuthorizeResponse)
        async def authorize(provider: str, state: Optional[str] = None):
            """Build the provider authorize URL for the code flow."""
            if provider not in self.registry:
                return _error(400, "Invalid provider")
            state = state or secrets.token_urlsafe(24)
            url = self.registry.build_authorization_url(provider, state, self.config.redirect_uri)
            self.metrics.record_business_event("authorize_url_issued")
            return AuthorizeResponse(url=url, state=state)

    async def _handle_refresh(self, request: TokenRequest):
        set_user_context(request.user_id, request.provider)
        try:
            tokens = await self.exchange_client.refresh(request.provider, request.refresh_token)

            user = await self.user_store.get_user(request.user_id, request.provider)
            if user is None:
                raise UnknownUserError(request.user_id)

            await self.user_store.save_tokens(tokens, request.user_id, request.provider)
        except UnknownUserError as e:
            self.logger.warning("Refresh for unknown user", user_id=request.user_id, provider=request.provider)
            self.metrics.record_error(e.code)
            return _error(404, e.message)
        except OAuthLabException as e:
            return self._failure(e)

        self.metrics.record_business_event("token_refreshed")
        return RefreshResponse(tokens=tokens).model_dump()

    async def _handle_exchange(self, request: TokenRequest):
        if not (request.code and request.provider and request.state):
            return self._failure(MissingParametersError())

        set_user_context(None, request.provider)
        try:
            tokens, profile = await self.exchange_client.exchange_code(
                request.provider,
                request.code,
                self.config.redirect_uri
            )
        except OAuthLabException as e:
            return self._failure(e)

        set_user_context(profile.id, profile.provider)
        saved_user = await self.user_store.save_user(profile)
        await self.user_store.save_tokens(tokens, profile.id, profile.provider)

        now = self.clock.now_ms()
        self.metrics.record_business_event("user_authenticated")
        self.logger.info("User authenticated", provider=profile.provider, user_id=profile.id)
        return {
            "user": saved_user,
            "tokens": tokens.model_dump(),
            "created_at": now,
            "updated_at": now,
        }

    def _failure(self, exc: OAuthLabException) -> JSONResponse:
        """Map a typed failure onto the route's ``{error}`` body."""
        self.metrics.record_error(exc.code)
        if exc.status_code >= 500:
            self.logger.error("Provider unavailable", code=exc.code, error=exc.message, **exc.details)
            return _error(500, "Internal server error")
        self.logger.warning("Grant failed", code=exc.code, error=exc.message, **exc.details)
        return _error(400, exc.message)

    async def _check_dependencies(self):
        """Check token-service dependencies."""
        dependencies = {}

        dependencies["user_store"] = "ok" if await self.user_store.health_check() else "error"

        for provider_id in self.registry.ids():
            provider = self.registry.get(provider_id)
            dependencies[f"provider_{provider_id}"] = "configured" if provider.is_configured else "unconfigured"

        return dependencies


def create_app():
    """Create FastAPI application."""
    service = OAuthService()
    return service.app


if __name__ == "__main__":
    service = OAuthService()
    service.run()
