"""
Login initiation and provider callback handling.
"""

import secrets
from typing import Optional, Protocol

from shared.errors import OAuthLabException, StateMismatchError
from shared.logging import get_logger, set_user_context
from shared.models import CallbackResult, CallbackStatus, UserSession
from .store import SessionStore


class AuthorizationUrlBuilder(Protocol):
    def get(self, provider_id: Optional[str]): ...

    def build_authorization_url(self, provider_id: str, state: str, redirect_uri: str) -> str: ...


class CodeExchanger(Protocol):
    async def exchange(self, code: str, provider: str, state: str) -> UserSession: ...


def generate_state() -> str:
    """Unpredictable CSRF state for one authorization round-trip."""
    return secrets.token_urlsafe(32)


class LoginInitiator:
    """Starts the authorization-code flow, one login at a time."""

    def __init__(self, store: SessionStore, registry: AuthorizationUrlBuilder, redirect_uri: str):
        self.store = store
        self.registry = registry
        self.redirect_uri = redirect_uri
        self.in_progress = False
        self.logger = get_logger("oauth.session.login")

    def begin(self, provider: str) -> Optional[str]:
        """Save a fresh state and return the provider authorize URL.

        Returns None while another login is in flight or when the provider
        has no client credentials. Unknown providers raise InvalidProviderError.
        """
        if self.in_progress:
            self.logger.info("Login already in progress", provider=provider)
            return None

        config = self.registry.get(provider)
        if not config.is_configured:
            self.logger.warning("Provider not configured", provider=provider)
            return None

        self.in_progress = True
        state = generate_state()
        self.store.save_state(state, provider)
        self.logger.info("Login started", provider=provider)
        return self.registry.build_authorization_url(provider, state, self.redirect_uri)

    def reset(self) -> None:
        self.in_progress = False


class CallbackHandler:
    """Processes the provider redirect back to the relying party."""

    def __init__(self, store: SessionStore, token_service: CodeExchanger):
        self.store = store
        self.token_service = token_service
        self.logger = get_logger("oauth.session.callback")

    async def handle(
        self,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
        error_description: Optional[str] = None,
    ) -> CallbackResult:
        if error:
            self.logger.warning("Provider returned an error", error=error)
            return CallbackResult(
                status=CallbackStatus.ERROR,
                message="Authentication failed",
                details=error_description or error,
            )

        if not code or not state:
            return CallbackResult(
                status=CallbackStatus.ERROR,
                message="Missing authorization code or state parameter",
                details="The OAuth provider did not return the required parameters",
            )

        try:
            provider = self._check_state(state)
        except StateMismatchError as e:
            self.logger.warning("Callback state mismatch")
            return CallbackResult(
                status=CallbackStatus.STATE_MISMATCH,
                message=e.message,
                details="Possible CSRF attack detected. Please try again.",
            )

        if not provider:
            return CallbackResult(
                status=CallbackStatus.ERROR,
                message="Missing provider information",
                details="Could not determine which OAuth provider was used",
            )

        self.store.save_auth_code(code)
        set_user_context(provider=provider)

        try:
            session = await self.token_service.exchange(code, provider, state)
        except OAuthLabException as e:
            self.logger.error("Code exchange failed", provider=provider, error=e.message)
            return CallbackResult(
                status=CallbackStatus.ERROR,
                message="Token exchange failed",
                details=e.message,
                provider=provider,
            )
        except ValueError as e:
            self.logger.error("Token service returned a malformed session", provider=provider, error=str(e))
            return CallbackResult(
                status=CallbackStatus.ERROR,
                message="Unexpected error occurred",
                details=str(e),
                provider=provider,
            )

        self.store.save(session)
        self.store.clear_state()
        self.logger.info("Login completed", provider=provider, user_id=session.user.id)
        return CallbackResult(
            status=CallbackStatus.SUCCESS,
            message="Authentication successful!",
            details=f"Successfully authenticated with {provider}",
            provider=provider,
            session=session,
        )

    def _check_state(self, state: str) -> Optional[str]:
        """Compare against the stored CSRF state; return the stored provider."""
        stored_state, provider = self.store.get_stored_state()
        if not stored_state or not secrets.compare_digest(stored_state, state):
            raise StateMismatchError()
        return provider
