"""
Verification orchestrator.

Answers "is this principal currently authenticated?" from the cheapest
source that can decide it: the local active session first, then a refresh
for expired tokens, then a provider liveness check through the token service.
"""

from typing import Protocol

from shared.logging import get_logger
from shared.models import TokenSet, VerificationMethod, VerificationStatus
from .store import SessionStore


class TokenVerifier(Protocol):
    async def verify(self, tokens: TokenSet, provider: str) -> bool: ...


class VerificationOrchestrator:
    """Layered authentication check over a SessionStore."""

    def __init__(self, store: SessionStore, token_service: TokenVerifier):
        self.store = store
        self.token_service = token_service
        self.logger = get_logger("oauth.session.verification")

    async def verify(self) -> VerificationStatus:
        if self.store.has_fully_valid_session():
            active = self.store.get_active()
            return VerificationStatus(
                verified=True,
                method=VerificationMethod.CLIENT_SESSION,
                expiry=active.expires_at if active else None,
            )

        try:
            valid = await self._restore(skip_active_session=False)
        except Exception as e:
            self.logger.error("Verification failed", error=str(e))
            return VerificationStatus(verified=False, method=VerificationMethod.NONE, error=str(e))

        if not valid:
            return VerificationStatus(verified=False, method=VerificationMethod.NONE)

        active = self.store.get_active()
        return VerificationStatus(
            verified=True,
            method=VerificationMethod.PROVIDER_CHECK,
            expiry=active.expires_at if active else None,
        )

    async def verify_and_restore(self, skip_active_session: bool = False) -> bool:
        """Refresh or provider-check the stored session, recreating the active session when valid."""
        try:
            return await self._restore(skip_active_session)
        except Exception as e:
            self.logger.error("Verification failed", error=str(e))
            return False

    async def _restore(self, skip_active_session: bool) -> bool:
        session = self.store.read()
        if session is None:
            return False

        if self.store.is_token_expired(session.tokens):
            if not session.tokens.refresh_token:
                self.store.clear()
                return False
            # A successful refresh saves the session, which starts a new active session.
            return await self.store.refresh_session(session) is not None

        valid = await self.token_service.verify(session.tokens, session.user.provider)
        self.logger.info("Provider liveness checked", provider=session.user.provider, valid=valid)

        if valid and not skip_active_session:
            self.store.create_active(session.user.id)
        return valid
