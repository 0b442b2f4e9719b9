"""
Session store for the relying party.

Keeps the long-lived provider-token session and the short-lived active
session in two storage scopes, handles token expiry and refresh, and holds
the CSRF state for an in-flight login.
"""

import asyncio
import json
from typing import Dict, Optional, Protocol, Set, Tuple

from shared.clock import Clock, system_clock
from shared.logging import get_logger
from shared.models import ActiveSession, TokenSet, UserProfile, UserSession
from .storage import StorageScope

USER_PROFILE_KEY = "user_profile"
TOKEN_DATA_KEY = "oauth_token_data"
ACTIVE_SESSION_KEY = "client_session"
STATE_KEY = "oauth_state"
PROVIDER_KEY = "oauth_provider"
AUTH_CODE_KEY = "oauth_auth_code"

ACTIVE_SESSION_DURATION_MS = 10 * 60 * 1000


class TokenRefresher(Protocol):
    async def refresh(self, refresh_token: str, provider: str, user_id: str) -> Optional[TokenSet]: ...


class SessionStore:
    """Two-scope session storage with expiry, refresh and teardown."""

    def __init__(
        self,
        persistent: StorageScope,
        session: StorageScope,
        refresher: Optional[TokenRefresher] = None,
        clock: Clock = system_clock,
        active_session_duration_ms: int = ACTIVE_SESSION_DURATION_MS,
    ):
        self.persistent = persistent
        self.session = session
        self.refresher = refresher
        self.clock = clock
        self.active_session_duration_ms = active_session_duration_ms
        self.logger = get_logger("oauth.session.store")
        self._inflight: Dict[Tuple[str, str], "asyncio.Task[Optional[UserSession]]"] = {}
        self._background: Set[asyncio.Task] = set()

    # Session persistence

    def save(self, session: UserSession) -> None:
        """Write profile and tokens, then start a fresh active session."""
        self.persistent.set(USER_PROFILE_KEY, session.user.model_dump_json())
        self.session.set(TOKEN_DATA_KEY, json.dumps({
            "tokens": session.tokens.model_dump(),
            "created_at": session.created_at,
            "updated_at": session.updated_at,
        }))
        self.create_active(session.user.id)

    def read(self) -> Optional[UserSession]:
        """Return the stored session as-is, expired tokens included."""
        profile_data = self.persistent.get(USER_PROFILE_KEY)
        token_data = self.session.get(TOKEN_DATA_KEY)
        if not profile_data or not token_data:
            return None

        try:
            payload = json.loads(token_data)
            return UserSession(
                user=UserProfile.model_validate_json(profile_data),
                tokens=TokenSet.model_validate(payload["tokens"]),
                created_at=payload["created_at"],
                updated_at=payload["updated_at"],
            )
        except (ValueError, KeyError, TypeError) as e:
            self.logger.error("Stored session is corrupt; clearing", error=str(e))
            self.clear()
            return None

    def load(self) -> Optional[UserSession]:
        """Return the session if its tokens are live.

        Expired tokens with a refresh token schedule a background refresh;
        without one the session is cleared. Either way this call returns None.
        """
        session = self.read()
        if session is None:
            return None

        if not self.is_token_expired(session.tokens):
            return session

        if session.tokens.refresh_token:
            self._schedule_refresh(session)
        else:
            self.logger.info("Tokens expired without refresh token; clearing", provider=session.user.provider)
            self.clear()
        return None

    def clear(self) -> None:
        """Tear down every stored artefact. Safe to call repeatedly."""
        self.persistent.delete(USER_PROFILE_KEY)
        for key in (TOKEN_DATA_KEY, ACTIVE_SESSION_KEY, STATE_KEY, PROVIDER_KEY, AUTH_CODE_KEY):
            self.session.delete(key)

    def has_fast_session(self) -> bool:
        """Storage-only check for live tokens; never refreshes."""
        if not self.persistent.get(USER_PROFILE_KEY):
            return False
        token_data = self.session.get(TOKEN_DATA_KEY)
        if not token_data:
            return False
        try:
            tokens = TokenSet.model_validate(json.loads(token_data)["tokens"])
        except (ValueError, KeyError, TypeError):
            return False
        return not self.is_token_expired(tokens)

    # Active session

    def create_active(self, user_id: str) -> ActiveSession:
        now = self.clock.now_ms()
        active = ActiveSession(
            is_valid=True,
            created_at=now,
            expires_at=now + self.active_session_duration_ms,
            user_id=user_id,
        )
        self.session.set(ACTIVE_SESSION_KEY, active.model_dump_json())
        return active

    def get_active(self) -> Optional[ActiveSession]:
        """Return the active session, dropping it once expired."""
        data = self.session.get(ACTIVE_SESSION_KEY)
        if not data:
            return None
        try:
            active = ActiveSession.model_validate_json(data)
        except ValueError as e:
            self.logger.error("Active session is corrupt; clearing", error=str(e))
            self.clear_active()
            return None

        if active.is_expired(self.clock.now_ms()):
            self.clear_active()
            return None
        return active

    def is_active_valid(self) -> bool:
        active = self.get_active()
        return active is not None and active.is_valid

    def clear_active(self) -> None:
        self.session.delete(ACTIVE_SESSION_KEY)

    def has_fully_valid_session(self) -> bool:
        """Live tokens and a live active session."""
        session = self.load()
        return (
            session is not None
            and not self.is_token_expired(session.tokens)
            and self.is_active_valid()
        )

    def is_session_valid(self) -> bool:
        session = self.load()
        return session is not None and not self.is_token_expired(session.tokens)

    def restore_active_from_oauth(self) -> bool:
        """Start a new active session on top of still-live tokens."""
        session = self.load()
        if session is None:
            return False
        self.create_active(session.user.id)
        return True

    # Refresh

    def _schedule_refresh(self, session: UserSession) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.logger.warning("No running event loop; background refresh skipped", provider=session.user.provider)
            return

        task = loop.create_task(self.refresh_session(session))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def wait_for_background_refresh(self) -> None:
        """Wait for refreshes scheduled by ``load()``."""
        while True:
            pending = [task for task in self._background if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def refresh_session(self, session: UserSession, clear_on_failure: bool = True) -> Optional[UserSession]:
        """Refresh and save the session. Concurrent calls for one user share a single request."""
        key = (session.user.provider, session.user.id)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._refresh(session, clear_on_failure))
            self._inflight[key] = task
            task.add_done_callback(lambda _: self._inflight.pop(key, None))
        return await asyncio.shield(task)

    async def _refresh(self, session: UserSession, clear_on_failure: bool) -> Optional[UserSession]:
        refresh_token = session.tokens.refresh_token
        if not refresh_token or self.refresher is None:
            if clear_on_failure:
                self.clear()
            return None

        tokens = await self.refresher.refresh(refresh_token, session.user.provider, session.user.id)
        if tokens is None:
            self.logger.warning("Session refresh failed", provider=session.user.provider, user_id=session.user.id)
            if clear_on_failure:
                self.clear()
            return None

        updated = session.model_copy(update={
            "tokens": tokens.with_refresh_token(refresh_token),
            "updated_at": self.clock.now_ms(),
        })
        self.save(updated)
        self.logger.info("Session refreshed", provider=session.user.provider, user_id=session.user.id)
        return updated

    async def manual_refresh(self) -> bool:
        """User-requested refresh; a failure leaves the session in place."""
        session = self.read()
        if session is None or not session.tokens.refresh_token:
            return False
        return await self.refresh_session(session, clear_on_failure=False) is not None

    # Expiry helpers

    def is_token_expired(self, tokens: TokenSet) -> bool:
        return tokens.is_expired(self.clock.now_ms())

    def time_until_expiration(self, tokens: TokenSet) -> int:
        """Milliseconds until expiry, 0 once expired."""
        if self.is_token_expired(tokens):
            return 0
        return tokens.expires_at - self.clock.now_ms()

    def format_token_expiry(self, tokens: TokenSet) -> str:
        remaining = self.time_until_expiration(tokens)
        if remaining <= 0:
            return "Expired"

        hours = remaining // 3_600_000
        minutes = (remaining % 3_600_000) // 60_000
        seconds = (remaining % 60_000) // 1000

        if hours > 0:
            return f"{hours}h {minutes}m"
        if minutes > 0:
            return f"{minutes}m {seconds}s"
        return f"{seconds}s"

    # CSRF state and auth code

    def save_state(self, state: str, provider: str) -> None:
        self.session.set(STATE_KEY, state)
        self.session.set(PROVIDER_KEY, provider)

    def get_stored_state(self) -> Tuple[Optional[str], Optional[str]]:
        """Return ``(state, provider)`` saved by the login initiator."""
        return self.session.get(STATE_KEY), self.session.get(PROVIDER_KEY)

    def clear_state(self) -> None:
        self.session.delete(STATE_KEY)
        self.session.delete(PROVIDER_KEY)

    def save_auth_code(self, code: str) -> None:
        self.session.set(AUTH_CODE_KEY, code)

    def get_auth_code(self) -> Optional[str]:
        return self.session.get(AUTH_CODE_KEY)
