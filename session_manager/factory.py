"""
Wiring for the session core from configuration.
"""

from dataclasses import dataclass
from typing import Optional

import httpx

from service_oauth.app.providers import ProviderRegistry, build_registry
from shared.clock import Clock, system_clock
from shared.config import BaseConfig, get_client_config
from shared.logging import get_logger
from .inactivity import InactivityMonitor
from .login import CallbackHandler, LoginInitiator
from .storage import PersistentScope, SessionScope, StorageScope, redis_scopes
from .store import SessionStore
from .token_service import TokenServiceClient
from .verification import VerificationOrchestrator


@dataclass
class SessionComponents:
    """Everything a relying-party UI needs, sharing one store."""
    config: BaseConfig
    store: SessionStore
    token_service: TokenServiceClient
    verifier: VerificationOrchestrator
    login: LoginInitiator
    callback: CallbackHandler

    def inactivity_monitor(self, on_warning=None, on_tick=None, on_logout=None) -> InactivityMonitor:
        """Monitor whose ``stay()`` logs out once the provider token has expired."""
        return InactivityMonitor(
            timeout_seconds=self.config.inactivity_timeout_seconds,
            warning_seconds=self.config.inactivity_warning_seconds,
            on_warning=on_warning,
            on_tick=on_tick,
            on_logout=on_logout,
            token_expired=lambda: not self.store.has_fast_session(),
        )


def create_session_components(
    config: Optional[BaseConfig] = None,
    persistent: Optional[StorageScope] = None,
    session: Optional[StorageScope] = None,
    use_redis: bool = False,
    registry: Optional[ProviderRegistry] = None,
    clock: Clock = system_clock,
    http_client: Optional[httpx.AsyncClient] = None,
) -> SessionComponents:
    """Build the session core. Storage defaults to memory; ``use_redis`` shares it through Redis."""
    config = config or get_client_config()
    logger = get_logger("oauth.session.factory")

    if persistent is None or session is None:
        if use_redis:
            persistent, session = redis_scopes(
                config.redis_url,
                namespace="oauth-session",
                session_ttl_seconds=config.default_expires_in
            )
            logger.info("Session storage on redis")
        else:
            persistent, session = PersistentScope(), SessionScope()

    token_service = TokenServiceClient(
        config.token_service_url,
        timeout=config.http_timeout,
        http_client=http_client
    )
    store = SessionStore(
        persistent,
        session,
        refresher=token_service,
        clock=clock,
        active_session_duration_ms=config.active_session_seconds * 1000
    )

    return SessionComponents(
        config=config,
        store=store,
        token_service=token_service,
        verifier=VerificationOrchestrator(store, token_service),
        login=LoginInitiator(store, registry or build_registry(config), config.redirect_uri),
        callback=CallbackHandler(store, token_service),
    )
