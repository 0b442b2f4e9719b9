"""
Relying-party session core.

Storage scopes, the session store, the verification orchestrator, the
inactivity monitor, login initiation and callback handling, and the client
used to reach the token service.
"""

from .factory import SessionComponents, create_session_components
from .inactivity import InactivityMonitor
from .login import CallbackHandler, LoginInitiator
from .storage import MemoryScope, PersistentScope, RedisScope, SessionScope, StorageScope
from .store import SessionStore
from .token_service import TokenServiceClient
from .verification import VerificationOrchestrator

__all__ = [
    "CallbackHandler",
    "InactivityMonitor",
    "LoginInitiator",
    "MemoryScope",
    "PersistentScope",
    "RedisScope",
    "SessionScope",
    "SessionComponents",
    "SessionStore",
    "StorageScope",
    "TokenServiceClient",
    "VerificationOrchestrator",
    "create_session_components",
]
