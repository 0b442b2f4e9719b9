"""
Canonical token and session models shared by the token service and the
session manager.

Times are epoch milliseconds.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class ProviderId(str, Enum):
    """Supported identity providers."""
    DISCORD = "discord"
    GITHUB = "github"
    GOOGLE = "google"


class TokenSet(BaseModel):
    """Normalized provider token response."""

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    scope: str = ""
    expires_in: int
    expires_at: int

    def is_expired(self, now_ms: int) -> bool:
        return now_ms >= self.expires_at

    def with_refresh_token(self, refresh_token: Optional[str]) -> "TokenSet":
        """Back-fill a refresh token the provider omitted."""
        if self.refresh_token or not refresh_token:
            return self
        return self.model_copy(update={"refresh_token": refresh_token})


class UserProfile(BaseModel):
    """Provider-independent user profile.

    ``id`` is only unique together with ``provider``.
    """

    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    avatar: Optional[str] = None
    provider: ProviderId
    raw_data: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(use_enum_values=True)


class UserSession(BaseModel):
    """One profile plus the token set that authenticates it."""

    user: UserProfile
    tokens: TokenSet
    created_at: int
    updated_at: int


class ActiveSession(BaseModel):
    """Short-lived marker that the principal interacted recently."""

    is_valid: bool = True
    created_at: int
    expires_at: int
    user_id: str

    def is_expired(self, now_ms: int) -> bool:
        return now_ms >= self.expires_at


class VerificationMethod(str, Enum):
    CLIENT_SESSION = "client-session"
    PROVIDER_CHECK = "provider-check"
    NONE = "none"


class VerificationStatus(BaseModel):
    """Outcome of an "is this principal authenticated" query."""

    verified: bool
    method: VerificationMethod = VerificationMethod.NONE
    expiry: Optional[int] = None
    error: Optional[str] = None


class CallbackStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    STATE_MISMATCH = "state_mismatch"


class CallbackResult(BaseModel):
    """Outcome of processing a provider redirect."""

    status: CallbackStatus
    message: str
    details: Optional[str] = None
    provider: Optional[str] = None
    session: Optional[UserSession] = None
