"""
Request and response bodies for the token service routes.

Every request field is optional so a missing parameter surfaces as the
service's own ``400 {error}`` body instead of a validation error.
"""

from typing import Optional

from pydantic import BaseModel

from shared.models import TokenSet


class TokenRequest(BaseModel):
    """Body of ``POST /oauth/token``; carries either grant."""
    code: Optional[str] = None
    provider: Optional[str] = None
    state: Optional[str] = None
    refresh_token: Optional[str] = None
    user_id: Optional[str] = None

    @property
    def is_refresh(self) -> bool:
        return bool(self.refresh_token and self.provider and self.user_id)


class VerifyRequest(BaseModel):
    """Body of ``POST /oauth/verify``."""
    access_token: Optional[str] = None
    token_type: Optional[str] = None
    provider: Optional[str] = None


class RefreshResponse(BaseModel):
    tokens: TokenSet
    success: bool = True
    message: str = "Token refreshed successfully"


class AuthorizeResponse(BaseModel):
    url: str
    state: str
