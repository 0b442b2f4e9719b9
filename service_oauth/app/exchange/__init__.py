"""
Token exchange package.

Runs the authorization_code and refresh_token grants against provider token
endpoints, fetches user-info, and normalizes the heterogeneous responses
(JSON or URL-encoded bodies, per-provider profile shapes) into the shared
TokenSet and UserProfile models.
"""

from .client import TokenExchangeClient
from .normalize import build_token_set, normalize_profile, parse_token_body

__all__ = ["TokenExchangeClient", "build_token_set", "normalize_profile", "parse_token_body"]
