"""
Normalization of provider token and profile responses.

Everything here is pure: no IO, no clock reads. Callers pass ``now_ms``.
"""

import json
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qsl

from shared.errors import InvalidProviderError, ParseFailedError
from shared.models import TokenSet, UserProfile

DEFAULT_EXPIRES_IN = 3600
DEFAULT_TOKEN_TYPE = "Bearer"
DISCORD_AVATAR_URL = "https://cdn.discordapp.com/avatars/{user_id}/{avatar}.png"


def parse_token_body(provider_id: str, body: str, content_type: str = "", prefer_form: bool = False) -> Dict[str, Any]:
    """Decode a token endpoint body that may be JSON or URL-encoded.

    GitHub answers with ``access_token=...&token_type=bearer`` unless the
    Accept header is honoured, so both shapes are accepted for every provider.
    With ``prefer_form`` any body that is not a JSON object is read as a query string.
    """
    text = (body or "").strip()
    looks_like_form = text.startswith("access_token=") or (prefer_form and not text.startswith("{"))
    if looks_like_form or "application/x-www-form-urlencoded" in content_type:
        data: Dict[str, Any] = dict(parse_qsl(text, keep_blank_values=False))
    else:
        try:
            data = json.loads(text)
        except ValueError as e:
            raise ParseFailedError(provider_id, raw_body=body) from e

    if not isinstance(data, dict) or not data.get("access_token"):
        raise ParseFailedError(provider_id, raw_body=body, message="Token response missing access_token")

    return data


def _coerce_expires_in(value: Any, default: int) -> int:
    try:
        expires_in = int(value)
    except (TypeError, ValueError):
        return default
    return expires_in if expires_in > 0 else default


def _normalize_token_type(value: Any) -> str:
    if not value:
        return DEFAULT_TOKEN_TYPE
    token_type = str(value)
    if token_type.lower() == "bearer":
        return DEFAULT_TOKEN_TYPE
    return token_type


def build_token_set(
    data: Dict[str, Any],
    now_ms: int,
    default_scope: str = "",
    prior_refresh_token: Optional[str] = None,
    default_expires_in: int = DEFAULT_EXPIRES_IN,
) -> TokenSet:
    """Build a TokenSet, recomputing ``expires_at`` from the moment of receipt."""
    expires_in = _coerce_expires_in(data.get("expires_in"), default_expires_in)
    return TokenSet(
        access_token=str(data["access_token"]),
        refresh_token=data.get("refresh_token") or prior_refresh_token,
        token_type=_normalize_token_type(data.get("token_type")),
        scope=data.get("scope") or default_scope,
        expires_in=expires_in,
        expires_at=now_ms + expires_in * 1000,
    )


def select_primary_email(entries: List[Dict[str, Any]]) -> Optional[str]:
    """Pick the primary address from a GitHub emails listing, else the first."""
    if not entries:
        return None
    for entry in entries:
        if entry.get("primary"):
            return entry.get("email")
    return entries[0].get("email")


def _google(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": raw.get("sub"),
        "name": raw.get("name"),
        "email": raw.get("email"),
        "avatar": raw.get("picture"),
    }


def _github(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(raw.get("id")),
        "name": raw.get("name") or raw.get("login"),
        "email": raw.get("email"),
        "avatar": raw.get("avatar_url"),
    }


def _discord(raw: Dict[str, Any]) -> Dict[str, Any]:
    avatar = None
    if raw.get("avatar"):
        avatar = DISCORD_AVATAR_URL.format(user_id=raw.get("id"), avatar=raw["avatar"])
    return {
        "id": raw.get("id"),
        "name": raw.get("global_name") or raw.get("username"),
        "email": raw.get("email"),
        "avatar": avatar,
    }


PROFILE_MAPPERS = {
    "google": _google,
    "github": _github,
    "discord": _discord,
}


def normalize_profile(provider_id: str, raw: Dict[str, Any], email: Optional[str] = None) -> UserProfile:
    """Map a provider user-info payload onto UserProfile.

    ``email`` overrides a missing address (GitHub private emails).
    """
    mapper = PROFILE_MAPPERS.get(provider_id)
    if mapper is None:
        raise InvalidProviderError(provider_id)

    fields = mapper(raw)
    if not fields.get("email") and email:
        fields["email"] = email

    return UserProfile(provider=provider_id, raw_data=dict(raw), **fields)
