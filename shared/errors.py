"""
Shared error handling for the OAuth Session Lab.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class OAuthLabException(Exception):
    """Base exception for OAuth Session Lab components."""

    status_code: int = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class InvalidProviderError(OAuthLabException):
    """Provider id is not one of the supported providers."""

    def __init__(self, provider: Optional[str] = None, message: str = "Invalid provider"):
        super().__init__("INVALID_PROVIDER", message, {"provider": provider})


class MissingParametersError(OAuthLabException):
    """Required request parameters are absent."""

    def __init__(self, message: str = "Missing required parameters", details: Optional[Dict[str, Any]] = None):
        super().__init__("MISSING_PARAMETERS", message, details)


class TokenExchangeFailedError(OAuthLabException):
    """The provider rejected an authorization code exchange."""

    def __init__(self, provider: str, status_code: Optional[int] = None, raw_body: str = "",
                 message: str = "Token exchange failed"):
        self.provider = provider
        self.upstream_status = status_code
        self.raw_body = raw_body
        super().__init__(
            "TOKEN_EXCHANGE_FAILED",
            message,
            {"provider": provider, "status_code": status_code, "raw_body": raw_body}
        )


class ProfileFetchFailedError(OAuthLabException):
    """The provider's user-info endpoint did not return a profile."""

    def __init__(self, provider: str, status_code: Optional[int] = None, raw_body: str = "",
                 message: str = "Failed to fetch user profile"):
        self.provider = provider
        self.upstream_status = status_code
        self.raw_body = raw_body
        super().__init__(
            "PROFILE_FETCH_FAILED",
            message,
            {"provider": provider, "status_code": status_code, "raw_body": raw_body}
        )


class RefreshFailedError(OAuthLabException):
    """The provider rejected a refresh_token grant."""

    def __init__(self, provider: str, status_code: Optional[int] = None, raw_body: str = "",
                 message: str = "Refresh token failed"):
        self.provider = provider
        self.upstream_status = status_code
        self.raw_body = raw_body
        super().__init__(
            "REFRESH_FAILED",
            message,
            {"provider": provider, "status_code": status_code, "raw_body": raw_body}
        )


class ParseFailedError(OAuthLabException):
    """A token endpoint body could not be parsed."""

    def __init__(self, provider: str, raw_body: str = "", message: str = "Malformed token response"):
        self.provider = provider
        self.raw_body = raw_body
        super().__init__("PARSE_FAILED", message, {"provider": provider, "raw_body": raw_body})


class PersistenceFailedError(OAuthLabException):
    """The user/token store rejected or failed an operation. Always absorbed by callers."""

    status_code = 500

    def __init__(self, operation: str, message: str = "Persistence operation failed",
                 details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details["operation"] = operation
        super().__init__("PERSISTENCE_FAILED", message, details)


class UnknownUserError(OAuthLabException):
    """A refresh referenced a user record the store does not know."""

    status_code = 404

    def __init__(self, user_id: str, message: str = "User not found for token refresh"):
        super().__init__("UNKNOWN_USER", message, {"user_id": user_id})


class ProviderUnavailableError(OAuthLabException):
    """Transport-level failure reaching a provider or the token service."""

    status_code = 500

    def __init__(self, service: str, message: str = "Service unavailable",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("PROVIDER_UNAVAILABLE", f"{service}: {message}", details)


class StateMismatchError(OAuthLabException):
    """The callback state did not match the stored CSRF state."""

    def __init__(self, message: str = "Invalid state parameter"):
        super().__init__("STATE_MISMATCH", message, {})
