"""
Tests for the token service client.
"""

import json

import httpx
import pytest

from shared.errors import ProviderUnavailableError, TokenExchangeFailedError
from shared.models import TokenSet
from session_manager.token_service import TokenServiceClient

SERVICE_URL = "http://token-service"


def make_client(handler):
    return TokenServiceClient(SERVICE_URL, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.fixture
def tokens():
    return TokenSet(access_token="at", refresh_token="rt", expires_in=3600, expires_at=1_700_003_600_000)


@pytest.fixture
def session_body(tokens):
    return {
        "user": {"id": "42", "name": "Neo", "email": None, "avatar": None, "provider": "discord",
                 "raw_data": {}, "createdAt": 1, "updatedAt": 1},
        "tokens": tokens.model_dump(),
        "created_at": 1,
        "updated_at": 1,
    }


class TestExchange:
    """Tests for code exchange through the token service."""

    @pytest.mark.asyncio
    async def test_success(self, session_body):
        """Test response is parsed into a UserSession."""
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/oauth/token"
            assert json.loads(request.content) == {"code": "c", "provider": "discord", "state": "s"}
            return httpx.Response(200, json=session_body)

        session = await make_client(handler).exchange("c", "discord", "s")
        assert session.user.id == "42"
        assert session.tokens.access_token == "at"

    @pytest.mark.asyncio
    async def test_error_body(self):
        """Test service error text is carried on the exception."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "Failed to fetch user profile"})

        with pytest.raises(TokenExchangeFailedError) as exc_info:
            await make_client(handler).exchange("c", "github", "s")
        assert exc_info.value.message == "Failed to fetch user profile"
        assert exc_info.value.upstream_status == 400

    @pytest.mark.asyncio
    async def test_unreachable(self):
        """Test transport errors raise ProviderUnavailableError."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ProviderUnavailableError):
            await make_client(handler).exchange("c", "github", "s")


class TestRefresh:
    """Tests for refresh through the token service."""

    @pytest.mark.asyncio
    async def test_success_back_fills(self, tokens):
        """Test missing refresh token in the response is back-filled."""
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            assert body["refresh_token"] == "rt"
            assert body["user_id"] == "42"
            fresh = tokens.model_copy(update={"access_token": "fresh", "refresh_token": None})
            return httpx.Response(200, json={"tokens": fresh.model_dump(), "success": True})

        refreshed = await make_client(handler).refresh("rt", "discord", "42")
        assert refreshed.access_token == "fresh"
        assert refreshed.refresh_token == "rt"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 404, 500])
    async def test_failure_returns_none(self, status):
        """Test any non-200 yields None."""
        client = make_client(lambda request: httpx.Response(status, json={"error": "nope"}))
        assert await client.refresh("rt", "discord", "42") is None

    @pytest.mark.asyncio
    async def test_malformed_response(self):
        """Test a body without tokens yields None."""
        client = make_client(lambda request: httpx.Response(200, json={"success": True}))
        assert await client.refresh("rt", "discord", "42") is None


class TestVerify:
    """Tests for liveness checks through the token service."""

    @pytest.mark.asyncio
    async def test_valid(self, tokens):
        """Test valid flag is honoured."""
        def handler(request: httpx.Request) -> httpx.Response:
            assert json.loads(request.content) == {"access_token": "at", "token_type": "Bearer", "provider": "google"}
            return httpx.Response(200, json={"valid": True})

        assert await make_client(handler).verify(tokens, "google") is True

    @pytest.mark.asyncio
    async def test_rejected(self, tokens):
        """Test 401 is invalid."""
        client = make_client(lambda request: httpx.Response(401, json={"valid": False}))
        assert await client.verify(tokens, "google") is False

    @pytest.mark.asyncio
    async def test_transport_error(self, tokens):
        """Test transport failure is invalid."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        assert await make_client(handler).verify(tokens, "google") is False
