"""
Tests for the session store.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.clock import FakeClock
from shared.models import TokenSet, UserProfile, UserSession
from session_manager.storage import MemoryScope
from session_manager.store import (
    ACTIVE_SESSION_KEY,
    AUTH_CODE_KEY,
    SessionStore,
    TOKEN_DATA_KEY,
    USER_PROFILE_KEY,
)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def refresher():
    """Token service stand-in."""
    mock = MagicMock()
    mock.refresh = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def persistent():
    return MemoryScope()


@pytest.fixture
def session_scope():
    return MemoryScope()


@pytest.fixture
def store(persistent, session_scope, refresher, clock):
    return SessionStore(persistent, session_scope, refresher=refresher, clock=clock)


def make_session(clock, expires_in=3600, refresh_token="rt", provider="github", user_id="99"):
    now = clock.now_ms()
    return UserSession(
        user=UserProfile(id=user_id, name="Octo", provider=provider),
        tokens=TokenSet(
            access_token="at",
            refresh_token=refresh_token,
            expires_in=expires_in,
            expires_at=now + expires_in * 1000,
        ),
        created_at=now,
        updated_at=now,
    )


class TestSaveAndLoad:
    """Tests for session persistence across the two scopes."""

    def test_save_splits_scopes(self, store, persistent, session_scope, clock):
        """Test profile goes to the persistent scope and tokens to the session scope."""
        store.save(make_session(clock))

        assert json.loads(persistent.get(USER_PROFILE_KEY))["id"] == "99"
        assert json.loads(session_scope.get(TOKEN_DATA_KEY))["tokens"]["access_token"] == "at"
        assert session_scope.get(ACTIVE_SESSION_KEY) is not None
        assert persistent.get(TOKEN_DATA_KEY) is None

    def test_load_round_trip(self, store, clock):
        """Test load returns the saved session."""
        session = make_session(clock)
        store.save(session)
        assert store.load() == session

    def test_load_needs_both_scopes(self, store, session_scope, clock):
        """Test a missing token record means no session."""
        store.save(make_session(clock))
        session_scope.delete(TOKEN_DATA_KEY)
        assert store.load() is None

    def test_corrupt_data_clears(self, store, persistent, clock):
        """Test unparseable profile clears everything."""
        store.save(make_session(clock))
        persistent.set(USER_PROFILE_KEY, "{not json")

        assert store.load() is None
        assert persistent.get(USER_PROFILE_KEY) is None
        assert store.has_fast_session() is False

    def test_clear_then_load(self, store, session_scope, clock):
        """Test clear removes every artefact."""
        store.save(make_session(clock))
        store.save_state("st", "github")
        store.save_auth_code("code")

        store.clear()
        store.clear()

        assert store.load() is None
        assert store.has_fast_session() is False
        assert store.get_stored_state() == (None, None)
        assert session_scope.get(AUTH_CODE_KEY) is None
        assert len(session_scope) == 0

    def test_expired_without_refresh_token_clears(self, store, clock):
        """Test expired tokens and no refresh token clear the session."""
        store.save(make_session(clock, expires_in=60, refresh_token=None))
        clock.advance(seconds=61)

        assert store.load() is None
        assert store.read() is None

    def test_read_returns_expired_session(self, store, clock):
        """Test read has no expiry side effects."""
        store.save(make_session(clock, expires_in=60))
        clock.advance(seconds=120)

        session = store.read()
        assert session is not None
        assert store.is_token_expired(session.tokens)


class TestBackgroundRefresh:
    """Tests for the non-blocking refresh triggered by load()."""

    @pytest.mark.asyncio
    async def test_failed_refresh_clears_session(self, store, refresher, clock):
        """Test refresh rejection leaves no session behind."""
        store.save(make_session(clock, expires_in=60))
        clock.advance(seconds=61)

        assert store.load() is None
        await store.wait_for_background_refresh()

        refresher.refresh.assert_awaited_once_with("rt", "github", "99")
        assert store.has_fast_session() is False
        assert store.read() is None

    @pytest.mark.asyncio
    async def test_successful_refresh_saves_session(self, store, refresher, clock):
        """Test refreshed tokens are saved and the refresh token is kept."""
        store.save(make_session(clock, expires_in=60))
        clock.advance(seconds=61)
        refresher.refresh.return_value = TokenSet(
            access_token="fresh", expires_in=3600, expires_at=clock.now_ms() + 3_600_000
        )

        assert store.load() is None
        await store.wait_for_background_refresh()

        session = store.load()
        assert session is not None
        assert session.tokens.access_token == "fresh"
        assert session.tokens.refresh_token == "rt"
        assert session.updated_at == clock.now_ms()
        assert store.is_active_valid()

    def test_no_event_loop_skips_refresh(self, store, refresher, clock):
        """Test load outside an event loop leaves the stored session alone."""
        store.save(make_session(clock, expires_in=60))
        clock.advance(seconds=61)

        assert store.load() is None
        refresher.refresh.assert_not_called()
        assert store.read() is not None


class TestRefreshSession:
    """Tests for awaited refreshes."""

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_coalesce(self, store, refresher, clock):
        """Test concurrent refreshes for one user issue a single request."""
        session = make_session(clock, expires_in=60)
        store.save(session)
        clock.advance(seconds=61)
        release = asyncio.Event()

        async def slow_refresh(refresh_token, provider, user_id):
            await release.wait()
            return TokenSet(access_token="fresh", refresh_token="rt2", expires_in=3600,
                            expires_at=clock.now_ms() + 3_600_000)

        refresher.refresh.side_effect = slow_refresh

        first = asyncio.ensure_future(store.refresh_session(session))
        second = asyncio.ensure_future(store.refresh_session(session))
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(first, second)

        assert refresher.refresh.await_count == 1
        assert results[0] == results[1]
        assert results[0].tokens.refresh_token == "rt2"

    @pytest.mark.asyncio
    async def test_different_users_refresh_independently(self, store, refresher, clock):
        """Test single-flight is keyed per provider and user."""
        refresher.refresh.return_value = TokenSet(access_token="x", expires_in=60, expires_at=clock.now_ms() + 60_000)

        await asyncio.gather(
            store.refresh_session(make_session(clock, user_id="1")),
            store.refresh_session(make_session(clock, user_id="2")),
        )
        assert refresher.refresh.await_count == 2

    @pytest.mark.asyncio
    async def test_manual_refresh_failure_keeps_session(self, store, refresher, clock):
        """Test a failed manual refresh does not log the user out."""
        store.save(make_session(clock))

        assert await store.manual_refresh() is False
        assert store.load() is not None

    @pytest.mark.asyncio
    async def test_manual_refresh_success(self, store, refresher, clock):
        """Test manual refresh replaces the tokens."""
        store.save(make_session(clock))
        refresher.refresh.return_value = TokenSet(access_token="new", expires_in=7200, expires_at=clock.now_ms() + 7_200_000)

        assert await store.manual_refresh() is True
        assert store.load().tokens.access_token == "new"

    @pytest.mark.asyncio
    async def test_manual_refresh_without_refresh_token(self, store, refresher, clock):
        """Test nothing to refresh with."""
        store.save(make_session(clock, refresh_token=None))
        assert await store.manual_refresh() is False
        refresher.refresh.assert_not_awaited()


class TestActiveSession:
    """Tests for the short-lived active session."""

    def test_valid_at_nine_minutes_gone_at_eleven(self, store, clock):
        """Test the ten minute active session window."""
        store.create_active("99")

        clock.advance(minutes=9)
        assert store.is_active_valid() is True

        clock.advance(minutes=2)
        assert store.is_active_valid() is False
        assert store.get_active() is None

    def test_expired_active_is_removed(self, store, session_scope, clock):
        """Test reading an expired active session deletes it."""
        store.create_active("99")
        clock.advance(minutes=10)

        assert store.get_active() is None
        assert session_scope.get(ACTIVE_SESSION_KEY) is None

    def test_custom_duration(self, persistent, session_scope, clock):
        """Test active session length is configurable."""
        store = SessionStore(persistent, session_scope, clock=clock, active_session_duration_ms=30_000)
        active = store.create_active("1")
        assert active.expires_at == clock.now_ms() + 30_000

    def test_create_replaces(self, store, clock):
        """Test a new active session replaces the old one."""
        store.create_active("99")
        clock.advance(minutes=5)
        second = store.create_active("99")
        assert store.get_active() == second

    def test_restore_from_oauth(self, store, clock):
        """Test active session can be restored over live tokens."""
        store.save(make_session(clock))
        store.clear_active()

        assert store.restore_active_from_oauth() is True
        assert store.is_active_valid() is True

    def test_restore_without_session(self, store):
        """Test restore needs a stored session."""
        assert store.restore_active_from_oauth() is False


class TestFullyValidSession:
    """Tests for the combined tokens-and-active-session check."""

    def test_live_tokens_live_active(self, store, clock):
        """Test both layers valid."""
        store.save(make_session(clock))
        assert store.has_fully_valid_session() is True

    def test_live_tokens_expired_active(self, store, clock):
        """Test expired active session alone fails the check."""
        store.save(make_session(clock, expires_in=3600))
        clock.advance(minutes=11)
        assert store.has_fully_valid_session() is False
        assert store.is_session_valid() is True

    def test_expired_tokens_live_active(self, store, clock):
        """Test expired tokens alone fail the check."""
        store.save(make_session(clock, expires_in=60, refresh_token=None))
        clock.advance(seconds=61)
        assert store.is_active_valid() is True
        assert store.has_fully_valid_session() is False

    def test_expired_tokens_expired_active(self, store, clock):
        """Test both layers expired."""
        store.save(make_session(clock, expires_in=60, refresh_token=None))
        clock.advance(minutes=11)
        assert store.has_fully_valid_session() is False

    def test_fast_session_is_storage_only(self, store, refresher, clock):
        """Test fast check does not refresh."""
        store.save(make_session(clock, expires_in=60))
        assert store.has_fast_session() is True
        clock.advance(seconds=60)
        assert store.has_fast_session() is False
        refresher.refresh.assert_not_called()


class TestExpiryFormatting:
    """Tests for remaining-lifetime helpers."""

    def make_tokens(self, clock, remaining_ms):
        return TokenSet(access_token="a", expires_in=0, expires_at=clock.now_ms() + remaining_ms)

    def test_time_until_expiration(self, store, clock):
        """Test remaining milliseconds and zero once expired."""
        assert store.time_until_expiration(self.make_tokens(clock, 5000)) == 5000
        assert store.time_until_expiration(self.make_tokens(clock, -1)) == 0

    @pytest.mark.parametrize("remaining_ms,expected", [
        (0, "Expired"),
        (-5000, "Expired"),
        (45_000, "45s"),
        (5 * 60_000 + 7_000, "5m 7s"),
        (2 * 3_600_000 + 15 * 60_000 + 30_000, "2h 15m"),
        (3_600_000, "1h 0m"),
    ])
    def test_format(self, store, clock, remaining_ms, expected):
        """Test expiry strings."""
        assert store.format_token_expiry(self.make_tokens(clock, remaining_ms)) == expected


class TestCsrfState:
    """Tests for login state storage."""

    def test_save_and_clear(self, store):
        """Test state and provider are stored together."""
        store.save_state("abc", "google")
        assert store.get_stored_state() == ("abc", "google")
        store.clear_state()
        assert store.get_stored_state() == (None, None)

    def test_auth_code(self, store):
        """Test auth code storage."""
        assert store.get_auth_code() is None
        store.save_auth_code("c1")
        assert store.get_auth_code() == "c1"
