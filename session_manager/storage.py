"""
Key/value storage scopes for the session store.

Two lifetimes are used: a persistent scope (profile, survives restarts) and a
session scope (tokens, active session, CSRF state; dropped with the execution
context). Both speak the same synchronous ``get/set/delete`` protocol.
"""

from typing import Dict, Optional, Protocol

import redis

from shared.errors import OAuthLabException
from shared.logging import get_logger


def connect(redis_url: str) -> redis.Redis:
    """Text-mode Redis client with short socket timeouts."""
    return redis.from_url(
        redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
    )


class StorageScope(Protocol):
    """String key/value store with one lifetime."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryScope:
    """Dict-backed scope; lives as long as the instance."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self):
        return list(self._data)

    def __len__(self) -> int:
        return len(self._data)


class RedisScope:
    """Redis-backed scope.

    Keys are namespaced with ``prefix``. When ``ttl_seconds`` is set every
    write carries that expiry, which gives a session-lifetime scope.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        prefix: str = "oauth:",
        ttl_seconds: Optional[int] = None,
        client: Optional[redis.Redis] = None,
    ):
        self.prefix = prefix
        self.ttl_seconds = ttl_seconds
        self.logger = get_logger("oauth.storage.redis")
        if client is not None:
            self.redis = client
        elif redis_url:
            self.redis = connect(redis_url)
        else:
            raise OAuthLabException("REDIS_NOT_CONFIGURED", "RedisScope needs a redis_url or a client")

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Optional[str]:
        value = self.redis.get(self._key(key))
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set(self, key: str, value: str) -> None:
        if self.ttl_seconds:
            self.redis.setex(self._key(key), self.ttl_seconds, value)
        else:
            self.redis.set(self._key(key), value)

    def delete(self, key: str) -> None:
        self.redis.delete(self._key(key))


# Named lifetimes. Both default to memory; swap in RedisScope to share state.
class PersistentScope(MemoryScope):
    """Profile scope; outlives a single session."""


class SessionScope(MemoryScope):
    """Token, active-session and CSRF scope; dropped with the session."""


def redis_scopes(redis_url: str, namespace: str, session_ttl_seconds: Optional[int] = None):
    """Build a ``(persistent, session)`` pair sharing one Redis connection."""
    client = connect(redis_url)
    persistent = RedisScope(prefix=f"{namespace}:persistent:", client=client)
    session = RedisScope(prefix=f"{namespace}:session:", ttl_seconds=session_ttl_seconds, client=client)
    return persistent, session
