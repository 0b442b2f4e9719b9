"""
Users/tokens store client for the OAuth token service.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from shared.clock import Clock, system_clock
from shared.errors import PersistenceFailedError
from shared.logging import get_logger
from shared.models import TokenSet, UserProfile


def user_record_id(provider: str, user_id: str) -> str:
    """Store key for a user. Provider ids are only unique per provider."""
    return f"{provider}:{user_id}"


def _as_profile(record: Dict[str, Any]) -> Dict[str, Any]:
    """Give a stored user record back its provider-scoped id."""
    profile = dict(record)
    profile["id"] = profile.pop("userId", record["id"])
    return profile


class UserStoreClient:
    """Find-or-create-else-update client for the ``/users`` and ``/tokens`` collections."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        clock: Clock = system_clock,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.clock = clock
        self._http_client = http_client
        self.logger = get_logger("oauth.persistence")

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    async def _find_one(self, client: httpx.AsyncClient, collection: str, params: Dict[str, str]) -> Optional[Dict[str, Any]]:
        response = await client.get(f"{self.base_url}/{collection}", params=params)
        if not response.is_success:
            raise PersistenceFailedError(
                f"find_{collection}",
                f"Failed to fetch {collection}: HTTP {response.status_code}",
                details={"status_code": response.status_code}
            )
        records = response.json()
        return records[0] if records else None

    async def _write(self, client: httpx.AsyncClient, method: str, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = await client.request(method, url, json=payload)
        if not response.is_success:
            raise PersistenceFailedError(
                f"{method.lower()}_{url.rsplit('/', 1)[-1]}",
                f"Store rejected {method}: HTTP {response.status_code}",
                details={"status_code": response.status_code}
            )
        return response.json()

    async def save_user(self, profile: UserProfile) -> Dict[str, Any]:
        """Persist the profile; on any failure return the profile itself."""
        fallback = profile.model_dump()
        record = {**fallback, "id": user_record_id(profile.provider, profile.id), "userId": profile.id}
        now = self.clock.now_ms()
        try:
            async with self._client() as client:
                existing = await self._find_one(client, "users", {"id": record["id"], "provider": profile.provider})
                if existing:
                    saved = await self._write(
                        client, "PATCH", f"{self.base_url}/users/{existing['id']}",
                        {**record, "updatedAt": now}
                    )
                    self.logger.info("User updated", user_id=profile.id, provider=profile.provider)
                else:
                    saved = await self._write(
                        client, "POST", f"{self.base_url}/users",
                        {**record, "createdAt": now, "updatedAt": now}
                    )
                    self.logger.info("User created", user_id=profile.id, provider=profile.provider)
                return _as_profile(saved)
        except PersistenceFailedError as e:
            self.logger.error("User persistence failed", error=e.message, **e.details)
        except (httpx.HTTPError, ValueError) as e:
            self.logger.error("User persistence failed", error=str(e))
        return fallback

    async def save_tokens(self, tokens: TokenSet, user_id: str, provider: str) -> bool:
        """Persist the token set for ``(user_id, provider)``. Returns False when absorbed."""
        now = self.clock.now_ms()
        payload = {**tokens.model_dump(), "userId": user_id, "provider": provider, "updatedAt": now}
        try:
            async with self._client() as client:
                existing = await self._find_one(client, "tokens", {"userId": user_id, "provider": provider})
                if existing:
                    await self._write(client, "PATCH", f"{self.base_url}/tokens/{existing['id']}", payload)
                else:
                    await self._write(client, "POST", f"{self.base_url}/tokens", {**payload, "createdAt": now})
            self.logger.info("Tokens persisted", user_id=user_id, provider=provider)
            return True
        except PersistenceFailedError as e:
            self.logger.error("Token persistence failed", error=e.message, **e.details)
        except (httpx.HTTPError, ValueError) as e:
            self.logger.error("Token persistence failed", error=str(e))
        return False

    async def get_user(self, user_id: str, provider: str) -> Optional[Dict[str, Any]]:
        """Fetch the user known to ``provider`` as ``user_id``; None when the store does not know it."""
        try:
            async with self._client() as client:
                record = await self._find_one(
                    client, "users", {"id": user_record_id(provider, user_id), "provider": provider}
                )
        except PersistenceFailedError as e:
            self.logger.error("User lookup failed", user_id=user_id, provider=provider, error=e.message, **e.details)
            return None
        except (httpx.HTTPError, ValueError) as e:
            self.logger.error("User lookup failed", user_id=user_id, provider=provider, error=str(e))
            return None
        return _as_profile(record) if record else None

    async def health_check(self) -> bool:
        """Check if the store answers."""
        try:
            async with self._client() as client:
                response = await client.get(f"{self.base_url}/users", params={"_limit": "1"})
                return response.is_success
        except httpx.HTTPError:
            return False
