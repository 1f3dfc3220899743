"""Waterpoint Gateway - Credential read cache.

Redis copy of credential metadata used to short-circuit status reads. It is
never consulted for a mutation, is refreshed only after a durable write, and
every Redis failure is logged and ignored.
"""

import json
import logging
from datetime import datetime
from typing import Any

import redis.asyncio as redis

from waterpoint.models.credential import Credential

logger = logging.getLogger(__name__)


class CredentialCache:
    """Read-through cache keyed ``otp:<reference>``.

    A None client turns every call into a no-op.
    """

    KEY_PREFIX = "otp:"

    def __init__(self, client: redis.Redis | None, ttl_seconds: int = 600) -> None:
        self._client = client
        self._ttl = ttl_seconds

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def _key(self, reference: str) -> str:
        return f"{self.KEY_PREFIX}{reference}"

    @staticmethod
    def serialize(credential: Credential) -> dict[str, Any]:
        return {
            "id": credential.id,
            "status": credential.status.value,
            "liters": credential.liters,
            "station_id": credential.station_id,
            "attempts": credential.attempts,
            "max_attempts": credential.max_attempts,
            "expires_at": credential.expires_at.isoformat(),
        }

    async def get(self, reference: str) -> dict[str, Any] | None:
        """Cached metadata for the reference's live credential, if any."""
        if self._client is None:
            return None
        try:
            raw = await self._client.get(self._key(reference))
        except redis.RedisError as e:
            logger.warning(f"Credential cache read failed for {reference}: {e}")
            return None
        if not raw:
            return None
        try:
            data = json.loads(raw)
            data["expires_at"] = datetime.fromisoformat(data["expires_at"])
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding malformed cache entry for {reference}: {e}")
            return None
        return data

    async def store(self, credential: Credential) -> None:
        if self._client is None:
            return
        try:
            await self._client.set(
                self._key(credential.transaction_reference),
                json.dumps(self.serialize(credential)),
                ex=self._ttl,
            )
        except redis.RedisError as e:
            logger.warning(
                f"Credential cache write failed for {credential.transaction_reference}: {e}"
            )

    async def invalidate(self, reference: str) -> None:
        if self._client is None:
            return
        try:
            await self._client.delete(self._key(reference))
        except redis.RedisError as e:
            logger.warning(f"Credential cache delete failed for {reference}: {e}")
