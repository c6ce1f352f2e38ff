"""Expiring key-value store for small, short-lived state.

Kept behind a narrow put/get/delete interface and backed by Redis so every
replica sees the same values. Do not replace it with a module-level dict:
process-local state silently diverges once the service runs more than one
handler.
"""

import json
import logging
from typing import Any, Protocol

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


class ExpiringStoreProtocol(Protocol):
    async def put(self, key: str, value: dict[str, Any], ttl_seconds: int | None = None) -> None: ...

    async def get(self, key: str) -> dict[str, Any] | None: ...

    async def delete(self, key: str) -> None: ...


class RedisExpiringStore:
    """JSON values under `<namespace>:<key>` with a per-key TTL (SET EX)."""

    def __init__(self, redis: aioredis.Redis, namespace: str, default_ttl_seconds: int) -> None:
        if default_ttl_seconds <= 0:
            raise ValueError("default_ttl_seconds must be positive")
        self._redis = redis
        self._namespace = namespace
        self._default_ttl = default_ttl_seconds

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def put(self, key: str, value: dict[str, Any], ttl_seconds: int | None = None) -> None:
        ttl = ttl_seconds or self._default_ttl
        await self._redis.set(self._key(key), json.dumps(value, default=str), ex=ttl)

    async def get(self, key: str) -> dict[str, Any] | None:
        raw = await self._redis.get(self._key(key))
        if raw is None:
            return None
        try:
            return dict(json.loads(raw))
        except (TypeError, ValueError):
            logger.warning("Discarding undecodable value at %s", self._key(key))
            return None

    async def delete(self, key: str) -> None:
        await self._redis.delete(self._key(key))
