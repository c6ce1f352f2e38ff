"""Presence Index adapter (read-only).

The presence service owns this Redis layout; the dispatcher only reads it:

    GEO set  PRESENCE_GEO_KEY           member = vendor id, point = last known location
    HASH     PRESENCE_KEY_PREFIX + id   online ("1"/"0"), lastSeen, ...

Staleness is handled by the presence service expiring the per-vendor hash,
so a missing hash counts as offline.
"""

import logging
from dataclasses import dataclass
from typing import Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from config.settings import settings
from src.vd_common.errors import UpstreamUnavailableError

logger = logging.getLogger(__name__)

_ONLINE_VALUES = frozenset({"1", "true", "True"})


@dataclass(frozen=True)
class PresenceCandidate:
    vendor_id: str
    distance_meters: float


class PresenceIndexProtocol(Protocol):
    async def find_online_nearby(
        self, latitude: float, longitude: float, radius_meters: float, limit: int
    ) -> list[PresenceCandidate]:
        """Online vendors within radius, nearest first."""
        ...


class RedisPresenceIndex:
    def __init__(
        self,
        redis: aioredis.Redis,
        geo_key: str | None = None,
        key_prefix: str | None = None,
        scan_limit: int | None = None,
    ) -> None:
        self._redis = redis
        self._geo_key = geo_key or settings.PRESENCE_GEO_KEY
        self._key_prefix = key_prefix or settings.PRESENCE_KEY_PREFIX
        self._scan_limit = scan_limit or settings.PRESENCE_SCAN_LIMIT

    async def find_online_nearby(
        self, latitude: float, longitude: float, radius_meters: float, limit: int
    ) -> list[PresenceCandidate]:
        """Online vendors within radius, nearest first, at most `limit`.

        The GEO set also holds offline vendors at their last known point, so
        the scan window grows (doubling COUNT) until `limit` online vendors are
        found or GEOSEARCH returns fewer members than asked, i.e. the radius is
        exhausted. Only members not seen in an earlier window are checked.
        """
        candidates: list[PresenceCandidate] = []
        count = self._scan_limit
        checked = 0
        try:
            while True:
                hits = await self._redis.geosearch(
                    self._geo_key,
                    longitude=longitude,
                    latitude=latitude,
                    radius=radius_meters,
                    unit="m",
                    sort="ASC",
                    count=count,
                    withdist=True,
                )
                fresh = hits[checked:]
                if fresh:
                    pipe = self._redis.pipeline(transaction=False)
                    for member, _dist in fresh:
                        pipe.hget(f"{self._key_prefix}{member}", "online")
                    flags = await pipe.execute()
                    for (member, dist), online in zip(fresh, flags, strict=True):
                        if online in _ONLINE_VALUES:
                            candidates.append(PresenceCandidate(str(member), float(dist)))
                checked = len(hits)
                if len(candidates) >= limit or len(hits) < count:
                    break
                count *= 2
        except RedisError as exc:
            logger.error("Presence index query failed: %s", exc)
            raise UpstreamUnavailableError("presence", str(exc)) from exc

        logger.debug(
            "Presence scan at (%s, %s) r=%.0fm: %d scanned, %d online",
            latitude, longitude, radius_meters, checked, len(candidates),
        )
        return candidates[:limit]
