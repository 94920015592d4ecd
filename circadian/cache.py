"""
Query Result Cache
Aggregate arrays keyed by logical query signature, with per-range expiry.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import redis

from circadian.aggregate import AggregateSample
from circadian.calendar import RangeClass, now_local
from circadian.samples import AggregationOp

logger = logging.getLogger(__name__)

Payload = List[AggregateSample]

_EXPIRY = {
    RangeClass.WEEK:  timedelta(minutes=2),
    RangeClass.MONTH: timedelta(minutes=5),
    RangeClass.YEAR:  timedelta(days=1),
}


def cache_key(prefix: str, ops: AggregationOp, range_class: RangeClass) -> str:
    return f"{prefix}_{int(ops)}_{range_class.value}"


def cache_expiry(range_class: RangeClass, now: datetime) -> datetime:
    return now + _EXPIRY[range_class]


@dataclass
class CacheEntry:
    key: str
    payload: Payload
    expires_at: datetime

    def to_json(self) -> str:
        return json.dumps({
            "key": self.key,
            "expires_at": self.expires_at.isoformat(),
            "payload": [agg.to_dict() for agg in self.payload],
        })

    @classmethod
    def from_json(cls, raw: str) -> "CacheEntry":
        data = json.loads(raw)
        return cls(
            key=data["key"],
            payload=[AggregateSample.from_dict(d) for d in data["payload"]],
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )


class MemoryCacheStore:
    def __init__(self):
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def set(self, entry: CacheEntry, ttl_seconds: int) -> None:
        self._entries[entry.key] = entry

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()


class RedisCacheStore:
    """Entries stored as JSON strings under a key namespace, expired by Redis TTL."""

    def __init__(self, client: redis.Redis, namespace: str = "circadian:cache:"):
        self.client = client
        self.namespace = namespace

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheStore":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def get(self, key: str) -> Optional[CacheEntry]:
        raw = self.client.get(self.namespace + key)
        if raw is None:
            return None
        return CacheEntry.from_json(raw)

    def set(self, entry: CacheEntry, ttl_seconds: int) -> None:
        self.client.set(self.namespace + entry.key, entry.to_json(), ex=max(ttl_seconds, 1))

    def delete(self, key: str) -> None:
        self.client.delete(self.namespace + key)

    def clear(self) -> None:
        for key in self.client.scan_iter(match=self.namespace + "*"):
            self.client.delete(key)


class QueryCache:
    """
    get_or_compute stores a payload only after compute succeeds, so a failed
    recompute leaves any previous entry in place. Concurrent misses on one
    key each compute; the last write wins.
    """

    def __init__(self, store=None, clock: Callable[[], datetime] = now_local):
        self.store = store if store is not None else MemoryCacheStore()
        self.clock = clock

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[Payload]],
        expires_at: datetime,
    ) -> Tuple[Payload, bool]:
        now = self.clock()
        entry = self.store.get(key)
        if entry is not None and entry.expires_at > now:
            logger.debug(f"Cache hit {key} size {len(entry.payload)}")
            return entry.payload, True

        logger.debug(f"Cache miss {key}")
        payload = await compute()
        ttl = int((expires_at - now).total_seconds())
        self.store.set(CacheEntry(key=key, payload=payload, expires_at=expires_at), ttl)
        logger.debug(f"Cached {key} size {len(payload)}")
        return payload, False

    def invalidate(self, key: str) -> None:
        self.store.delete(key)

    def clear(self) -> None:
        self.store.clear()
