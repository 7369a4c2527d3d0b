"""Ephemeral cache for pairwise similarities and ranked recommendation lists.

Nothing stored here is authoritative. Every backend failure is logged and
treated as a miss so computation never blocks on the cache.

Recommendation lists are keyed by a per-user generation. Invalidation bumps
the generation, so a list computed before the bump is never read back even if
its writer finishes after the invalidation.
"""

from __future__ import annotations

import json
import logging
import math
import threading
import time
from fnmatch import fnmatchcase
from typing import Optional, Protocol

import redis
from cachetools import TLRUCache

from shop_cf.core.errors import CacheUnavailableError
from shop_cf.records import ScoredItem

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 100_000


def similarity_key(entity_kind: str, id_a: int, id_b: int) -> str:
    a, b = sorted((int(id_a), int(id_b)))
    return f"sim:{entity_kind}:{a}:{b}"


def recommendations_key(user_id: int, generation: int, strategy: str, limit: int) -> str:
    return f"recs:{int(user_id)}:{int(generation)}:{strategy}:{int(limit)}"


def user_recommendations_pattern(user_id: int) -> str:
    return f"recs:{int(user_id)}:*"


def recommendations_generation_key(user_id: int) -> str:
    return f"recs-gen:{int(user_id)}"


class CacheBackend(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    def incr(self, key: str) -> int: ...

    def delete_pattern(self, pattern: str) -> int: ...


def _expires_at(_key: str, entry: tuple[str, float], now: float) -> float:
    return now + entry[1]


class MemoryCache:
    """
    In-process cache on a cachetools TLRUCache: each entry carries its own
    TTL and expired entries are purged on every write. Bounded by
    `max_entries`; entries closest to expiry go first when full.

    Only correct when a single process serves requests.
    """

    def __init__(self, *, max_entries: int = DEFAULT_MAX_ENTRIES, clock=time.monotonic):
        self._data: TLRUCache = TLRUCache(maxsize=max_entries, ttu=_expires_at, timer=clock)
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._data.get(key)
        return None if entry is None else entry[0]

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._data[key] = (value, float(ttl_seconds))

    def incr(self, key: str) -> int:
        # counters never expire; they are evicted last when the cache is full
        with self._lock:
            entry = self._data.get(key)
            value = int(entry[0]) + 1 if entry is not None else 1
            self._data[key] = (str(value), math.inf)
        return value

    def delete_pattern(self, pattern: str) -> int:
        with self._lock:
            keys = [k for k in list(self._data.keys()) if fnmatchcase(k, pattern)]
            for k in keys:
                self._data.pop(k, None)
        return len(keys)

    def __len__(self) -> int:
        with self._lock:
            self._data.expire()
            return len(self._data)


class RedisCache:
    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str, *, socket_timeout: float) -> "RedisCache":
        client = redis.Redis.from_url(
            url,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
            decode_responses=True,
        )
        return cls(client)

    def get(self, key: str) -> Optional[str]:
        try:
            return self._client.get(key)
        except redis.RedisError as e:
            raise CacheUnavailableError("get", e) from e

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            self._client.setex(key, ttl_seconds, value)
        except redis.RedisError as e:
            raise CacheUnavailableError("set", e) from e

    def incr(self, key: str) -> int:
        try:
            return int(self._client.incr(key))
        except redis.RedisError as e:
            raise CacheUnavailableError("incr", e) from e

    def delete_pattern(self, pattern: str) -> int:
        try:
            keys = list(self._client.scan_iter(match=pattern, count=500))
            if not keys:
                return 0
            return int(self._client.delete(*keys))
        except redis.RedisError as e:
            raise CacheUnavailableError("delete_pattern", e) from e


class SimilarityCache:
    """Typed, fail-open facade over a CacheBackend."""

    def __init__(self, backend: CacheBackend, *, ttl_seconds: int = 3600):
        self.backend = backend
        self.ttl_seconds = ttl_seconds

    def _get(self, key: str) -> Optional[str]:
        try:
            return self.backend.get(key)
        except CacheUnavailableError as e:
            logger.warning("Cache read failed, treating as miss", extra={"key": key, "error": e.message})
            return None

    def _set(self, key: str, value: str) -> None:
        try:
            self.backend.set(key, value, self.ttl_seconds)
        except CacheUnavailableError as e:
            logger.warning("Cache write failed, skipping", extra={"key": key, "error": e.message})

    def get_similarity(self, entity_kind: str, id_a: int, id_b: int) -> Optional[float]:
        raw = self._get(similarity_key(entity_kind, id_a, id_b))
        if raw is None:
            return None
        try:
            return float(raw)
        except ValueError:
            logger.warning("Discarding malformed similarity cache entry", extra={"value": raw})
            return None

    def set_similarity(self, entity_kind: str, id_a: int, id_b: int, score: float) -> None:
        self._set(similarity_key(entity_kind, id_a, id_b), repr(float(score)))

    def recommendations_generation(self, user_id: int) -> Optional[int]:
        """Current list generation of `user_id`; None when the cache cannot tell."""
        try:
            raw = self.backend.get(recommendations_generation_key(user_id))
        except CacheUnavailableError as e:
            logger.warning("Cache read failed, treating as miss", extra={"user_id": user_id, "error": e.message})
            return None
        if raw is None:
            return 0
        try:
            return int(raw)
        except ValueError:
            logger.warning("Discarding malformed generation entry", extra={"user_id": user_id, "value": raw})
            return None

    def get_recommendations(
        self,
        user_id: int,
        strategy: str,
        limit: int,
        *,
        generation: Optional[int] = None,
    ) -> Optional[list[ScoredItem]]:
        if generation is None:
            generation = self.recommendations_generation(user_id)
            if generation is None:
                return None
        raw = self._get(recommendations_key(user_id, generation, strategy, limit))
        if raw is None:
            return None
        try:
            return [ScoredItem.from_dict(d) for d in json.loads(raw)]
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding malformed recommendation cache entry", extra={"user_id": user_id})
            return None

    def set_recommendations(
        self,
        user_id: int,
        strategy: str,
        limit: int,
        items: list[ScoredItem],
        *,
        generation: Optional[int] = None,
    ) -> None:
        """
        Store a list under `generation`, the generation read before the list
        was computed. A list computed before an invalidation lands under the
        old generation and is never read.
        """
        if generation is None:
            generation = self.recommendations_generation(user_id)
            if generation is None:
                return
        payload = json.dumps([i.to_dict() for i in items])
        self._set(recommendations_key(user_id, generation, strategy, limit), payload)

    def invalidate_user(self, user_id: int) -> int:
        """Bump the list generation of `user_id` and drop its stored lists."""
        try:
            self.backend.incr(recommendations_generation_key(user_id))
        except CacheUnavailableError as e:
            logger.warning("Cache invalidation failed", extra={"user_id": user_id, "error": e.message})
        try:
            return self.backend.delete_pattern(user_recommendations_pattern(user_id))
        except CacheUnavailableError as e:
            logger.warning("Cache invalidation failed", extra={"user_id": user_id, "error": e.message})
            return 0


def build_cache(
    redis_url: str,
    *,
    ttl_seconds: int,
    socket_timeout: float,
    max_entries: int = DEFAULT_MAX_ENTRIES,
) -> SimilarityCache:
    if redis_url:
        backend: CacheBackend = RedisCache.from_url(redis_url, socket_timeout=socket_timeout)
    else:
        backend = MemoryCache(max_entries=max_entries)
    return SimilarityCache(backend, ttl_seconds=ttl_seconds)
