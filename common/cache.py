# common/cache.py
import json
import os
import time
from typing import Any, Callable, Dict, Optional, Tuple

import redis
import structlog

logger = structlog.get_logger(__name__)

DEFAULT_TTL_SECONDS = 300


class TTLCache:
    """
    Process-local key -> (value, timestamp) map with a fixed time-to-live.

    Entries are only expired when read; there is no size bound and no
    write-through invalidation. The clock is injectable so tests can
    move time forward deterministically.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[str, Tuple[Any, float, float]] = {}

    def get(self, key: str) -> Optional[Any]:
        """
        Return the cached value, or None on a miss.

        A stale entry is evicted as part of the lookup.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, stored_at, ttl = entry
        if self.clock() - stored_at < ttl:
            return value
        self._entries.pop(key, None)
        return None

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        self._entries[key] = (
            value,
            self.clock(),
            self.ttl_seconds if ttl is None else ttl,
        )

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class RedisTTLCache:
    """
    Same interface as TTLCache, backed by Redis SETEX with JSON values.
    """

    def __init__(
        self,
        client: redis.Redis,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        prefix: str = "housing:",
    ):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    def get(self, key: str) -> Optional[Any]:
        raw = self.client.get(self.prefix + key)
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        seconds = int(self.ttl_seconds if ttl is None else ttl)
        self.client.setex(self.prefix + key, seconds, json.dumps(value, default=str))

    def clear(self) -> None:
        for k in self.client.scan_iter(self.prefix + "*"):
            self.client.delete(k)


def get_redis_client(redis_url: Optional[str] = None) -> Optional[redis.Redis]:
    """
    Return a Redis client if REDIS_URL is configured and reachable, otherwise None.
    """
    redis_url = redis_url or os.getenv("REDIS_URL")
    if not redis_url:
        return None

    try:
        client = redis.from_url(redis_url, decode_responses=True)
        # Lightweight health check
        client.ping()
    except redis.RedisError as exc:
        logger.warning("redis_unavailable", error=str(exc))
        return None

    return client


def build_cache(ttl_seconds: float = DEFAULT_TTL_SECONDS, redis_url: Optional[str] = None):
    """
    Pick the cache backend: Redis when reachable, in-process TTLCache otherwise.
    """
    client = get_redis_client(redis_url)
    if client is not None:
        logger.info("stats_cache_backend", backend="redis", ttl_seconds=ttl_seconds)
        return RedisTTLCache(client, ttl_seconds=ttl_seconds)
    logger.info("stats_cache_backend", backend="memory", ttl_seconds=ttl_seconds)
    return TTLCache(ttl_seconds=ttl_seconds)
