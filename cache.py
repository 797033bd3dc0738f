"""Key-value cache backends used for response payloads.

Every operation returns a :class:`CacheResult` instead of raising, so callers
can treat a broken cache the same way as an empty one.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import redis

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheResult:
    value: Optional[bytes] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def hit(self) -> bool:
        return self.error is None and self.value is not None


MISS = CacheResult()
DONE = CacheResult()


class CacheClient:
    name = "base"

    def get(self, key: str) -> CacheResult:
        raise NotImplementedError

    def set(self, key: str, value: bytes, ttl: int) -> CacheResult:
        raise NotImplementedError

    def delete(self, key: str) -> CacheResult:
        raise NotImplementedError

    def close(self) -> None:
        return None


class NullCache(CacheClient):
    """Always misses. Stands in when no cache is configured."""

    name = "null"

    def get(self, key: str) -> CacheResult:
        return MISS

    def set(self, key: str, value: bytes, ttl: int) -> CacheResult:
        return DONE

    def delete(self, key: str) -> CacheResult:
        return DONE


class MemoryCache(CacheClient):
    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[float, bytes]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> CacheResult:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return MISS
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return MISS
            return CacheResult(value=value)

    def set(self, key: str, value: bytes, ttl: int) -> CacheResult:
        with self._lock:
            self._entries[key] = (self._clock() + ttl, bytes(value))
        return DONE

    def delete(self, key: str) -> CacheResult:
        with self._lock:
            self._entries.pop(key, None)
        return DONE


class RedisCache(CacheClient):
    name = "redis"

    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str, timeout: float = 2.0) -> "RedisCache":
        client = redis.Redis.from_url(
            url,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client)

    def ping(self) -> CacheResult:
        try:
            self.client.ping()
        except (redis.RedisError, OSError) as exc:
            return CacheResult(error=exc)
        return DONE

    def get(self, key: str) -> CacheResult:
        try:
            value = self.client.get(key)
        except (redis.RedisError, OSError) as exc:
            return CacheResult(error=exc)
        if value is None:
            return MISS
        return CacheResult(value=value)

    def set(self, key: str, value: bytes, ttl: int) -> CacheResult:
        try:
            self.client.set(key, value, ex=ttl)
        except (redis.RedisError, OSError) as exc:
            return CacheResult(error=exc)
        return DONE

    def delete(self, key: str) -> CacheResult:
        try:
            self.client.delete(key)
        except (redis.RedisError, OSError) as exc:
            return CacheResult(error=exc)
        return DONE

    def close(self) -> None:
        try:
            self.client.close()
        except (redis.RedisError, OSError) as exc:
            logger.warning(f"cache_close_failed: backend=redis error={exc!r}")


def _redis_url(url: str) -> str:
    if "://" in url:
        return url
    # Bare "host:port" form.
    return f"redis://{url}"


def build_cache(url: Optional[str], timeout: float = 2.0) -> CacheClient:
    if not url:
        logger.info("Cache not configured, reading from the database only")
        return NullCache()
    if url.startswith("memory://"):
        return MemoryCache()

    try:
        cache = RedisCache.from_url(_redis_url(url), timeout=timeout)
    except ValueError as exc:
        logger.warning(f"cache_url_invalid: url={url!r} error={exc}")
        return NullCache()
    result = cache.ping()
    if not result.ok:
        logger.warning(f"cache_connect_failed: error={result.error!r}")
        logger.warning("Continuing without cache")
        cache.close()
        return NullCache()
    logger.info("Cache connection established")
    return cache
