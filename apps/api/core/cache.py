"""
Result cache.

Two interchangeable backends with the same surface:

- MemoryResultCache: process-local TTL map, thread-safe, used by default
  and in tests.
- RedisResultCache: shared cache. Degrades gracefully, so a Redis
  failure is logged and treated as a miss.

Caches are constructed explicitly (``build_cache``) and passed to the
services that use them; there is no module-level cache instance. Values
must be JSON-serializable.
"""
import fnmatch
from abc import ABC, abstractmethod
import hashlib
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import redis
from redis.exceptions import ConnectionError, TimeoutError, RedisError

from core.config import Settings

logger = logging.getLogger(__name__)


def cache_key(prefix: str, *args, **kwargs) -> str:
    """Generate cache key from prefix and arguments."""
    key_parts = [prefix]

    # Add args (skip None values)
    for arg in args:
        if arg is not None:
            key_parts.append(str(arg))

    # Add kwargs (sorted for consistency, skip None values)
    for k, v in sorted(kwargs.items()):
        if v is not None:
            key_parts.append(f"{k}:{v}")

    return ":".join(key_parts)


def fingerprint(payload: Any) -> str:
    """Stable SHA-256 digest of a JSON-serializable payload."""
    encoded = json.dumps(payload, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


class ResultCache(ABC):
    """
    Base class for cache backends.

    Services only depend on this interface; the hit/miss counters and
    get_or_set are shared.
    """

    def __init__(self, default_ttl: int = 300):
        self.default_ttl = default_ttl
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._deletes = 0

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Cached value, or None on a miss."""

    @abstractmethod
    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Store a value; ttl <= 0 means no expiry. Returns False if not stored."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        pass

    @abstractmethod
    def has(self, key: str) -> bool:
        pass

    @abstractmethod
    def keys(self, pattern: str = "*") -> List[str]:
        """Live keys matching a glob pattern."""

    @abstractmethod
    def delete_pattern(self, pattern: str) -> int:
        """Delete keys matching a glob pattern. Returns number deleted."""

    @abstractmethod
    def cleanup(self) -> int:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass

    @abstractmethod
    def get_stats(self) -> Dict[str, Any]:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def get_or_set(self, key: str, factory: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        """Return the cached value, computing and storing it on a miss."""
        value = self.get(key)
        if value is not None:
            logger.debug(f"Cache hit: {key}")
            return value
        logger.debug(f"Cache miss: {key}")
        value = factory()
        self.set(key, value, ttl)
        return value

    def _hit_rate(self) -> float:
        lookups = self._hits + self._misses
        return round(self._hits / lookups, 4) if lookups else 0.0


class MemoryResultCache(ResultCache):
    """In-process TTL cache."""

    def __init__(self, default_ttl: int = 300, clock: Callable[[], float] = time.monotonic):
        super().__init__(default_ttl)
        self._clock = clock
        self._entries: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = threading.RLock()

    def _expired(self, expires_at: Optional[float], now: float) -> bool:
        return expires_at is not None and expires_at <= now

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            payload, expires_at = entry
            if self._expired(expires_at, self._clock()):
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            return json.loads(payload)

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if ttl is None:
            ttl = self.default_ttl
        payload = json.dumps(value, default=str)
        # ttl <= 0 stores without expiry
        expires_at = self._clock() + ttl if ttl and ttl > 0 else None
        with self._lock:
            self._entries[key] = (payload, expires_at)
            self._sets += 1
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            if self._entries.pop(key, None) is None:
                return False
            self._deletes += 1
            return True

    def has(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not self._expired(entry[1], self._clock())

    def keys(self, pattern: str = "*") -> List[str]:
        now = self._clock()
        with self._lock:
            return sorted(
                key for key, (_, expires_at) in self._entries.items()
                if not self._expired(expires_at, now) and fnmatch.fnmatchcase(key, pattern)
            )

    def delete_pattern(self, pattern: str) -> int:
        with self._lock:
            matched = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
            for key in matched:
                del self._entries[key]
            self._deletes += len(matched)
        return len(matched)

    def cleanup(self) -> int:
        """Evict expired entries. Returns number evicted."""
        now = self._clock()
        with self._lock:
            expired = [key for key, (_, exp) in self._entries.items() if self._expired(exp, now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Cache cleanup evicted {len(expired)} entries")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            memory = sum(len(key) + len(payload) for key, (payload, _) in self._entries.items())
            return {
                "hits": self._hits,
                "misses": self._misses,
                "sets": self._sets,
                "deletes": self._deletes,
                "size": len(self._entries),
                "hit_rate": self._hit_rate(),
                "memory_usage_estimate": memory,
            }

    def close(self) -> None:
        self.clear()


class RedisResultCache(ResultCache):
    """Redis-backed cache with graceful degradation."""

    def __init__(
        self,
        url: Optional[str] = None,
        default_ttl: int = 300,
        prefix: str = "engine:",
        client: Optional[redis.Redis] = None,
    ):
        super().__init__(default_ttl)
        self.prefix = prefix
        self._url = url
        self._client = client

    def _get_client(self) -> Optional[redis.Redis]:
        if self._client is not None:
            return self._client
        if not self._url:
            return None
        try:
            client = redis.from_url(
                self._url,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
                retry_on_timeout=True,
                health_check_interval=30,
            )
            client.ping()
            logger.info("Redis connection established")
            self._client = client
            return client
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(f"Redis unavailable: {e}. Caching disabled.")
            return None

    def _k(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Optional[Any]:
        client = self._get_client()
        if not client:
            self._misses += 1
            return None
        try:
            value = client.get(self._k(key))
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(f"Cache get error for key {key}: {e}")
            self._misses += 1
            return None
        if value is None:
            self._misses += 1
            return None
        self._hits += 1
        return json.loads(value)

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        client = self._get_client()
        if not client:
            return False
        if ttl is None:
            ttl = self.default_ttl
        try:
            payload = json.dumps(value, default=str)
            if ttl and ttl > 0:
                client.setex(self._k(key), ttl, payload)
            else:
                client.set(self._k(key), payload)
            self._sets += 1
            return True
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(f"Cache set error for key {key}: {e}")
            return False

    def delete(self, key: str) -> bool:
        client = self._get_client()
        if not client:
            return False
        try:
            deleted = client.delete(self._k(key))
            self._deletes += deleted
            return bool(deleted)
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(f"Cache delete error for key {key}: {e}")
            return False

    def has(self, key: str) -> bool:
        client = self._get_client()
        if not client:
            return False
        try:
            return bool(client.exists(self._k(key)))
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(f"Cache exists error for key {key}: {e}")
            return False

    def keys(self, pattern: str = "*") -> List[str]:
        client = self._get_client()
        if not client:
            return []
        try:
            return sorted(
                key[len(self.prefix):] for key in client.scan_iter(match=self._k(pattern))
            )
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(f"Cache keys error for pattern {pattern}: {e}")
            return []

    def delete_pattern(self, pattern: str) -> int:
        client = self._get_client()
        if not client:
            return 0
        try:
            keys = list(client.scan_iter(match=self._k(pattern)))
            if not keys:
                return 0
            deleted = client.delete(*keys)
            self._deletes += deleted
            return deleted
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(f"Cache invalidation error for pattern {pattern}: {e}")
            return 0

    def cleanup(self) -> int:
        # Redis expires keys itself
        return 0

    def clear(self) -> None:
        self.delete_pattern("*")

    def get_stats(self) -> Dict[str, Any]:
        client = self._get_client()
        size = 0
        memory = 0
        if client:
            try:
                keys = list(client.scan_iter(match=self._k("*")))
                size = len(keys)
                memory = sum(client.memory_usage(key) or 0 for key in keys)
            except (ConnectionError, TimeoutError, RedisError) as e:
                logger.warning(f"Cache stats error: {e}")
        return {
            "hits": self._hits,
            "misses": self._misses,
            "sets": self._sets,
            "deletes": self._deletes,
            "size": size,
            "hit_rate": self._hit_rate(),
            "memory_usage_estimate": memory,
        }

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


def build_cache(config: Settings) -> ResultCache:
    """Construct the configured cache backend."""
    if config.CACHE_BACKEND == "redis" and config.REDIS_URL:
        return RedisResultCache(config.REDIS_URL, default_ttl=config.CACHE_TTL_DEFAULT)
    return MemoryResultCache(default_ttl=config.CACHE_TTL_DEFAULT)
