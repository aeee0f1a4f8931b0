"""
Cache layer: Redis when reachable, an in-process map otherwise.

The cache only accelerates reads of records that live in the database.
Every operation fails open: a broken or slow Redis makes the cache behave
as if it were always cold, never fails a request. Once Redis reports a
connection or timeout error the store switches to the in-process map for
the rest of the process lifetime.
"""

import fnmatch
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

import redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from .config import DEFAULT_CACHE_TTL

logger = logging.getLogger("mini-social.cache")


@dataclass(frozen=True)
class Connected:
    client: redis.Redis


class Fallback:
    def __repr__(self):
        return "Fallback()"


FALLBACK = Fallback()

CacheState = Union[Connected, Fallback]


@dataclass
class CacheEntry:
    value: str  # JSON text
    expires_at: float


class CacheStore:
    """Key/value cache with per-key TTL.

    Values must be JSON serialisable. They are stored as JSON in both
    backends, so what comes back from ``get`` is the JSON round-trip of what
    was given to ``set`` whichever backend is active.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._state: CacheState = FALLBACK
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    @property
    def state(self) -> CacheState:
        return self._state

    @property
    def backend(self) -> str:
        return "redis" if isinstance(self._state, Connected) else "memory"

    def initialize(self, url: Optional[str], timeout: float = 2.0, client_factory=redis.Redis.from_url):
        """Connect to Redis at ``url``; stay on the in-process map on any failure."""
        if not url:
            logger.info("No Redis URL configured, using memory cache")
            self._state = FALLBACK
            return

        try:
            client = client_factory(
                url,
                socket_timeout=timeout,
                socket_connect_timeout=timeout,
                decode_responses=True,
            )
            client.ping()
        except (RedisError, OSError, ValueError) as exc:
            logger.warning("Redis connection failed, using memory cache: %s", exc)
            self._state = FALLBACK
            return

        self._state = Connected(client)
        logger.info("Redis cache connected")

    def close(self):
        state = self._state
        self._state = FALLBACK
        if isinstance(state, Connected):
            state.client.close()
        with self._lock:
            self._entries.clear()

    # -----------------------
    # Public operations
    # -----------------------
    def get(self, key: str) -> Optional[Any]:
        client = self._client()
        try:
            if client is not None:
                raw = client.get(key)
            else:
                raw = self._memory_get(key)
        except RedisError as exc:
            self._remote_failed("get", key, exc)
            return None

        if raw is None:
            logger.debug("Cache MISS %s (%s)", key, self.backend)
            return None
        try:
            value = json.loads(raw)
        except ValueError:
            logger.error("Cache entry %s is not valid JSON, ignoring it", key)
            return None
        logger.debug("Cache HIT %s (%s)", key, self.backend)
        return value

    def set(self, key: str, value: Any, ttl: int = DEFAULT_CACHE_TTL):
        if ttl <= 0:
            self.delete(key)
            return
        try:
            serialized = json.dumps(value)
        except (TypeError, ValueError) as exc:
            logger.error("Cache set error for %s, value not serialisable: %s", key, exc)
            return

        client = self._client()
        try:
            if client is not None:
                client.setex(key, ttl, serialized)
            else:
                with self._lock:
                    self._entries[key] = CacheEntry(serialized, self._clock() + ttl)
        except RedisError as exc:
            self._remote_failed("set", key, exc)
            return
        logger.debug("Cache SET %s (%s, expires in %ss)", key, self.backend, ttl)

    def delete(self, key: str):
        client = self._client()
        try:
            if client is not None:
                client.delete(key)
            else:
                with self._lock:
                    self._entries.pop(key, None)
        except RedisError as exc:
            self._remote_failed("delete", key, exc)
            return
        logger.debug("Cache DELETE %s (%s)", key, self.backend)

    def clear(self, pattern: Optional[str] = None):
        """Remove keys matching a glob ``pattern``, or everything without one."""
        client = self._client()
        try:
            if client is not None:
                removed = self._redis_clear(client, pattern)
            else:
                removed = self._memory_clear(pattern)
        except RedisError as exc:
            self._remote_failed("clear", pattern or "*", exc)
            return
        logger.debug("Cache CLEAR %s removed %s entries (%s)", pattern or "*", removed, self.backend)

    # -----------------------
    # Backends
    # -----------------------
    def _client(self) -> Optional[redis.Redis]:
        state = self._state
        return state.client if isinstance(state, Connected) else None

    def _memory_get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                return None
            return entry.value

    def _memory_clear(self, pattern: Optional[str]) -> int:
        with self._lock:
            if pattern is None:
                removed = len(self._entries)
                self._entries.clear()
                return removed
            matching = [k for k in self._entries if fnmatch.fnmatchcase(k, pattern)]
            for k in matching:
                del self._entries[k]
            return len(matching)

    @staticmethod
    def _redis_clear(client: redis.Redis, pattern: Optional[str]) -> int:
        if pattern is None:
            removed = client.dbsize()
            client.flushdb()
            return removed
        keys = list(client.scan_iter(match=pattern))
        if keys:
            client.delete(*keys)
        return len(keys)

    def _remote_failed(self, op: str, key: str, exc: RedisError):
        if isinstance(exc, (RedisConnectionError, RedisTimeoutError)):
            self._fall_back(exc)
        else:
            logger.error("Cache %s error for %s: %s", op, key, exc)

    def _fall_back(self, exc: Exception):
        with self._lock:
            state = self._state
            if not isinstance(state, Connected):
                return
            self._state = FALLBACK
        logger.warning("Redis unavailable (%s), using memory cache from now on", exc)
        try:
            state.client.close()
        except (RedisError, OSError) as close_exc:
            logger.debug("Ignoring error while closing Redis client: %s", close_exc)
