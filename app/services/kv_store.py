# =============================================================================
# Key-Value Store: pluggable persistence backend for session results
# =============================================================================
#
# The result store only needs get/set/delete of string values under string
# keys, plus prefix listing for cleanup. Anything that satisfies the
# KeyValueStore protocol can back it.
#
# ARCHITECTURE:
#   KeyValueStore (Protocol)
#   ├── InMemoryKeyValueStore  — dict, process-local (tests, dev)
#   ├── RedisKeyValueStore     — redis.asyncio, keys expire after a TTL
#   └── get_kv_store()         — singleton factory, reads from config
# =============================================================================

from __future__ import annotations

import logging
import re
from typing import Protocol

from app.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class KeyValueStore(Protocol):
    """Minimal async key-value contract used by ResultStore."""

    async def get(self, key: str) -> str | None:
        """Return the value stored under `key`, or None."""
        ...

    async def set(self, key: str, value: str) -> None:
        """Store `value` under `key`, replacing any previous value."""
        ...

    async def delete(self, key: str) -> None:
        """Remove `key`. Missing keys are ignored."""
        ...

    async def keys(self, prefix: str) -> list[str]:
        """All keys starting with `prefix`."""
        ...


# ---------------------------------------------------------------------------
# Implementation 1: In-Memory
# ---------------------------------------------------------------------------


class InMemoryKeyValueStore:
    """Dict-backed store. Contents live as long as the process."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self, prefix: str) -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


# ---------------------------------------------------------------------------
# Implementation 2: Redis
# ---------------------------------------------------------------------------

_GLOB_SPECIALS = re.compile(r"([\\*?\[\]])")


def _escape_glob(text: str) -> str:
    """Escape Redis MATCH metacharacters so `text` matches only itself."""
    return _GLOB_SPECIALS.sub(r"\\\1", text)


class RedisKeyValueStore:
    """
    Redis-backed store using the asyncio client.

    Every write refreshes the key's TTL, so a session's data expires
    `ttl_seconds` after its last update.
    """

    def __init__(
        self,
        url: str | None = None,
        ttl_seconds: int | None = None,
        namespace: str = "propdoc",
    ) -> None:
        self._url = url or settings.redis_url
        self._ttl = ttl_seconds if ttl_seconds is not None else settings.storage_ttl_seconds
        self._namespace = namespace
        self._client = None

    def _get_client(self):
        """Lazily create and cache the async Redis client."""
        if self._client is None:
            import redis.asyncio as aioredis
            self._client = aioredis.from_url(self._url, decode_responses=True)
            logger.info("Initialized RedisKeyValueStore (url=%s)", self._url)
        return self._client

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get(self, key: str) -> str | None:
        return await self._get_client().get(self._key(key))

    async def set(self, key: str, value: str) -> None:
        if self._ttl > 0:
            await self._get_client().set(self._key(key), value, ex=self._ttl)
        else:
            await self._get_client().set(self._key(key), value)

    async def delete(self, key: str) -> None:
        await self._get_client().delete(self._key(key))

    async def keys(self, prefix: str) -> list[str]:
        strip = len(self._namespace) + 1
        pattern = _escape_glob(self._key(prefix)) + "*"
        found = [k[strip:] async for k in self._get_client().scan_iter(match=pattern)]
        return sorted(found)


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

_store: InMemoryKeyValueStore | RedisKeyValueStore | None = None


def get_kv_store() -> InMemoryKeyValueStore | RedisKeyValueStore:
    """
    Return the configured key-value backend (lazy singleton).

    - "memory" → InMemoryKeyValueStore
    - "redis"  → RedisKeyValueStore
    """
    global _store
    if _store is None:
        if settings.storage_backend == "redis":
            _store = RedisKeyValueStore()
        elif settings.storage_backend == "memory":
            _store = InMemoryKeyValueStore()
        else:
            raise ValueError(
                f"Unknown storage backend '{settings.storage_backend}'. "
                "Supported: 'memory', 'redis'"
            )
    return _store
