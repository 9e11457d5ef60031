"""Revoked-access-token stores with per-entry expiry."""

from __future__ import annotations

import asyncio
import hashlib
import time
from typing import Protocol

from loguru import logger
from redis.asyncio import Redis

from cashheros_api.core.settings import Settings


class TokenBlacklist(Protocol):
    """Set of opaque token strings whose members evict themselves after a TTL."""

    async def add(self, token: str, ttl_seconds: float) -> None:
        ...

    async def contains(self, token: str) -> bool:
        ...

    async def ping(self) -> bool:
        ...


class InMemoryTokenBlacklist:
    """Single-process blacklist backed by a dict and event-loop timers.

    Entries are lost on restart, which is why production requires the Redis
    backend.
    """

    backend_name = "memory"

    def __init__(self) -> None:
        self._entries: dict[str, float] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def add(self, token: str, ttl_seconds: float) -> None:
        if ttl_seconds <= 0 or token in self._entries:
            return
        self._entries[token] = time.monotonic() + ttl_seconds
        loop = asyncio.get_running_loop()
        self._timers[token] = loop.call_later(ttl_seconds, self._evict, token)

    async def contains(self, token: str) -> bool:
        expires_at = self._entries.get(token)
        if expires_at is None:
            return False
        if expires_at <= time.monotonic():
            # Timer has not fired yet (loop busy or closed); treat as evicted.
            self._evict(token)
            return False
        return True

    async def ping(self) -> bool:
        return True

    def _evict(self, token: str) -> None:
        self._entries.pop(token, None)
        timer = self._timers.pop(token, None)
        if timer is not None:
            timer.cancel()

    def clear(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._entries.clear()


class RedisTokenBlacklist:
    """Blacklist shared across processes using Redis key expiry."""

    backend_name = "redis"

    def __init__(self, redis_client: Redis, *, prefix: str = "auth:blacklist:") -> None:
        self._redis = redis_client
        self._prefix = prefix

    def _key(self, token: str) -> str:
        digest = hashlib.sha256(token.encode("utf-8")).hexdigest()
        return f"{self._prefix}{digest}"

    async def add(self, token: str, ttl_seconds: float) -> None:
        ttl = int(ttl_seconds)
        if ttl_seconds > ttl:
            ttl += 1
        if ttl <= 0:
            return
        await self._redis.set(self._key(token), "1", ex=ttl, nx=True)

    async def contains(self, token: str) -> bool:
        return bool(await self._redis.exists(self._key(token)))

    async def ping(self) -> bool:
        return bool(await self._redis.ping())


def build_token_blacklist(config: Settings) -> TokenBlacklist:
    if config.token_blacklist_backend == "redis":
        client = Redis.from_url(config.redis_url, encoding="utf-8", decode_responses=True)
        logger.info("Token blacklist backed by Redis", prefix=config.token_blacklist_prefix)
        return RedisTokenBlacklist(client, prefix=config.token_blacklist_prefix)
    logger.warning(
        "Token blacklist is process-local; revocations are lost on restart",
        environment=config.environment,
    )
    return InMemoryTokenBlacklist()
