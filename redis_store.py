"""
Redis-backed durable store: deposit records, hedge queue, position index.

Constructed explicitly and handed to the monitor and orchestrator; there is
no module-level client. Every operation is a single atomic Redis command.
Redis failures surface as TransientIOError.
"""
from __future__ import annotations

from typing import List, Optional

import redis.asyncio as redis_async
from redis.exceptions import RedisError
from loguru import logger

from errors import TransientIOError


class RedisStore:
    """Thin async wrapper over redis-py with an explicit connect/disconnect lifecycle."""

    def __init__(self, url: str = "redis://localhost:6379",
                 client: Optional[redis_async.Redis] = None):
        """
        Args:
            url: Redis connection URL
            client: pre-built client (tests inject fakeredis here)
        """
        self.url = url
        self._client = client

    @property
    def client(self) -> redis_async.Redis:
        if self._client is None:
            raise TransientIOError("Redis store is not connected")
        return self._client

    async def connect(self) -> None:
        if self._client is None:
            self._client = redis_async.from_url(
                self.url, decode_responses=True, socket_connect_timeout=5)
        try:
            await self._client.ping()
        except RedisError as e:
            raise TransientIOError(f"Redis connection failed: {e}") from e
        logger.info("Redis connected")

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.warning("Redis disconnected")

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except (RedisError, TransientIOError) as e:
            logger.error(f"Redis health check failed: {e}")
            return False

    # ── Key/value ────────────────────────────────────────────────────────

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.client.get(key)
        except RedisError as e:
            raise TransientIOError(f"GET {key} failed: {e}") from e

    async def set(self, key: str, value: str) -> None:
        try:
            await self.client.set(key, value)
        except RedisError as e:
            raise TransientIOError(f"SET {key} failed: {e}") from e

    async def set_with_expiry(self, key: str, ttl_sec: int, value: str) -> None:
        try:
            await self.client.setex(key, ttl_sec, value)
        except RedisError as e:
            raise TransientIOError(f"SETEX {key} failed: {e}") from e

    async def set_if_absent(self, key: str, value: str, ttl_sec: int) -> bool:
        """SET NX EX. True if this caller created the key."""
        try:
            return bool(await self.client.set(key, value, nx=True, ex=ttl_sec))
        except RedisError as e:
            raise TransientIOError(f"SET NX {key} failed: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(key)
        except RedisError as e:
            raise TransientIOError(f"DEL {key} failed: {e}") from e

    # ── Queue ────────────────────────────────────────────────────────────

    async def push(self, queue: str, value: str) -> None:
        try:
            await self.client.lpush(queue, value)
        except RedisError as e:
            raise TransientIOError(f"LPUSH {queue} failed: {e}") from e

    async def blocking_pop(self, queue: str, timeout_sec: int) -> Optional[str]:
        """BRPOP: oldest entry first (pairs with LPUSH for FIFO)."""
        try:
            item = await self.client.brpop([queue], timeout=timeout_sec)
        except RedisError as e:
            raise TransientIOError(f"BRPOP {queue} failed: {e}") from e
        return item[1] if item else None

    async def queue_length(self, queue: str) -> int:
        try:
            return int(await self.client.llen(queue))
        except RedisError as e:
            raise TransientIOError(f"LLEN {queue} failed: {e}") from e

    # ── Sets ─────────────────────────────────────────────────────────────

    async def set_add(self, key: str, member: str) -> None:
        try:
            await self.client.sadd(key, member)
        except RedisError as e:
            raise TransientIOError(f"SADD {key} failed: {e}") from e

    async def set_members(self, key: str) -> List[str]:
        try:
            return sorted(await self.client.smembers(key))
        except RedisError as e:
            raise TransientIOError(f"SMEMBERS {key} failed: {e}") from e

    async def sorted_set_add(self, key: str, score: float, member: str) -> None:
        try:
            await self.client.zadd(key, {member: score})
        except RedisError as e:
            raise TransientIOError(f"ZADD {key} failed: {e}") from e

    async def sorted_set_range_desc(self, key: str, limit: int) -> List[str]:
        if limit <= 0:
            return []
        try:
            return list(await self.client.zrange(key, 0, limit - 1, desc=True))
        except RedisError as e:
            raise TransientIOError(f"ZRANGE {key} failed: {e}") from e
