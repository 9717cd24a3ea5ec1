"""Redis cache adapter — implements CachePort.

Wraps a redis.asyncio client. Every Redis failure is re-raised as
CacheError so core modules never import redis themselves.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator

import redis.asyncio as redis
from redis.exceptions import RedisError

from event_coming.ports.cache_port import CacheError

logger = logging.getLogger(__name__)


class RedisCache:
    """Redis implementation of CachePort."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisCache:
        return cls(redis.from_url(url))

    async def ping(self) -> None:
        try:
            await self._client.ping()
        except RedisError as exc:
            raise CacheError(f"Redis ping failed: {exc}") from exc

    async def close(self) -> None:
        await self._client.aclose()

    async def get(self, key: str) -> bytes | None:
        try:
            return await self._client.get(key)
        except RedisError as exc:
            raise CacheError(f"GET {key} failed: {exc}") from exc

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        # Redis rejects EX <= 0; a value that is already expired is not written.
        if ttl_seconds <= 0:
            logger.debug("Skipping SET %s with non-positive TTL %d", key, ttl_seconds)
            return
        try:
            await self._client.set(key, value, ex=ttl_seconds)
        except RedisError as exc:
            raise CacheError(f"SET {key} failed: {exc}") from exc

    async def mget(self, keys: list[str]) -> list[bytes | None]:
        if not keys:
            return []
        try:
            return await self._client.mget(keys)
        except RedisError as exc:
            raise CacheError(f"MGET of {len(keys)} keys failed: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except RedisError as exc:
            raise CacheError(f"DEL {key} failed: {exc}") from exc

    async def expire(self, key: str, ttl_seconds: int) -> None:
        try:
            await self._client.expire(key, ttl_seconds)
        except RedisError as exc:
            raise CacheError(f"EXPIRE {key} failed: {exc}") from exc

    async def scan_prefix(self, prefix: str, count: int = 100) -> AsyncIterator[list[str]]:
        cursor = 0
        while True:
            try:
                cursor, keys = await self._client.scan(
                    cursor=cursor, match=f"{prefix}*", count=count,
                )
            except RedisError as exc:
                raise CacheError(f"SCAN {prefix}* failed: {exc}") from exc
            if keys:
                yield [k.decode() if isinstance(k, bytes) else k for k in keys]
            if cursor == 0:
                break

    async def publish(self, channel: str, message: bytes) -> None:
        try:
            await self._client.publish(channel, message)
        except RedisError as exc:
            raise CacheError(f"PUBLISH {channel} failed: {exc}") from exc
