"""Cache port — abstract key-value interface over byte strings.

Core modules depend on this protocol, never on a specific cache server.
Every operation touches a single key (or a batch of independent keys), so
callers need no locking of their own.
"""

from __future__ import annotations

from typing import AsyncIterator, Protocol


class CacheError(Exception):
    """Raised when the cache is unreachable or rejects an operation."""


class CachePort(Protocol):
    """Abstract cache interface used by core modules."""

    async def get(self, key: str) -> bytes | None: ...

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None: ...

    async def mget(self, keys: list[str]) -> list[bytes | None]: ...

    async def delete(self, key: str) -> None: ...

    async def expire(self, key: str, ttl_seconds: int) -> None: ...

    def scan_prefix(self, prefix: str, count: int = 100) -> AsyncIterator[list[str]]:
        """Yield batches of keys starting with `prefix`."""
        ...

    async def publish(self, channel: str, message: bytes) -> None: ...
