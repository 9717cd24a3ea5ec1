"""Shared test fixtures and configuration.

Sets safe environment variables before any event_coming import, and
provides temp-file stores, an in-memory cache double with a controllable
clock, and a mocked notifier.
"""

import os

# Patch env vars BEFORE any event_coming imports
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("WHATSAPP_ACCESS_TOKEN", "")

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from event_coming.ports.cache_port import CacheError

T0 = datetime(2026, 3, 14, 18, 0, tzinfo=timezone.utc)


class Clock:
    """Mutable 'now' shared by the cache double and the services under test."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class InMemoryCache:
    """CachePort double: a dict with per-key expiry driven by `clock`."""

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._data: dict[str, tuple[bytes, datetime]] = {}
        self.published: list[tuple[str, bytes]] = []
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise CacheError("cache unavailable")

    def _live(self, key: str) -> bytes | None:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    def put_raw(self, key: str, value: bytes, ttl_seconds: int = 3600) -> None:
        self._data[key] = (value, self._clock() + timedelta(seconds=ttl_seconds))

    def ttl(self, key: str) -> float | None:
        if self._live(key) is None:
            return None
        return (self._data[key][1] - self._clock()).total_seconds()

    async def get(self, key):
        self._check()
        return self._live(key)

    async def set(self, key, value, ttl_seconds):
        self._check()
        if ttl_seconds > 0:
            self.put_raw(key, value, ttl_seconds)

    async def mget(self, keys):
        self._check()
        return [self._live(k) for k in keys]

    async def delete(self, key):
        self._check()
        self._data.pop(key, None)

    async def expire(self, key, ttl_seconds):
        self._check()
        value = self._live(key)
        if value is not None:
            self.put_raw(key, value, ttl_seconds)

    async def scan_prefix(self, prefix, count=100):
        self._check()
        keys = [k for k in list(self._data) if k.startswith(prefix) and self._live(k) is not None]
        for i in range(0, len(keys), count):
            yield keys[i:i + count]

    async def publish(self, channel, message):
        self._check()
        self.published.append((channel, message))


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def cache(clock):
    return InMemoryCache(clock)


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_event_coming.db")


@pytest.fixture
def event_db(tmp_db_path):
    from event_coming.data.db import EventDB
    return EventDB(db_path=tmp_db_path)


@pytest.fixture
def participant_db(tmp_db_path):
    from event_coming.data.db import ParticipantDB
    return ParticipantDB(db_path=tmp_db_path)


@pytest.fixture
def scheduler_db(tmp_db_path):
    from event_coming.data.db import SchedulerDB
    return SchedulerDB(db_path=tmp_db_path)


@pytest.fixture
def location_db(tmp_db_path):
    from event_coming.data.db import LocationDB
    return LocationDB(db_path=tmp_db_path)


@pytest.fixture
def notifier():
    """NotificationPort mock; every send succeeds unless a test says otherwise."""
    mock = AsyncMock()
    mock.send_confirmation_request = AsyncMock(return_value=None)
    mock.send_reminder = AsyncMock(return_value=None)
    mock.send_location_request = AsyncMock(return_value=None)
    mock.send_eta_update = AsyncMock(return_value=None)
    mock.send_message = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def event(event_db):
    """An event starting two hours after T0 and ending four hours after."""
    return event_db.add_event(
        org_id="org-1",
        name="Saturday football",
        location_lat=-23.550520,
        location_lng=-46.633308,
        location_address="Av. Paulista, 1000",
        start_time=T0 + timedelta(hours=2),
        end_time=T0 + timedelta(hours=4),
    )


@pytest.fixture
def location_cache(cache, location_db, clock):
    from event_coming.core.location_cache import LocationCache
    return LocationCache(cache, location_db, clock=clock)
