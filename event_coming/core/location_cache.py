"""
Event Coming — Location Cache.

Keeps the freshest GPS sample per (event, participant) in the key-value
cache, with a TTL that ends when the event ends, so stale trackers expire
on their own. Every write is first appended to the durable history, which
stays authoritative after the cache entry is gone.

Reads go to the cache first and fall back to the history store on a miss,
a corrupt entry, or an unavailable cache.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable

from event_coming.config import LocationCacheConfig
from event_coming.data.db import to_utc, utcnow
from event_coming.data.models import LocationSample
from event_coming.ports.cache_port import CacheError

if TYPE_CHECKING:
    from event_coming.data.db import LocationDB
    from event_coming.ports.cache_port import CachePort

logger = logging.getLogger(__name__)


def latest_location_prefix(event_id: str) -> str:
    return f"location:latest:{event_id}:"


def latest_location_key(event_id: str, participant_id: str) -> str:
    return f"{latest_location_prefix(event_id)}{participant_id}"


def location_updates_channel(event_id: str) -> str:
    return f"location:updates:{event_id}"


def encode_sample(sample: LocationSample) -> bytes:
    return json.dumps(sample.to_dict()).encode()


def decode_sample(raw: bytes | str) -> LocationSample:
    """Parse a cached sample. Raises ValueError/KeyError/TypeError if malformed."""
    return LocationSample.from_dict(json.loads(raw))


class LocationCache:
    """Latest-sample cache backed by an append-only history."""

    def __init__(
        self,
        cache: CachePort,
        history: LocationDB,
        config: LocationCacheConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._cache = cache
        self._history = history
        self._config = config or LocationCacheConfig()
        self._clock = clock

    def ttl_seconds(self, ttl_until: datetime | None) -> int:
        """Seconds the latest pointer should live.

        Bound to `ttl_until` (the event end) when known, else the default
        window. May be zero or negative for an event that already ended.
        """
        now = self._clock()
        if ttl_until is None:
            return int(timedelta(hours=self._config.default_ttl_hours).total_seconds())
        return int((to_utc(ttl_until) - now).total_seconds())

    async def set_latest(
        self, sample: LocationSample, ttl_until: datetime | None = None,
    ) -> None:
        """Append the sample to history, then overwrite the cached pointer.

        Cache failures are logged and swallowed: the history write already
        succeeded and reads fall back to it.
        """
        self._history.add_location(sample)

        key = latest_location_key(sample.event_id, sample.participant_id)
        ttl = self.ttl_seconds(ttl_until)
        if ttl <= 0:
            logger.info(
                "Event %s already ended; not caching location for %s",
                sample.event_id, sample.participant_id,
            )
            return

        data = encode_sample(sample)
        try:
            await self._cache.set(key, data, ttl)
        except CacheError as exc:
            logger.warning("Failed to cache latest location for %s: %s", key, exc)
            return

        try:
            await self._cache.publish(location_updates_channel(sample.event_id), data)
        except CacheError as exc:
            logger.warning("Failed to publish location update for %s: %s", key, exc)

    async def get_latest(
        self, event_id: str, participant_id: str,
    ) -> LocationSample | None:
        """Latest sample for a participant in an event, or None if never seen."""
        key = latest_location_key(event_id, participant_id)
        try:
            raw = await self._cache.get(key)
        except CacheError as exc:
            logger.warning("Cache read failed for %s, using history: %s", key, exc)
            raw = None

        if raw is not None:
            try:
                return decode_sample(raw)
            except (ValueError, KeyError, TypeError) as exc:
                logger.warning("Corrupt cache entry %s, using history: %s", key, exc)

        return self._history.get_latest(participant_id, event_id=event_id)

    async def get_latest_for_event(
        self, event_id: str, participant_ids: list[str],
    ) -> list[LocationSample]:
        """Latest samples for several participants of one event.

        One batch read from the cache; participants it misses are looked
        up in history. Participants with no location at all are omitted.
        """
        if not participant_ids:
            return []

        keys = [latest_location_key(event_id, pid) for pid in participant_ids]
        try:
            values = await self._cache.mget(keys)
        except CacheError as exc:
            logger.warning("Batch cache read failed for event %s: %s", event_id, exc)
            values = [None] * len(keys)

        samples: list[LocationSample] = []
        for pid, raw in zip(participant_ids, values):
            sample = None
            if raw is not None:
                try:
                    sample = decode_sample(raw)
                except (ValueError, KeyError, TypeError) as exc:
                    logger.warning("Corrupt cache entry for %s: %s", pid, exc)
            if sample is None:
                sample = self._history.get_latest(pid, event_id=event_id)
            if sample is not None:
                samples.append(sample)
        return samples

    def get_history(
        self,
        participant_id: str,
        start: datetime,
        end: datetime,
        event_id: str | None = None,
        org_id: str | None = None,
    ) -> list[LocationSample]:
        return self._history.get_history(
            participant_id, start, end, org_id=org_id, event_id=event_id,
        )
