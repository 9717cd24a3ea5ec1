"""
Event Coming — Event state cache.

Fast, read-only summaries of an event assembled from the key-value cache:
the latest location of each participant and each participant's RSVP state.

Snapshots are best-effort, not transactional. Malformed values are left
out and counted in `skipped_entries`; if the cache becomes unreachable
mid-scan the snapshot holds whatever was read so far.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, TypeVar

from event_coming.config import EventCacheConfig
from event_coming.core.location_cache import latest_location_prefix
from event_coming.data.db import utcnow
from event_coming.data.models import (
    ConfirmationEntry,
    EventCacheSnapshot,
    LocationSample,
    ParticipantStatus,
)
from event_coming.ports.cache_port import CacheError

if TYPE_CHECKING:
    from event_coming.data.models import Participant
    from event_coming.ports.cache_port import CachePort

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Malformed JSON, missing fields, unknown status values, bad timestamps.
MALFORMED_ENTRY_ERRORS = (ValueError, KeyError, TypeError)


def confirmation_prefix(org_id: str, event_id: str) -> str:
    return f"confirmation:{org_id}:{event_id}:"


def confirmation_key(org_id: str, event_id: str, participant_id: str) -> str:
    return f"{confirmation_prefix(org_id, event_id)}{participant_id}"


def decode_or_skip(raw: bytes | str | None, parse: Callable[[dict], T]) -> T | None:
    """Parse one cached JSON value, or return None if it is absent or malformed."""
    if raw is None:
        return None
    try:
        return parse(json.loads(raw))
    except MALFORMED_ENTRY_ERRORS as exc:
        logger.debug("Skipping malformed cache entry: %s", exc)
        return None


class EventStateCache:
    """Reads and writes the per-event cache key space."""

    def __init__(
        self,
        cache: CachePort,
        config: EventCacheConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._cache = cache
        self._config = config or EventCacheConfig()
        self._clock = clock

    async def get_snapshot(self, org_id: str, event_id: str) -> EventCacheSnapshot:
        snapshot = EventCacheSnapshot(
            event_id=event_id, org_id=org_id, fetched_at=self._clock(),
        )

        locations, skipped_locations = await self._scan(
            latest_location_prefix(event_id), LocationSample.from_dict,
        )
        confirmations, skipped_confirmations = await self._scan(
            confirmation_prefix(org_id, event_id), ConfirmationEntry.from_dict,
        )

        snapshot.locations = locations
        snapshot.total_locations = len(locations)
        snapshot.confirmations = confirmations
        snapshot.skipped_entries = skipped_locations + skipped_confirmations

        for entry in confirmations:
            if entry.status in (ParticipantStatus.CONFIRMED, ParticipantStatus.CHECKED_IN):
                snapshot.total_confirmed += 1
            elif entry.status is ParticipantStatus.PENDING:
                snapshot.total_pending += 1
            elif entry.status is ParticipantStatus.DENIED:
                snapshot.total_denied += 1

        return snapshot

    async def _scan(
        self, prefix: str, parse: Callable[[dict], T],
    ) -> tuple[list[T], int]:
        """Collect every parseable value under `prefix`.

        Returns (entries, skipped) where skipped counts malformed values.
        """
        entries: list[T] = []
        skipped = 0
        try:
            async for keys in self._cache.scan_prefix(prefix, self._config.scan_count):
                for raw in await self._cache.mget(keys):
                    if raw is None:
                        continue  # expired between SCAN and MGET
                    entry = decode_or_skip(raw, parse)
                    if entry is None:
                        skipped += 1
                        continue
                    entries.append(entry)
        except CacheError as exc:
            logger.warning("Cache scan of %s* interrupted: %s", prefix, exc)
        return entries, skipped

    async def set_confirmation(
        self, org_id: str, event_id: str, participant: Participant,
    ) -> None:
        entry = ConfirmationEntry(
            participant_id=participant.id,
            participant_name=participant.name,
            phone_number=participant.phone_number,
            status=participant.status,
            confirmed_at=participant.confirmed_at,
            checked_in_at=participant.checked_in_at,
            updated_at=self._clock(),
        )
        ttl = int(timedelta(hours=self._config.confirmation_ttl_hours).total_seconds())
        await self._cache.set(
            confirmation_key(org_id, event_id, participant.id),
            json.dumps(entry.to_dict()).encode(),
            ttl,
        )

    async def delete_confirmation(
        self, org_id: str, event_id: str, participant_id: str,
    ) -> None:
        await self._cache.delete(confirmation_key(org_id, event_id, participant_id))

    async def count_locations(self, event_id: str) -> int:
        """Number of participants with a live cached location.

        If the cache fails mid-scan, the count read so far is returned.
        """
        count = 0
        prefix = latest_location_prefix(event_id)
        try:
            async for keys in self._cache.scan_prefix(prefix, self._config.scan_count):
                count += len(keys)
        except CacheError as exc:
            logger.warning("Cache scan of %s* interrupted: %s", prefix, exc)
        return count
