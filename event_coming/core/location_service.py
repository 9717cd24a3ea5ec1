"""
Event Coming — Location ingestion and queries.

Validates inbound GPS fixes, ties them to the participant's event and
hands them to the LocationCache with a TTL bound to the event's end.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from event_coming.core.errors import InvalidInputError, NotFoundError
from event_coming.data.db import to_utc, utcnow
from event_coming.data.models import LocationSample

if TYPE_CHECKING:
    from event_coming.core.location_cache import LocationCache
    from event_coming.data.db import EventDB, ParticipantDB

logger = logging.getLogger(__name__)


def validate_fix(
    latitude: float,
    longitude: float,
    accuracy: float | None = None,
    speed: float | None = None,
    heading: float | None = None,
) -> None:
    """Raise InvalidInputError for coordinates or sensor values out of range."""
    if not -90.0 <= latitude <= 90.0:
        raise InvalidInputError(f"latitude out of range: {latitude}")
    if not -180.0 <= longitude <= 180.0:
        raise InvalidInputError(f"longitude out of range: {longitude}")
    if accuracy is not None and accuracy < 0:
        raise InvalidInputError(f"accuracy must be >= 0, got {accuracy}")
    if speed is not None and speed < 0:
        raise InvalidInputError(f"speed must be >= 0, got {speed}")
    if heading is not None and not 0.0 <= heading <= 360.0:
        raise InvalidInputError(f"heading must be within 0-360, got {heading}")


class LocationService:
    """Entry point for location writes and reads."""

    def __init__(
        self,
        participants: ParticipantDB,
        events: EventDB,
        location_cache: LocationCache,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._participants = participants
        self._events = events
        self._cache = location_cache
        self._clock = clock

    async def create_location(
        self,
        org_id: str,
        participant_id: str,
        latitude: float,
        longitude: float,
        accuracy: float | None = None,
        altitude: float | None = None,
        speed: float | None = None,
        heading: float | None = None,
        timestamp: datetime | None = None,
    ) -> LocationSample:
        """Store a new fix for a participant.

        Raises:
            InvalidInputError: a value is out of range.
            NotFoundError: the participant does not exist.
        """
        validate_fix(latitude, longitude, accuracy, speed, heading)

        participant = self._participants.get_participant(participant_id, org_id)
        if participant is None:
            raise NotFoundError(f"Participant {participant_id} not found")

        event = self._events.get_event(participant.event_id, org_id)
        if event is None:
            logger.warning(
                "Event %s not found for participant %s, using default cache TTL",
                participant.event_id, participant_id,
            )

        sample = LocationSample(
            participant_id=participant_id,
            event_id=participant.event_id,
            org_id=org_id,
            latitude=latitude,
            longitude=longitude,
            accuracy=accuracy,
            altitude=altitude,
            speed=speed,
            heading=heading,
            timestamp=to_utc(timestamp or self._clock()),
        )
        await self._cache.set_latest(
            sample, ttl_until=event.end_time if event else None,
        )
        return sample

    async def get_latest_location(
        self, org_id: str, participant_id: str,
    ) -> LocationSample:
        participant = self._participants.get_participant(participant_id, org_id)
        if participant is None:
            raise NotFoundError(f"Participant {participant_id} not found")

        sample = await self._cache.get_latest(participant.event_id, participant_id)
        if sample is None:
            raise NotFoundError(f"No location for participant {participant_id}")
        return sample

    def get_location_history(
        self, org_id: str, participant_id: str, start: datetime, end: datetime,
    ) -> list[LocationSample]:
        if start > end:
            raise InvalidInputError("history start must not be after end")
        if self._participants.get_participant(participant_id, org_id) is None:
            raise NotFoundError(f"Participant {participant_id} not found")
        return self._cache.get_history(participant_id, start, end, org_id=org_id)

    async def get_event_locations(
        self, org_id: str, event_id: str, page_size: int = 1000,
    ) -> list[LocationSample]:
        """Latest location of every participant of an event that has one.

        Participants are read `page_size` at a time, one cache batch per page.
        """
        samples: list[LocationSample] = []
        page = 1
        while True:
            batch = self._participants.list_by_event(
                event_id, org_id, page=page, per_page=page_size,
            )
            samples.extend(await self._cache.get_latest_for_event(
                event_id, [p.id for p in batch],
            ))
            if len(batch) < page_size:
                return samples
            page += 1
