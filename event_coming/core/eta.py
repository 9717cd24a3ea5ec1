"""
Event Coming — ETA engine.

Turns a participant's latest location into a distance and an estimated
arrival time toward a fixed target coordinate.

Two estimation methods:
- velocity: the latest sample carries a positive device speed;
  ETA = distance / speed.
- haversine: no device speed; ETA from the straight-line distance at the
  average speed of the participant's recent movement in the event, or
  at an assumed average speed when there is none.

Device speed is often noisy or absent, so the engine degrades to the
distance-only estimate instead of failing. A participant with no location
at all is NotFound, never a made-up ETA.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable

from event_coming.config import ETAConfig
from event_coming.core.errors import NotFoundError
from event_coming.data.db import utcnow
from event_coming.data.models import ETAMethod, ETAResult, LocationSample

if TYPE_CHECKING:
    from event_coming.core.location_cache import LocationCache
    from event_coming.data.db import ParticipantDB

logger = logging.getLogger(__name__)

EARTH_RADIUS_METERS = 6_371_000.0


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters between two WGS84 points."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c


def average_velocity(samples: list[LocationSample]) -> float:
    """Mean speed in m/s over consecutive samples (oldest first).

    Pairs with non-increasing timestamps are ignored. Returns 0 when fewer
    than two usable samples exist.
    """
    total_distance = 0.0
    total_seconds = 0.0
    for prev, curr in zip(samples, samples[1:]):
        elapsed = (curr.timestamp - prev.timestamp).total_seconds()
        if elapsed <= 0:
            continue
        total_distance += haversine_distance(
            prev.latitude, prev.longitude, curr.latitude, curr.longitude,
        )
        total_seconds += elapsed

    if total_seconds == 0:
        return 0.0
    return total_distance / total_seconds


def estimate_eta_minutes(distance_meters: float, velocity_mps: float) -> int:
    """Whole minutes to cover the distance; at least 1 while not arrived."""
    if velocity_mps <= 0 or distance_meters <= 0:
        return 0
    minutes = int(distance_meters / velocity_mps / 60)
    return max(minutes, 1)


class ETAEngine:
    """Computes ETAs from the cache-first latest location."""

    def __init__(
        self,
        location_cache: LocationCache,
        participants: ParticipantDB,
        config: ETAConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._locations = location_cache
        self._participants = participants
        self._config = config or ETAConfig()
        self._clock = clock

    @property
    def average_speed_mps(self) -> float:
        return self._config.average_speed_kmh * 1000.0 / 3600.0

    async def calculate_eta(
        self,
        participant_id: str,
        target_lat: float,
        target_lng: float,
        org_id: str | None = None,
    ) -> ETAResult:
        """ETA for one participant toward (target_lat, target_lng).

        Raises:
            NotFoundError: unknown participant, or no location recorded.
        """
        participant = self._participants.get_participant(participant_id, org_id)
        if participant is None:
            raise NotFoundError(f"Participant {participant_id} not found")

        sample = await self._locations.get_latest(participant.event_id, participant_id)
        if sample is None:
            raise NotFoundError(f"No location data for participant {participant_id}")

        distance = haversine_distance(
            sample.latitude, sample.longitude, target_lat, target_lng,
        )

        velocity, method = self._pick_velocity(sample, org_id)
        return ETAResult(
            participant_id=participant_id,
            distance_meters=distance,
            eta_minutes=estimate_eta_minutes(distance, velocity),
            method=method,
            last_update=sample.timestamp,
        )

    def _pick_velocity(
        self, sample: LocationSample, org_id: str | None = None,
    ) -> tuple[float, ETAMethod]:
        """Speed for the estimate and the method it counts as.

        Only a positive device speed makes it a velocity estimate. Without
        one, recent movement in the same event (when there is any) stands in
        for the assumed average speed, and the method stays haversine.
        """
        if sample.speed is not None and sample.speed > 0:
            return sample.speed, ETAMethod.VELOCITY

        now = self._clock()
        window = timedelta(minutes=self._config.history_window_minutes)
        history = self._locations.get_history(
            sample.participant_id, now - window, now,
            event_id=sample.event_id, org_id=org_id,
        )
        if len(history) >= 2:
            derived = average_velocity(history)
            if derived > 0:
                return derived, ETAMethod.HAVERSINE

        return self.average_speed_mps, ETAMethod.HAVERSINE

    async def calculate_multiple_etas(
        self,
        participant_ids: list[str],
        target_lat: float,
        target_lng: float,
        org_id: str | None = None,
    ) -> list[ETAResult]:
        """ETAs for several participants; those without a location are left out."""
        results: list[ETAResult] = []
        for pid in participant_ids:
            try:
                result = await self.calculate_eta(pid, target_lat, target_lng, org_id)
            except NotFoundError as exc:
                logger.info("Skipping ETA for %s: %s", pid, exc)
                continue
            results.append(result)
        return results
