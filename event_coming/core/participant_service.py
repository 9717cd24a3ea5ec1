"""RSVP state changes — store first, then the event cache.

The cache write is best-effort: a failure is logged and the store stays
the source of truth.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from event_coming.core.errors import NotFoundError
from event_coming.data.models import Participant, ParticipantStatus
from event_coming.ports.cache_port import CacheError

if TYPE_CHECKING:
    from event_coming.core.event_cache import EventStateCache
    from event_coming.data.db import ParticipantDB

logger = logging.getLogger(__name__)


class ParticipantService:
    def __init__(self, participants: ParticipantDB, event_cache: EventStateCache) -> None:
        self._participants = participants
        self._event_cache = event_cache

    async def update_status(
        self, org_id: str, participant_id: str, status: ParticipantStatus,
    ) -> Participant:
        try:
            participant = self._participants.update_status(participant_id, org_id, status)
        except ValueError as exc:
            raise NotFoundError(str(exc)) from exc

        try:
            await self._event_cache.set_confirmation(org_id, participant.event_id, participant)
        except CacheError as exc:
            logger.warning(
                "Failed to cache confirmation for participant %s: %s", participant_id, exc,
            )
        return participant

    async def confirm(self, org_id: str, participant_id: str) -> Participant:
        return await self.update_status(org_id, participant_id, ParticipantStatus.CONFIRMED)

    async def deny(self, org_id: str, participant_id: str) -> Participant:
        return await self.update_status(org_id, participant_id, ParticipantStatus.DENIED)

    async def check_in(self, org_id: str, participant_id: str) -> Participant:
        return await self.update_status(org_id, participant_id, ParticipantStatus.CHECKED_IN)

    async def remove(self, org_id: str, participant_id: str) -> None:
        participant = self._participants.get_participant(participant_id, org_id)
        if participant is None:
            raise NotFoundError(f"Participant {participant_id} not found")

        self._participants.delete_participant(participant_id, org_id)
        try:
            await self._event_cache.delete_confirmation(
                org_id, participant.event_id, participant_id,
            )
        except CacheError as exc:
            logger.warning(
                "Failed to drop cached confirmation for %s: %s", participant_id, exc,
            )
