"""Notification port — abstract interface for outbound participant messages.

Core modules depend on this protocol, never on a specific messaging provider.
Templating is the implementation's concern.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from event_coming.data.models import Event, Participant


class NotificationError(Exception):
    """Raised when a message could not be delivered to the provider."""


class NotificationPort(Protocol):
    """Abstract notification interface used by core modules."""

    async def send_confirmation_request(
        self, event: Event, participant: Participant
    ) -> None: ...

    async def send_reminder(self, event: Event, participant: Participant) -> None: ...

    async def send_location_request(
        self, event: Event, participant: Participant
    ) -> None: ...

    async def send_eta_update(
        self, event: Event, participant: Participant, eta_minutes: int
    ) -> None: ...

    async def send_message(self, phone_number: str, text: str) -> None: ...
