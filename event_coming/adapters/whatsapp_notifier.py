"""WhatsApp notification adapter — implements NotificationPort.

Sends plain text messages through the WhatsApp Cloud API `/messages`
endpoint. Message wording lives here; core modules only say *what* to send.

When no access token is configured, sends are logged and skipped.
"""

from __future__ import annotations

import logging

import httpx

from event_coming.data.models import Event, Participant
from event_coming.ports.notification_port import NotificationError

logger = logging.getLogger(__name__)

_TIMEOUT_SECONDS = 30
_DATE_FORMAT = "%d/%m/%Y at %H:%M"


def format_eta_text(eta_minutes: int) -> str:
    """Human-readable ETA, e.g. "about 25 minutes" or "about 1h05min"."""
    if eta_minutes <= 5:
        return "less than 5 minutes"
    if eta_minutes <= 60:
        return f"about {eta_minutes} minutes"
    hours, minutes = divmod(eta_minutes, 60)
    return f"about {hours}h{minutes:02d}min"


def _event_address(event: Event) -> str:
    if event.location_address:
        return event.location_address
    return f"{event.location_lat:.6f}, {event.location_lng:.6f}"


def confirmation_text(event: Event, participant: Participant) -> str:
    return (
        "*Attendance confirmation*\n\n"
        f"Hi {participant.name}!\n\n"
        "You are invited to:\n"
        f"*{event.name}*\n"
        f"{event.start_time.strftime(_DATE_FORMAT)}\n\n"
        "Please reply *YES* to confirm or *NO* to decline."
    )


def reminder_text(event: Event, participant: Participant) -> str:
    return (
        "*Event reminder*\n\n"
        f"Hi {participant.name}!\n\n"
        "Your event is coming up:\n"
        f"*{event.name}*\n"
        f"{event.start_time.strftime(_DATE_FORMAT)}\n"
        f"{_event_address(event)}"
    )


def location_request_text(event: Event, participant: Participant) -> str:
    return (
        "*Share your location*\n\n"
        f"Hi {participant.name}!\n\n"
        f"*{event.name}* is about to start. "
        "Please share your current location so we can estimate your arrival time."
    )


class WhatsAppNotifier:
    """WhatsApp Cloud API implementation of NotificationPort."""

    def __init__(
        self,
        phone_number_id: str,
        access_token: str,
        api_url: str = "https://graph.facebook.com",
        api_version: str = "v18.0",
    ) -> None:
        self._access_token = access_token
        self._messages_url = (
            f"{api_url.rstrip('/')}/{api_version}/{phone_number_id}/messages"
        )
        self._configured = bool(access_token and phone_number_id)

    @classmethod
    def from_settings(cls) -> WhatsAppNotifier:
        from event_coming.config import settings

        return cls(
            phone_number_id=settings.WHATSAPP_PHONE_NUMBER_ID,
            access_token=settings.WHATSAPP_ACCESS_TOKEN,
            api_url=settings.WHATSAPP_API_URL,
            api_version=settings.WHATSAPP_API_VERSION,
        )

    async def send_confirmation_request(
        self, event: Event, participant: Participant
    ) -> None:
        await self.send_message(
            participant.phone_number, confirmation_text(event, participant),
        )

    async def send_reminder(self, event: Event, participant: Participant) -> None:
        await self.send_message(
            participant.phone_number, reminder_text(event, participant),
        )

    async def send_location_request(
        self, event: Event, participant: Participant
    ) -> None:
        await self.send_message(
            participant.phone_number, location_request_text(event, participant),
        )

    async def send_eta_update(
        self, event: Event, participant: Participant, eta_minutes: int
    ) -> None:
        # Organizers read ETA updates from the log stream and event cache.
        logger.info(
            "ETA update for event %s: %s arrives in %s (%d min)",
            event.id, participant.name, format_eta_text(eta_minutes), eta_minutes,
        )

    async def send_message(self, phone_number: str, text: str) -> None:
        if not self._configured:
            logger.warning(
                "WhatsApp client not configured, skipping message to %s", phone_number,
            )
            return

        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": phone_number,
            "type": "text",
            "text": {"body": text},
        }
        try:
            async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS) as client:
                resp = await client.post(
                    self._messages_url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self._access_token}"},
                )
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationError(
                f"WhatsApp send to {phone_number} failed: {exc}"
            ) from exc

        logger.info("WhatsApp message sent to %s", phone_number)
