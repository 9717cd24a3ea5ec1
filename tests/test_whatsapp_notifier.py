"""Tests for event_coming.adapters.whatsapp_notifier — WhatsApp Cloud API sends."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from event_coming.adapters.whatsapp_notifier import (
    WhatsAppNotifier,
    confirmation_text,
    format_eta_text,
    reminder_text,
)
from event_coming.data.models import Event, Participant
from event_coming.ports.notification_port import NotificationError


EVENT = Event(
    id="ev-1",
    org_id="org-1",
    name="Saturday football",
    location_lat=-23.550520,
    location_lng=-46.633308,
    start_time=datetime(2026, 3, 14, 20, 0, tzinfo=timezone.utc),
)
PARTICIPANT = Participant(
    id="p1", event_id="ev-1", org_id="org-1", name="Ana", phone_number="+5511911110000",
)


def _mock_client(resp=None, side_effect=None):
    mock_client = AsyncMock()
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_client.post = AsyncMock(return_value=resp, side_effect=side_effect)
    return mock_client


def _ok_response():
    resp = MagicMock()
    resp.raise_for_status = MagicMock()
    return resp


class TestFormatting:
    @pytest.mark.parametrize("minutes,expected", [
        (0, "less than 5 minutes"),
        (5, "less than 5 minutes"),
        (25, "about 25 minutes"),
        (60, "about 60 minutes"),
        (65, "about 1h05min"),
        (150, "about 2h30min"),
    ])
    def test_format_eta_text(self, minutes, expected):
        assert format_eta_text(minutes) == expected

    def test_confirmation_text(self):
        text = confirmation_text(EVENT, PARTICIPANT)
        assert "Ana" in text
        assert "Saturday football" in text
        assert "14/03/2026 at 20:00" in text
        assert "YES" in text

    def test_reminder_falls_back_to_coordinates(self):
        assert "-23.550520, -46.633308" in reminder_text(EVENT, PARTICIPANT)


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_posts_to_messages_endpoint(self):
        notifier = WhatsAppNotifier("12345", "secret-token", api_version="v18.0")
        mock_client = _mock_client(resp=_ok_response())

        with patch("event_coming.adapters.whatsapp_notifier.httpx.AsyncClient", return_value=mock_client):
            await notifier.send_message("+5511911110000", "hello")

        mock_client.post.assert_awaited_once()
        url = mock_client.post.call_args.args[0]
        kwargs = mock_client.post.call_args.kwargs
        assert url == "https://graph.facebook.com/v18.0/12345/messages"
        assert kwargs["headers"]["Authorization"] == "Bearer secret-token"
        assert kwargs["json"]["to"] == "+5511911110000"
        assert kwargs["json"]["text"] == {"body": "hello"}

    @pytest.mark.asyncio
    async def test_send_reminder_uses_phone_number(self):
        notifier = WhatsAppNotifier("12345", "secret-token")
        mock_client = _mock_client(resp=_ok_response())

        with patch("event_coming.adapters.whatsapp_notifier.httpx.AsyncClient", return_value=mock_client):
            await notifier.send_reminder(EVENT, PARTICIPANT)

        payload = mock_client.post.call_args.kwargs["json"]
        assert payload["to"] == PARTICIPANT.phone_number
        assert "Saturday football" in payload["text"]["body"]

    @pytest.mark.asyncio
    async def test_http_error_raises_notification_error(self):
        notifier = WhatsAppNotifier("12345", "secret-token")
        mock_client = _mock_client(side_effect=httpx.ConnectTimeout("timed out"))

        with patch("event_coming.adapters.whatsapp_notifier.httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(NotificationError):
                await notifier.send_message("+5511911110000", "hello")

    @pytest.mark.asyncio
    async def test_bad_status_raises_notification_error(self):
        notifier = WhatsAppNotifier("12345", "secret-token")
        resp = MagicMock()
        resp.raise_for_status = MagicMock(side_effect=httpx.HTTPStatusError(
            "401 Unauthorized", request=MagicMock(), response=MagicMock(),
        ))
        mock_client = _mock_client(resp=resp)

        with patch("event_coming.adapters.whatsapp_notifier.httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(NotificationError):
                await notifier.send_message("+5511911110000", "hello")

    @pytest.mark.asyncio
    async def test_unconfigured_skips_send(self):
        notifier = WhatsAppNotifier("", "")

        with patch("event_coming.adapters.whatsapp_notifier.httpx.AsyncClient") as client_cls:
            await notifier.send_message("+5511911110000", "hello")

        client_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_eta_update_is_log_only(self):
        notifier = WhatsAppNotifier("12345", "secret-token")

        with patch("event_coming.adapters.whatsapp_notifier.httpx.AsyncClient") as client_cls:
            await notifier.send_eta_update(EVENT, PARTICIPANT, 12)

        client_cls.assert_not_called()
