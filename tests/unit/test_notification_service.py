"""
Unit tests for Telegram notifications.

Tests cover:
- Message formatting for found and not-found scans
- Bot API call handling (ok, rejected, transport failure)
- Fan-out to every recipient with per-recipient failure isolation
"""

import asyncio
import aiohttp
import pytest

from rfid_api.src.exceptions import NotificationError
from rfid_api.src.models.animal import AnimalRecord
from rfid_api.src.services.notification_service import (
    TelegramBotClient,
    TelegramNotifier,
    format_found_message,
    format_not_found_message,
)
from shared.metrics import ScanMetrics

from conftest import FakeBotClient


BELLA = AnimalRecord(id=1, rfid_code="A1", nama="Bella", jenis="Dog", usia=3, status_kesehatan="Sehat")


class FakeResponse:
    def __init__(self, status, body):
        self.status = status
        self._body = body

    async def json(self, content_type="application/json"):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Stands in for aiohttp.ClientSession.post"""

    def __init__(self, status=200, body=None, error=None):
        self.status = status
        self.body = body if body is not None else {"ok": True, "result": {"message_id": 7}}
        self.error = error
        self.calls = []
        self.closed = False

    def post(self, url, json=None, timeout=None):
        self.calls.append({"url": url, "json": json})
        if self.error:
            raise self.error
        return FakeResponse(self.status, self.body)

    async def close(self):
        self.closed = True


class TestMessageFormatting:
    """Test notification text"""

    def test_found_message_lists_record_fields(self):
        text = format_found_message(BELLA)

        assert text.splitlines() == [
            "Hewan terdeteksi",
            "Nama: Bella",
            "Jenis: Dog",
            "Usia: 3 tahun",
            "Status Kesehatan: Sehat",
            "RFID: A1",
        ]

    def test_not_found_message_names_tag(self):
        assert format_not_found_message("ZZ9").startswith("RFID ZZ9 not found")


class TestTelegramBotClient:
    """Test Bot API client"""

    @pytest.mark.asyncio
    async def test_send_message_posts_to_method_url(self):
        session = FakeSession()
        client = TelegramBotClient("123:abc", api_base="https://bot.test/", session=session)

        result = await client.send_message("111", "hello")

        assert result == {"message_id": 7}
        assert session.calls[0]["url"] == "https://bot.test/bot123:abc/sendMessage"
        assert session.calls[0]["json"] == {"chat_id": "111", "text": "hello"}

    @pytest.mark.asyncio
    async def test_rejected_call_raises_notification_error(self):
        session = FakeSession(status=400, body={"ok": False, "description": "chat not found"})
        client = TelegramBotClient("123:abc", session=session)

        with pytest.raises(NotificationError) as exc_info:
            await client.send_message("111", "hello")

        assert "chat not found" in exc_info.value.message

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        aiohttp.ClientConnectionError("connection reset"),
        asyncio.TimeoutError(),
    ])
    async def test_transport_failure_raises_notification_error(self, error):
        client = TelegramBotClient("123:abc", session=FakeSession(error=error))

        with pytest.raises(NotificationError) as exc_info:
            await client.send_message("111", "hello")

        assert "123:abc" not in exc_info.value.message

    @pytest.mark.asyncio
    async def test_invalid_json_raises_notification_error(self):
        session = FakeSession(body=ValueError("not json"))
        client = TelegramBotClient("123:abc", session=session)

        with pytest.raises(NotificationError):
            await client.delete_webhook()

    @pytest.mark.asyncio
    async def test_set_webhook_includes_secret(self):
        session = FakeSession(body={"ok": True, "result": True})
        client = TelegramBotClient("123:abc", session=session)

        await client.set_webhook("https://example.test/telegram/webhook", secret_token="s3cret")

        assert session.calls[0]["json"] == {
            "url": "https://example.test/telegram/webhook",
            "secret_token": "s3cret",
        }

    @pytest.mark.asyncio
    async def test_get_updates_passes_offset(self):
        session = FakeSession(body={"ok": True, "result": [{"update_id": 4}]})
        client = TelegramBotClient("123:abc", session=session)

        updates = await client.get_updates(offset=4, timeout=0)

        assert updates == [{"update_id": 4}]
        assert session.calls[0]["json"]["offset"] == 4

    @pytest.mark.asyncio
    async def test_close_leaves_shared_session_open(self):
        session = FakeSession()

        await TelegramBotClient("123:abc", session=session).close()

        assert session.closed is False


class TestTelegramNotifier:
    """Test notification fan-out"""

    @pytest.mark.asyncio
    async def test_found_reaches_every_recipient(self):
        bot = FakeBotClient()
        notifier = TelegramNotifier(bot, ["111", "222", "333"], ScanMetrics())

        result = await notifier.notify_found(BELLA)

        assert result.sent == 3
        assert result.failed == 0
        assert sorted(m["chat_id"] for m in bot.messages) == ["111", "222", "333"]

    @pytest.mark.asyncio
    async def test_failed_recipient_does_not_block_others(self):
        bot = FakeBotClient(failing_chats={"222"})
        metrics = ScanMetrics()
        notifier = TelegramNotifier(bot, ["111", "222", "333"], metrics)

        result = await notifier.notify_not_found("ZZ")

        assert result.sent == 2
        assert result.failed == 1
        assert sorted(m["chat_id"] for m in bot.messages) == ["111", "333"]
        assert metrics.registry.get_sample_value(
            "notifications_total", {"kind": "not_found", "status": "failed"}
        ) == 1.0
        assert metrics.registry.get_sample_value(
            "notifications_total", {"kind": "not_found", "status": "sent"}
        ) == 2.0

    @pytest.mark.asyncio
    async def test_disabled_without_client(self):
        notifier = TelegramNotifier(None, ["111"])

        result = await notifier.notify_found(BELLA)

        assert notifier.enabled is False
        assert result.sent == result.failed == 0

    @pytest.mark.asyncio
    async def test_disabled_without_recipients(self):
        bot = FakeBotClient()
        notifier = TelegramNotifier(bot, [])

        await notifier.notify_found(BELLA)

        assert notifier.enabled is False
        assert bot.messages == []
