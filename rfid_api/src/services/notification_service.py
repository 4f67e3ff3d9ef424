"""
Chat notifications over the Telegram Bot API.

Provides:
- TelegramBotClient: thin aiohttp client for the Bot API methods we use
- TelegramNotifier: formats scan results and fans them out to every
  configured recipient

Delivery is best-effort. A failure for one recipient is logged and counted
and the remaining recipients are still attempted.
"""

import asyncio
import aiohttp
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from rfid_api.src.exceptions import NotificationError
from rfid_api.src.models.animal import AnimalRecord
from shared.logging import get_logger
from shared.metrics import ScanMetrics

logger = get_logger(__name__)


# ============================================================================
# Message formatting
# ============================================================================


def format_found_message(record: AnimalRecord) -> str:
    """
    Render the multi-line summary sent for a matched tag.

    Args:
        record: Matched animal record

    Returns:
        Message text
    """
    return "\n".join([
        "Hewan terdeteksi",
        f"Nama: {record.nama}",
        f"Jenis: {record.jenis}",
        f"Usia: {record.usia} tahun",
        f"Status Kesehatan: {record.status_kesehatan}",
        f"RFID: {record.rfid_code}",
    ])


def format_not_found_message(uid: str) -> str:
    """Render the message sent when a tag matches no record."""
    return f"RFID {uid} not found: tag tidak terdaftar di database."


# ============================================================================
# Bot API client
# ============================================================================


class TelegramBotClient:
    """Async client for the Telegram Bot API."""

    def __init__(
        self,
        token: str,
        api_base: str = "https://api.telegram.org",
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None
    ):
        """
        Initialize the Bot API client.

        Args:
            token: Bot token issued by BotFather
            api_base: Bot API base URL
            timeout: Default timeout for a single call (seconds)
            session: Shared aiohttp session (one is created lazily if omitted)
        """
        self._token = token
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def call(
        self,
        method: str,
        payload: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None
    ) -> Any:
        """
        Invoke a Bot API method.

        Args:
            method: Bot API method name (e.g. "sendMessage")
            payload: JSON parameters
            timeout: Override of the default timeout (seconds)

        Returns:
            The ``result`` field of the API response

        Raises:
            NotificationError: On transport failure or a non-ok response
        """
        url = f"{self._api_base}/bot{self._token}/{method}"
        client_timeout = aiohttp.ClientTimeout(total=timeout or self._timeout)

        try:
            async with self._get_session().post(
                url, json=payload or {}, timeout=client_timeout
            ) as resp:
                status_code = resp.status
                body = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            # The URL embeds the token, so only the method is logged.
            raise NotificationError(
                f"Telegram {method} request failed: {type(e).__name__}",
                method=method
            ) from e

        if status_code != 200 or not isinstance(body, dict) or not body.get("ok"):
            description = body.get("description") if isinstance(body, dict) else None
            raise NotificationError(
                f"Telegram {method} rejected ({status_code}): {description}",
                method=method,
                status_code=status_code
            )

        return body.get("result")

    async def send_message(self, chat_id: str, text: str) -> Any:
        """Send a plain-text message to a chat."""
        return await self.call("sendMessage", {"chat_id": chat_id, "text": text})

    async def set_webhook(self, url: str, secret_token: Optional[str] = None) -> Any:
        """Ask Telegram to deliver updates to ``url``."""
        payload: Dict[str, Any] = {"url": url}
        if secret_token:
            payload["secret_token"] = secret_token
        return await self.call("setWebhook", payload)

    async def delete_webhook(self) -> Any:
        """Remove any webhook so updates can be polled."""
        return await self.call("deleteWebhook")

    async def get_updates(self, offset: Optional[int] = None, timeout: int = 30) -> List[Dict[str, Any]]:
        """
        Long-poll for pending updates.

        Args:
            offset: First update id to return
            timeout: Long-poll timeout (seconds)

        Returns:
            List of update objects
        """
        payload: Dict[str, Any] = {"timeout": timeout, "allowed_updates": ["message"]}
        if offset is not None:
            payload["offset"] = offset
        result = await self.call("getUpdates", payload, timeout=timeout + self._timeout)
        return result or []

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()


# ============================================================================
# Notification fan-out
# ============================================================================


@dataclass
class NotificationResult:
    """Outcome of one fan-out."""
    sent: int = 0
    failed: int = 0


class TelegramNotifier:
    """Sends scan results to every configured chat recipient."""

    def __init__(
        self,
        client: Optional[TelegramBotClient],
        recipients: List[str],
        metrics: Optional[ScanMetrics] = None
    ):
        """
        Initialize the notifier.

        Args:
            client: Bot API client, or None when notifications are disabled
            recipients: Chat ids that receive every notification
            metrics: Metric set for delivery counters
        """
        self.client = client
        self.recipients = list(recipients)
        self.metrics = metrics

    @property
    def enabled(self) -> bool:
        return self.client is not None and bool(self.recipients)

    async def notify_found(self, record: AnimalRecord) -> NotificationResult:
        """
        Send the summary of a matched record to all recipients.

        Args:
            record: Matched animal record

        Returns:
            Delivery counts
        """
        return await self._fan_out("found", format_found_message(record), rfid_code=record.rfid_code)

    async def notify_not_found(self, uid: str) -> NotificationResult:
        """
        Tell all recipients a tag matched no record.

        Args:
            uid: Unrecognized tag

        Returns:
            Delivery counts
        """
        return await self._fan_out("not_found", format_not_found_message(uid), rfid_code=uid)

    async def _fan_out(self, kind: str, text: str, rfid_code: str) -> NotificationResult:
        if not self.enabled:
            logger.debug("notification_skipped_disabled", kind=kind, rfid_code=rfid_code)
            return NotificationResult()

        outcomes = await asyncio.gather(
            *(self._deliver(chat_id, text, kind) for chat_id in self.recipients)
        )
        result = NotificationResult(
            sent=sum(1 for ok in outcomes if ok),
            failed=sum(1 for ok in outcomes if not ok),
        )

        logger.info(
            "notification_fan_out_complete",
            kind=kind,
            rfid_code=rfid_code,
            sent=result.sent,
            failed=result.failed
        )
        return result

    async def _deliver(self, chat_id: str, text: str, kind: str) -> bool:
        try:
            await self.client.send_message(chat_id, text)
        except NotificationError as e:
            logger.warning(
                "notification_delivery_failed",
                kind=kind,
                chat_id=chat_id,
                error=e.message
            )
            self._count(kind, "failed")
            return False

        self._count(kind, "sent")
        return True

    def _count(self, kind: str, status: str) -> None:
        if self.metrics is not None:
            self.metrics.notifications.labels(kind=kind, status=status).inc()
