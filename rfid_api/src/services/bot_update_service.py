"""
Inbound Telegram updates.

Updates arrive either through the webhook route or through long polling.
The only command handled is ``/start`` (alias ``/id``), which replies with
the chat id so operators can add the chat to the recipient list.
"""

import asyncio
from typing import Any, Dict, Optional

from rfid_api.src.exceptions import NotificationError
from rfid_api.src.services.notification_service import TelegramBotClient
from shared.logging import get_logger

logger = get_logger(__name__)

CHAT_ID_COMMANDS = ("/start", "/id")


class BotUpdateHandler:
    """Handles a single Telegram update."""

    def __init__(self, client: TelegramBotClient):
        self.client = client

    async def handle(self, update: Dict[str, Any]) -> bool:
        """
        Process one update.

        Args:
            update: Update object as delivered by Telegram

        Returns:
            True if a reply was sent
        """
        message = update.get("message") or {}
        text = (message.get("text") or "").strip()
        chat_id = (message.get("chat") or {}).get("id")

        command = text.split(maxsplit=1)[0].split("@", 1)[0].lower() if text else ""
        if chat_id is None or command not in CHAT_ID_COMMANDS:
            logger.debug("bot_update_ignored", update_id=update.get("update_id"))
            return False

        reply = (
            "Bot notifikasi RFID aktif.\n"
            f"Chat ID: {chat_id}\n"
            "Tambahkan ID ini ke RFID_API_TELEGRAM_CHAT_IDS untuk menerima notifikasi scan."
        )
        try:
            await self.client.send_message(str(chat_id), reply)
        except NotificationError as e:
            logger.warning("bot_reply_failed", chat_id=chat_id, error=e.message)
            return False

        logger.info("bot_chat_id_reported", chat_id=chat_id)
        return True


class TelegramPoller:
    """Long-polls getUpdates and hands each update to the handler."""

    def __init__(
        self,
        client: TelegramBotClient,
        handler: BotUpdateHandler,
        timeout: int = 30,
        retry_delay: float = 5.0
    ):
        """
        Initialize the poller.

        Args:
            client: Bot API client
            handler: Update handler
            timeout: Long-poll timeout (seconds)
            retry_delay: Pause after a failed poll (seconds)
        """
        self.client = client
        self.handler = handler
        self.timeout = timeout
        self.retry_delay = retry_delay
        self.offset: Optional[int] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start polling in a background task."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="telegram-poller")
        logger.info("telegram_polling_started", timeout=self.timeout)

    async def stop(self) -> None:
        """Cancel polling and wait for the task to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("telegram_polling_task_failed")
        self._task = None
        logger.info("telegram_polling_stopped")

    async def poll_once(self) -> int:
        """
        Fetch and handle one batch of updates.

        Returns:
            Number of updates handled

        Raises:
            NotificationError: If getUpdates fails
        """
        updates = await self.client.get_updates(offset=self.offset, timeout=self.timeout)
        for update in updates:
            self.offset = int(update["update_id"]) + 1
            await self.handler.handle(update)
        return len(updates)

    async def _run(self) -> None:
        while True:
            try:
                await self.poll_once()
            except NotificationError as e:
                logger.warning("telegram_polling_failed", error=e.message, retry_in=self.retry_delay)
                await asyncio.sleep(self.retry_delay)
            except Exception:
                # CancelledError is not an Exception and still ends the loop
                logger.exception("telegram_polling_crashed", retry_in=self.retry_delay)
                await asyncio.sleep(self.retry_delay)
