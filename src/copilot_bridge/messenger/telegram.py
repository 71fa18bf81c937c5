"""Telegram transport using python-telegram-bot's ``Bot`` with a caller-driven offset."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from telegram import Bot
from telegram import Update as TGUpdate
from telegram.error import TelegramError

from copilot_bridge.config import TelegramConfig
from copilot_bridge.log import get_logger
from copilot_bridge.messenger.base import ChatTransport, TransportError
from copilot_bridge.messenger.models import DocumentRef, IncomingMessage, Update

logger = get_logger(__name__)


class TelegramTransport(ChatTransport):
    """Plain long-polling client; the bridge owns and persists the update offset."""

    def __init__(self, config: TelegramConfig):
        self._config = config
        self._bot: Bot | None = None

    @property
    def platform_name(self) -> str:
        return "telegram"

    @property
    def bot(self) -> Bot:
        if self._bot is None:
            raise RuntimeError("Telegram transport not started. Call start() first.")
        return self._bot

    async def start(self) -> None:
        if not self._config.token:
            raise ValueError("Telegram bot token not configured (telegram.token)")

        api_base = self._config.api_base.rstrip("/")
        self._bot = Bot(
            token=self._config.token,
            base_url=f"{api_base}/bot",
            base_file_url=f"{api_base}/file/bot",
        )
        await self._bot.initialize()
        logger.info("telegram_transport_started", username=self._bot.username)

    async def stop(self) -> None:
        if self._bot:
            await self._bot.shutdown()
            self._bot = None
            logger.info("telegram_transport_stopped")

    async def fetch_updates(self, offset: Optional[int] = None) -> list[Update]:
        try:
            raw_updates = await self.bot.get_updates(
                offset=offset,
                timeout=self._config.poll_timeout,
                allowed_updates=["message"],
            )
        except TelegramError as e:
            raise TransportError(f"Telegram getUpdates failed: {e}") from e
        return [self._convert(u) for u in raw_updates]

    async def send_message(self, chat_id: int, text: str) -> int:
        try:
            sent = await self.bot.send_message(chat_id=chat_id, text=text)
        except TelegramError as e:
            raise TransportError(f"Telegram sendMessage failed: {e}") from e
        return sent.message_id

    async def download_file(self, file_id: str) -> bytes:
        try:
            tg_file = await self.bot.get_file(file_id)
            data = await tg_file.download_as_bytearray()
        except TelegramError as e:
            raise TransportError(f"Telegram file download failed: {e}") from e
        return bytes(data)

    @staticmethod
    def _convert(update: TGUpdate) -> Update:
        msg = update.message
        if msg is None:
            return Update(update_id=update.update_id)

        document = None
        if msg.document:
            document = DocumentRef(
                file_id=msg.document.file_id,
                file_name=msg.document.file_name,
                mime_type=msg.document.mime_type,
                file_size=msg.document.file_size,
            )

        return Update(
            update_id=update.update_id,
            message=IncomingMessage(
                chat_id=msg.chat_id,
                text=msg.text or msg.caption or "",
                message_id=msg.message_id,
                user_display_name=msg.from_user.full_name if msg.from_user else "Unknown",
                timestamp=msg.date or datetime.now(timezone.utc),
                document=document,
            ),
        )
