"""Session profile resolution for a chat: topic, agent, model, language and reply mode."""

from __future__ import annotations

from dataclasses import dataclass

from copilot_bridge.config import SessionConfig
from copilot_bridge.core.types import ReplyMode, UiLanguage
from copilot_bridge.i18n import normalize_language
from copilot_bridge.log import get_logger
from copilot_bridge.storage.conversation_repo import ConversationRepository

logger = get_logger(__name__)


@dataclass(frozen=True)
class SessionProfile:
    topic: str
    agent: str
    model_id: str
    language: UiLanguage
    reply_mode: ReplyMode


class SessionManager:
    """Resolves the profile in effect for a chat from stored state and defaults.

    Explicit per-message overrides are applied on top of this by
    :func:`copilot_bridge.core.commands.parse_message`.
    """

    def __init__(self, conversation_repo: ConversationRepository, config: SessionConfig):
        self._repo = conversation_repo
        self._config = config

    @property
    def repo(self) -> ConversationRepository:
        return self._repo

    @property
    def default_language(self) -> UiLanguage:
        return UiLanguage(self._config.default_language)

    async def resolve_profile(self, chat_id: int) -> SessionProfile:
        topic, agent = await self._repo.get_current_profile(chat_id, self._config.default_topic)
        return SessionProfile(
            topic=topic,
            agent=agent,
            model_id=await self._repo.get_selected_model(chat_id, topic),
            language=await self.get_language(chat_id, topic),
            reply_mode=await self._repo.get_reply_mode(chat_id, topic),
        )

    async def get_language(self, chat_id: int, topic: str) -> UiLanguage:
        raw = await self._repo.get_language(chat_id, topic)
        return normalize_language(raw, self.default_language)

    async def switch_topic(self, chat_id: int, topic: str) -> None:
        await self._repo.set_current_topic(chat_id, topic)
        logger.info("topic_switched", chat_id=chat_id, topic=topic)
