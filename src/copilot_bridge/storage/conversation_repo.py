"""Conversation store: append-only thread log, per-thread key/value state and the update offset."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Optional

from copilot_bridge.config import SessionConfig
from copilot_bridge.core.types import ReplyMode, Role
from copilot_bridge.log import get_logger
from copilot_bridge.storage.database import Database
from copilot_bridge.storage.models import ContinuationContext, SessionMessage, ThreadInfo

logger = get_logger(__name__)

# Topic-state keys. Only the typed accessors below should use them.
CURRENT_TOPIC_KEY = "current_topic"  # stored under the chat's default topic
SELECTED_AGENT_KEY = "selected_agent"
SELECTED_MODEL_KEY = "selected_model"
UI_LANGUAGE_KEY = "ui_language"
REPLY_MODE_KEY = "reply_mode"
NAV_STEP_KEY = "nav_step"
ACTIVE_DOCUMENT_KEY = "active_document"

OFFSET_KEY = "update_offset"

MAX_SUMMARY_CHARS = 4000
DIGEST_LINES = 5

_WHITESPACE = re.compile(r"\s+")


def _clip(text: str, limit: int) -> str:
    flat = _WHITESPACE.sub(" ", text).strip()
    if len(flat) <= limit:
        return flat
    return flat[: limit - 1] + "…"


class ConversationRepository:
    """Sole source of truth for thread history and continuation context."""

    def __init__(self, db: Database, config: SessionConfig):
        self._db = db
        self._config = config

    # ── messages ────────────────────────────────────────────────

    async def append(
        self, chat_id: int, topic: str, role: Role | str, content: str, agent: str
    ) -> SessionMessage:
        """Append a message to ``(chat_id, topic)`` and prune the thread."""
        if chat_id is None or topic is None:
            raise ValueError("chat_id and topic are required")

        cursor = await self._db.conn.execute(
            """INSERT INTO session_messages (chat_id, topic, role, content, agent)
               VALUES (?, ?, ?, ?, ?)""",
            (chat_id, topic, str(role), content, agent),
        )
        message_id = cursor.lastrowid
        await self._prune(chat_id, topic, keep_id=message_id)
        await self._db.conn.commit()

        cursor = await self._db.conn.execute(
            "SELECT * FROM session_messages WHERE id = ?", (message_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_message(row)

    async def _prune(self, chat_id: int, topic: str, keep_id: int) -> None:
        """Drop the thread's oldest rows beyond the count and age limits.

        The row just written (``keep_id``) always survives.
        """
        cursor = await self._db.conn.execute(
            """DELETE FROM session_messages
               WHERE chat_id = ? AND topic = ? AND id != ?
                 AND (
                   id NOT IN (
                     SELECT id FROM session_messages
                     WHERE chat_id = ? AND topic = ?
                     ORDER BY id DESC
                     LIMIT ?
                   )
                   OR created_at < strftime('%Y-%m-%dT%H:%M:%f', 'now', ?)
                 )""",
            (
                chat_id,
                topic,
                keep_id,
                chat_id,
                topic,
                self._config.retention_messages,
                f"-{self._config.retention_days} days",
            ),
        )
        if cursor.rowcount:
            logger.debug("thread_pruned", chat_id=chat_id, topic=topic, removed=cursor.rowcount)

    async def get_history(
        self, chat_id: int, topic: Optional[str] = None, limit: int = 20
    ) -> list[SessionMessage]:
        """Return the newest ``limit`` messages, oldest first."""
        if topic is None:
            cursor = await self._db.conn.execute(
                """SELECT * FROM session_messages
                   WHERE chat_id = ?
                   ORDER BY id DESC
                   LIMIT ?""",
                (chat_id, limit),
            )
        else:
            cursor = await self._db.conn.execute(
                """SELECT * FROM session_messages
                   WHERE chat_id = ? AND topic = ?
                   ORDER BY id DESC
                   LIMIT ?""",
                (chat_id, topic, limit),
            )
        rows = await cursor.fetchall()
        return [self._row_to_message(row) for row in reversed(rows)]

    async def search(self, chat_id: int, keyword: str, limit: int = 20) -> list[SessionMessage]:
        """Case-insensitive substring search across all topics of a chat, newest first."""
        keyword = keyword.strip()
        if not keyword:
            return []
        cursor = await self._db.conn.execute(
            """SELECT * FROM session_messages
               WHERE chat_id = ? AND instr(casefold(content), ?) > 0
               ORDER BY id DESC
               LIMIT ?""",
            (chat_id, keyword.casefold(), limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_message(row) for row in rows]

    async def list_threads(self, chat_id: Optional[int] = None) -> list[ThreadInfo]:
        """One row per ``(chat_id, topic)``, most recently active first."""
        query = """SELECT chat_id, topic, COUNT(*) AS message_count, MAX(created_at) AS updated_at
                   FROM session_messages
                   {where}
                   GROUP BY chat_id, topic
                   ORDER BY MAX(id) DESC"""
        if chat_id is None:
            cursor = await self._db.conn.execute(query.format(where=""))
        else:
            cursor = await self._db.conn.execute(
                query.format(where="WHERE chat_id = ?"), (chat_id,)
            )
        rows = await cursor.fetchall()
        return [
            ThreadInfo(
                chat_id=row["chat_id"],
                topic=row["topic"],
                message_count=row["message_count"],
                updated_at=datetime.fromisoformat(row["updated_at"]),
            )
            for row in rows
        ]

    async def count_messages(self, chat_id: int, topic: str) -> int:
        cursor = await self._db.conn.execute(
            "SELECT COUNT(*) FROM session_messages WHERE chat_id = ? AND topic = ?",
            (chat_id, topic),
        )
        row = await cursor.fetchone()
        return row[0]

    async def continue_context(
        self, chat_id: int, topic: str, limit: int = 20
    ) -> ContinuationContext:
        """Build the recent window plus a summary for the thread.

        Messages older than the window are folded into a short digest. The
        summary always starts with the thread's topic, agent and model.
        """
        messages = await self.get_history(chat_id, topic, limit)
        total = await self.count_messages(chat_id, topic)
        agent = await self.get_selected_agent(chat_id, topic)
        model_id = await self.get_selected_model(chat_id, topic)

        lines = [f"topic={topic}; agent={agent}; model={model_id}"]
        compacted = total - len(messages)
        if compacted > 0 and messages:
            lines.append(f"[compacted {compacted} earlier messages]")
            cursor = await self._db.conn.execute(
                """SELECT role, content FROM session_messages
                   WHERE chat_id = ? AND topic = ? AND id < ?
                   ORDER BY id DESC
                   LIMIT ?""",
                (chat_id, topic, messages[0].id, DIGEST_LINES),
            )
            older = await cursor.fetchall()
            for row in reversed(older):
                lines.append(f"- {row['role']}: {_clip(row['content'], 80)}")
        for message in messages:
            lines.append(f"{message.role}: {_clip(message.content, 200)}")

        summary = "\n".join(lines)
        if len(summary) > MAX_SUMMARY_CHARS:
            summary = summary[: MAX_SUMMARY_CHARS - 1] + "…"

        return ContinuationContext(
            chat_id=chat_id,
            topic=topic,
            agent=agent,
            model_id=model_id,
            messages=messages,
            summary=summary,
            compacted=max(compacted, 0),
        )

    # ── topic state ─────────────────────────────────────────────

    async def get_topic_state(
        self, chat_id: int, topic: str, key: str, default: Optional[str] = None
    ) -> Optional[str]:
        cursor = await self._db.conn.execute(
            "SELECT value FROM topic_state WHERE chat_id = ? AND topic = ? AND key = ?",
            (chat_id, topic, key),
        )
        row = await cursor.fetchone()
        return row["value"] if row else default

    async def set_topic_state(self, chat_id: int, topic: str, key: str, value: str) -> None:
        await self._db.conn.execute(
            """INSERT INTO topic_state (chat_id, topic, key, value)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(chat_id, topic, key)
               DO UPDATE SET value = excluded.value,
                             updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')""",
            (chat_id, topic, key, value),
        )
        await self._db.conn.commit()

    async def get_current_topic(self, chat_id: int) -> str:
        default_topic = self._config.default_topic
        return await self.get_topic_state(chat_id, default_topic, CURRENT_TOPIC_KEY, default_topic)

    async def set_current_topic(self, chat_id: int, topic: str) -> None:
        await self.set_topic_state(chat_id, self._config.default_topic, CURRENT_TOPIC_KEY, topic)

    async def get_selected_agent(self, chat_id: int, topic: str) -> str:
        return await self.get_topic_state(
            chat_id, topic, SELECTED_AGENT_KEY, self._config.default_agent
        )

    async def set_selected_agent(self, chat_id: int, topic: str, agent: str) -> None:
        await self.set_topic_state(chat_id, topic, SELECTED_AGENT_KEY, agent)

    async def get_selected_model(self, chat_id: int, topic: str) -> str:
        return await self.get_topic_state(
            chat_id, topic, SELECTED_MODEL_KEY, self._config.default_model
        )

    async def set_selected_model(self, chat_id: int, topic: str, model_id: str) -> str:
        await self.set_topic_state(chat_id, topic, SELECTED_MODEL_KEY, model_id)
        return model_id

    async def get_language(self, chat_id: int, topic: str) -> Optional[str]:
        return await self.get_topic_state(chat_id, topic, UI_LANGUAGE_KEY)

    async def set_language(self, chat_id: int, topic: str, language: str) -> None:
        await self.set_topic_state(chat_id, topic, UI_LANGUAGE_KEY, language)

    async def get_reply_mode(self, chat_id: int, topic: str) -> ReplyMode:
        raw = await self.get_topic_state(chat_id, topic, REPLY_MODE_KEY, self._config.reply_mode)
        try:
            return ReplyMode(raw)
        except ValueError:
            return ReplyMode(self._config.reply_mode)

    async def set_reply_mode(self, chat_id: int, topic: str, mode: ReplyMode) -> None:
        await self.set_topic_state(chat_id, topic, REPLY_MODE_KEY, str(mode))

    async def get_nav_step(self, chat_id: int, topic: str) -> str:
        return await self.get_topic_state(chat_id, topic, NAV_STEP_KEY, "")

    async def set_nav_step(self, chat_id: int, topic: str, step: str) -> None:
        await self.set_topic_state(chat_id, topic, NAV_STEP_KEY, step)

    async def get_active_document(self, chat_id: int, topic: str) -> Optional[str]:
        return await self.get_topic_state(chat_id, topic, ACTIVE_DOCUMENT_KEY)

    async def set_active_document(self, chat_id: int, topic: str, storage_path: str) -> None:
        await self.set_topic_state(chat_id, topic, ACTIVE_DOCUMENT_KEY, storage_path)

    async def get_current_profile(self, chat_id: int, default_topic: str) -> tuple[str, str]:
        """Return ``(topic, agent)`` currently in effect for the chat."""
        topic = await self.get_topic_state(chat_id, default_topic, CURRENT_TOPIC_KEY, default_topic)
        agent = await self.get_selected_agent(chat_id, topic)
        return topic, agent

    # ── offset ──────────────────────────────────────────────────

    async def get_offset(self) -> int:
        cursor = await self._db.conn.execute(
            "SELECT value FROM bridge_state WHERE key = ?", (OFFSET_KEY,)
        )
        row = await cursor.fetchone()
        return int(row["value"]) if row else 0

    async def set_offset(self, offset: int) -> int:
        """Persist the update watermark. A lower value than stored is ignored."""
        current = await self.get_offset()
        if offset < current:
            logger.warning("offset_clamped", requested=offset, stored=current)
            return current
        await self._db.conn.execute(
            """INSERT INTO bridge_state (key, value) VALUES (?, ?)
               ON CONFLICT(key) DO UPDATE SET value = excluded.value""",
            (OFFSET_KEY, str(offset)),
        )
        await self._db.conn.commit()
        return offset

    @staticmethod
    def _row_to_message(row) -> SessionMessage:
        return SessionMessage(
            id=row["id"],
            chat_id=row["chat_id"],
            topic=row["topic"],
            role=Role(row["role"]),
            content=row["content"],
            agent=row["agent"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )
