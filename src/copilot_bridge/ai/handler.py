"""Message handler: resolves the session profile, dispatches the intent, replies."""

from __future__ import annotations

from typing import Awaitable, Callable, Optional

import aiosqlite

from copilot_bridge.ai.catalog import ModelCatalog, refresh_model_catalog
from copilot_bridge.ai.client import (
    CompletionError,
    CompletionGateway,
    NonRetryableCompletionError,
)
from copilot_bridge.ai.conversation import ReplyRequest
from copilot_bridge.config import AppConfig
from copilot_bridge.core.commands import MISSING_ARGUMENT, ParsedMessage, parse_message
from copilot_bridge.core.rate_limit import RateLimiter
from copilot_bridge.core.session import SessionManager, SessionProfile
from copilot_bridge.core.types import Command, ReplyMode, Role, UiLanguage
from copilot_bridge.i18n import language_label, parse_language, pick, with_language_instruction
from copilot_bridge.log import get_logger
from copilot_bridge.messenger.base import ChatTransport, TransportError
from copilot_bridge.messenger.models import IncomingMessage
from copilot_bridge.services.documents import DocumentIngestor

logger = get_logger(__name__)

MAX_STORED_REPLY = 3000
PREVIEW_LIMIT = 8

USAGE = {
    Command.MODEL: "/model <model-id>",
    Command.TOPIC: "/topic <name>  (letters, digits, _ or -)",
    Command.AGENT: "/agent <name>",
    Command.MODE: "/mode manual|auto",
    Command.ASK: "/ask <question>  |  /ask --model <model-id> <question>  |  /askm <model-id> <question>",
}

Route = Callable[[int, ParsedMessage, SessionProfile], Awaitable[None]]


class MessageHandler:
    """Handles one inbound message end to end: state change or generation, then reply."""

    def __init__(
        self,
        transport: ChatTransport,
        session_manager: SessionManager,
        catalog: ModelCatalog,
        gateway: CompletionGateway,
        rate_limiter: RateLimiter,
        ingestor: DocumentIngestor,
        config: AppConfig,
    ):
        self._transport = transport
        self._sessions = session_manager
        self._repo = session_manager.repo
        self._catalog = catalog
        self._gateway = gateway
        self._rate_limiter = rate_limiter
        self._ingestor = ingestor
        self._config = config
        self._routes: dict[Command, Route] = {
            Command.START: self._on_start,
            Command.MODELS: self._on_models,
            Command.MODEL_SYNC: self._on_model_sync,
            Command.MODEL: self._on_model,
            Command.ASK: self._on_ask,
            Command.TOPIC: self._on_topic,
            Command.AGENT: self._on_agent,
            Command.HISTORY: self._on_history,
            Command.THREADS: self._on_threads,
            Command.MODE: self._on_mode,
            Command.LANGUAGE: self._on_language,
            Command.STATUS: self._on_status,
        }

    async def handle(self, message: IncomingMessage) -> None:
        """Process an inbound message. Never raises; failures become a user reply."""
        chat_id = message.chat_id
        language = self._sessions.default_language
        try:
            profile = await self._sessions.resolve_profile(chat_id)
            language = profile.language

            if message.document:
                await self._on_document(message, profile)
                return

            parsed = parse_message(message.text, profile)
            if parsed.command is None and not parsed.text:
                return

            logger.info("message_classified", chat_id=chat_id, command=parsed.command, topic=parsed.topic)
            if parsed.error:
                await self._reply_usage(chat_id, parsed)
                return

            route = self._routes.get(parsed.command) if parsed.command else None
            await (route or self._on_free_form)(chat_id, parsed, profile)
        except aiosqlite.Error as e:
            logger.critical("store_write_failed", chat_id=chat_id, error=str(e), exc_info=True)
            await self._safe_send(
                chat_id,
                pick(language, f"会话存储失败：{e}", f"Session storage failed: {e}"),
            )
        except Exception as e:
            logger.error("message_handling_failed", chat_id=chat_id, error=str(e), exc_info=True)
            await self._safe_send(
                chat_id,
                pick(language, f"处理消息失败：{e}", f"Failed to process the message: {e}"),
            )

    # ── state-mutating commands ─────────────────────────────────

    async def _on_topic(self, chat_id: int, parsed: ParsedMessage, profile: SessionProfile) -> None:
        await self._sessions.switch_topic(chat_id, parsed.topic)
        agent = await self._repo.get_selected_agent(chat_id, parsed.topic)
        await self._repo.append(chat_id, parsed.topic, Role.SYSTEM, parsed.text, agent)
        await self._send(
            chat_id,
            pick(parsed.language, f"已切换话题为 {parsed.topic}", f"Topic switched to {parsed.topic}"),
        )

    async def _on_agent(self, chat_id: int, parsed: ParsedMessage, profile: SessionProfile) -> None:
        await self._repo.set_selected_agent(chat_id, parsed.topic, parsed.agent)
        await self._repo.append(chat_id, parsed.topic, Role.SYSTEM, parsed.text, parsed.agent)
        await self._send(
            chat_id,
            pick(parsed.language, f"已切换智能体为 {parsed.agent}", f"Agent switched to {parsed.agent}"),
        )

    async def _on_model(self, chat_id: int, parsed: ParsedMessage, profile: SessionProfile) -> None:
        if not self._catalog.find_by_id(parsed.model_id):
            await self._send(chat_id, self._model_not_found(parsed.language, parsed.model_id))
            return

        await self._repo.set_selected_model(chat_id, parsed.topic, parsed.model_id)
        await self._repo.append(chat_id, parsed.topic, Role.SYSTEM, parsed.text, parsed.agent)
        await self._send(
            chat_id,
            pick(parsed.language, f"已切换模型为 {parsed.model_id}", f"Model switched to {parsed.model_id}"),
        )

    async def _on_mode(self, chat_id: int, parsed: ParsedMessage, profile: SessionProfile) -> None:
        await self._repo.set_reply_mode(chat_id, parsed.topic, parsed.mode)
        await self._repo.append(chat_id, parsed.topic, Role.SYSTEM, parsed.text, parsed.agent)
        await self._send(
            chat_id,
            pick(parsed.language, f"回复模式已切换为 {parsed.mode}", f"Reply mode switched to {parsed.mode}"),
        )

    async def _on_language(self, chat_id: int, parsed: ParsedMessage, profile: SessionProfile) -> None:
        if not parsed.language_input:
            current = parsed.language
            await self._send(
                chat_id,
                pick(
                    current,
                    f"当前语言：{language_label(current)}\n设置方式：/language zh 或 /language en（简写：/lang zh|en）",
                    f"Current language: {language_label(current)}\nUsage: /language zh or /language en (short: /lang zh|en)",
                ),
            )
            return

        target = parse_language(parsed.language_input)
        if target is None:
            await self._send(
                chat_id,
                pick(
                    parsed.language,
                    "不支持的语言值。请使用：/language zh 或 /language en",
                    "Unsupported language value. Use: /language zh or /language en",
                ),
            )
            return

        await self._repo.set_language(chat_id, parsed.topic, str(target))
        await self._repo.append(
            chat_id, parsed.topic, Role.SYSTEM, f"Language changed to {target}", parsed.agent
        )
        await self._send(
            chat_id,
            pick(
                target,
                f"语言已切换为 {language_label(target)}。之后 bot 回复与模型输出都将遵循该语言。",
                f"Language switched to {language_label(target)}. Bot messages and model outputs will follow this setting.",
            ),
        )

    # ── read-only commands ──────────────────────────────────────

    async def _on_start(self, chat_id: int, parsed: ParsedMessage, profile: SessionProfile) -> None:
        await self._send(chat_id, self._welcome(parsed.language))

    async def _on_models(self, chat_id: int, parsed: ParsedMessage, profile: SessionProfile) -> None:
        lines = [pick(parsed.language, "可用模型：", "Available models:")]
        for model in self._catalog.list():
            marker = "*" if model.id == parsed.model_id else "-"
            lines.append(f"{marker} {model.id} | {model.name} | {model.provider}")
            lines.append(f"  {model.pricing}")
        lines.append(pick(parsed.language, "切换：/model <model-id>", "Switch with: /model <model-id>"))
        await self._send(chat_id, "\n".join(lines))

    async def _on_model_sync(self, chat_id: int, parsed: ParsedMessage, profile: SessionProfile) -> None:
        language = parsed.language
        if not self._gateway.is_enabled():
            await self._send(
                chat_id,
                pick(
                    language,
                    "未配置模型调用凭据（api_key 或 github_token），无法执行模型同步。",
                    "No completion credential (api_key or github_token) is configured; model sync is unavailable.",
                ),
            )
            return

        ranked = await refresh_model_catalog(
            self._catalog, self._gateway, self._config.session.default_model
        )
        if not ranked:
            await self._send(
                chat_id,
                pick(
                    language,
                    "模型同步完成，但没有发现可用于 chat/completions 的模型。",
                    "Model sync completed, but no model is available for chat/completions.",
                ),
            )
            return
        listing = "\n".join(f"- {model_id}" for model_id in ranked)
        await self._send(
            chat_id,
            pick(
                language,
                f"模型同步完成（{len(ranked)} 个）：\n{listing}",
                f"Model sync complete ({len(ranked)}):\n{listing}",
            ),
        )

    async def _on_history(self, chat_id: int, parsed: ParsedMessage, profile: SessionProfile) -> None:
        if parsed.keyword:
            records = await self._repo.search(chat_id, parsed.keyword, limit=PREVIEW_LIMIT)
            records.reverse()
        else:
            records = await self._repo.get_history(chat_id, parsed.topic, limit=PREVIEW_LIMIT)

        if not records:
            await self._send(chat_id, pick(parsed.language, "未找到历史记录。", "No history found."))
            return

        preview = "\n".join(
            f"[{r.topic}] {r.role}: {' '.join(r.content.split())[:120]}" for r in records
        )
        await self._send(
            chat_id, pick(parsed.language, f"历史记录预览：\n{preview}", f"History preview:\n{preview}")
        )

    async def _on_threads(self, chat_id: int, parsed: ParsedMessage, profile: SessionProfile) -> None:
        threads = await self._repo.list_threads(chat_id)
        if not threads:
            await self._send(chat_id, pick(parsed.language, "暂无会话。", "No threads yet."))
            return
        lines = [pick(parsed.language, "会话列表：", "Threads:")]
        for thread in threads:
            marker = "*" if thread.topic == parsed.topic else "-"
            lines.append(
                f"{marker} {thread.topic} ({thread.message_count}) {thread.updated_at:%Y-%m-%d %H:%M}"
            )
        await self._send(chat_id, "\n".join(lines))

    async def _on_status(self, chat_id: int, parsed: ParsedMessage, profile: SessionProfile) -> None:
        enabled = self._gateway.is_enabled()
        await self._send(
            chat_id,
            "\n".join(
                [
                    f"topic: {profile.topic}",
                    f"agent: {profile.agent}",
                    f"model: {profile.model_id}",
                    f"language: {language_label(profile.language)}",
                    f"mode: {profile.reply_mode}",
                    f"auto-reply: {'on' if enabled else 'off'}",
                ]
            ),
        )

    # ── generation ──────────────────────────────────────────────

    async def _on_free_form(self, chat_id: int, parsed: ParsedMessage, profile: SessionProfile) -> None:
        await self._repo.append(chat_id, parsed.topic, Role.USER, parsed.text, parsed.agent)
        model_id = await self._reply_model(chat_id, parsed)

        if profile.reply_mode == ReplyMode.MANUAL:
            await self._send(
                chat_id,
                pick(
                    parsed.language,
                    f"已记录消息（topic={parsed.topic}，手动模式，不自动回复）。使用 /mode auto 开启自动回复。",
                    f"Message saved (topic={parsed.topic}, manual mode, no auto reply). Use /mode auto to enable replies.",
                ),
            )
            return

        await self._generate(chat_id, parsed, model_id, parsed.text)

    async def _on_ask(self, chat_id: int, parsed: ParsedMessage, profile: SessionProfile) -> None:
        if parsed.model_override and not self._catalog.find_by_id(parsed.model_id):
            await self._send(chat_id, self._model_not_found(parsed.language, parsed.model_id))
            return

        question = parsed.question or ""
        await self._repo.append(chat_id, parsed.topic, Role.USER, question, parsed.agent)
        model_id = parsed.model_id if parsed.model_override else await self._reply_model(chat_id, parsed)
        extra_context = await self._document_context(chat_id, parsed.topic)
        await self._generate(chat_id, parsed, model_id, question, extra_context)

    async def _reply_model(self, chat_id: int, parsed: ParsedMessage) -> str:
        """Model for this thread; a stored model missing from the catalog falls back to the default."""
        if self._catalog.find_by_id(parsed.model_id):
            return parsed.model_id

        fallback = self._config.session.default_model
        await self._repo.set_selected_model(chat_id, parsed.topic, fallback)
        logger.warning("model_fallback", chat_id=chat_id, topic=parsed.topic, missing=parsed.model_id, model=fallback)
        await self._send(
            chat_id,
            pick(
                parsed.language,
                f"当前话题模型 {parsed.model_id} 不可用，已自动回退为 {fallback}。可用 /model <id> 手动切换。",
                f"Model {parsed.model_id} is unavailable for this topic; falling back to {fallback}. Use /model <id> to switch.",
            ),
        )
        return fallback

    async def _generate(
        self,
        chat_id: int,
        parsed: ParsedMessage,
        model_id: str,
        user_input: str,
        extra_context: Optional[str] = None,
    ) -> None:
        """Call the gateway for the thread and store the reply.

        The user's message is already stored; it stays stored whatever happens here.
        """
        language = parsed.language
        if not self._gateway.is_enabled():
            await self._send(
                chat_id,
                pick(
                    language,
                    f"已收到消息并写入会话（topic={parsed.topic}, agent={parsed.agent}, model={model_id}）。\n"
                    "未配置自动大模型调用凭据，请设置 COPILOT_API_KEY 或 GITHUB_TOKEN 后重启。",
                    f"Message saved to session (topic={parsed.topic}, agent={parsed.agent}, model={model_id}).\n"
                    "Auto-reply credentials are not configured. Set COPILOT_API_KEY or GITHUB_TOKEN and restart.",
                ),
            )
            return

        context = await self._repo.continue_context(
            chat_id, parsed.topic, self._config.session.context_window
        )
        await self._rate_limiter.acquire(chat_id, parsed.topic)
        try:
            reply = await self._gateway.generate_reply(
                ReplyRequest(
                    model_id=model_id,
                    topic=parsed.topic,
                    agent=parsed.agent,
                    user_input=with_language_instruction(language, user_input),
                    context_summary=context.summary,
                    extra_context=extra_context,
                )
            )
        except NonRetryableCompletionError as e:
            await self._send(
                chat_id,
                pick(language, f"自动回复失败（不可重试）：{e}", f"Automatic reply failed (not retryable): {e}"),
            )
            return
        except CompletionError as e:
            await self._send(chat_id, pick(language, f"自动回复失败：{e}", f"Automatic reply failed: {e}"))
            return

        await self._repo.append(
            chat_id, parsed.topic, Role.ASSISTANT, reply[:MAX_STORED_REPLY], parsed.agent
        )
        await self._send(chat_id, reply)

    # ── documents ───────────────────────────────────────────────

    async def _on_document(self, message: IncomingMessage, profile: SessionProfile) -> None:
        chat_id = message.chat_id
        document = message.document
        language = profile.language
        await self._send(
            chat_id,
            pick(language, "已收到文件，正在处理，请稍候...", "File received. Processing, please wait..."),
        )
        try:
            data = await self._transport.download_file(document.file_id)
            record = await self._ingestor.ingest(
                data, document.file_name or "document", chat_id, profile.topic
            )
        except (TransportError, OSError) as e:
            logger.error("document_ingest_failed", chat_id=chat_id, error=str(e))
            await self._send(chat_id, pick(language, f"文件处理失败：{e}", f"File processing failed: {e}"))
            return

        await self._repo.set_active_document(chat_id, profile.topic, record.storage_path)
        await self._repo.append(
            chat_id,
            profile.topic,
            Role.SYSTEM,
            f"[document] title={record.title}; category={record.category}; path={record.storage_path}",
            profile.agent,
        )
        summary = record.summary[:1000] or "-"
        await self._send(
            chat_id,
            pick(
                language,
                f"文件已入库：{record.title}\n分类：{record.category}\n保存路径：{record.storage_path}\n"
                f"摘要：{summary}\n可继续提问：/ask 你的问题",
                f"Document stored: {record.title}\nCategory: {record.category}\nSaved path: {record.storage_path}\n"
                f"Summary: {summary}\nContinue with: /ask <your question>",
            ),
        )

    async def _document_context(self, chat_id: int, topic: str) -> Optional[str]:
        path = await self._repo.get_active_document(chat_id, topic)
        if not path:
            return None
        record = await self._ingestor.describe(path)
        if record is None:
            return None
        return f"Active document: {record.title} ({record.category})\nSummary:\n{record.summary or '-'}"

    # ── replies ─────────────────────────────────────────────────

    async def _reply_usage(self, chat_id: int, parsed: ParsedMessage) -> None:
        usage = USAGE.get(parsed.command, "")
        if parsed.error == MISSING_ARGUMENT:
            text = pick(parsed.language, f"缺少参数。用法：{usage}", f"Missing argument. Usage: {usage}")
        else:
            text = pick(
                parsed.language,
                f"参数无效：{parsed.text}。用法：{usage}",
                f"Invalid argument: {parsed.text}. Usage: {usage}",
            )
        await self._send(chat_id, text)

    def _model_not_found(self, language: UiLanguage, model_id: str) -> str:
        return pick(
            language,
            f"未找到模型：{model_id}。请先执行 /models 查看可用模型。",
            f"Model not found: {model_id}. Run /models to view available models.",
        )

    def _welcome(self, language: UiLanguage) -> str:
        commands = "/start /topic /agent /models /model /modelsync /ask /history /threads /mode /language /status"
        lines = [
            pick(
                language,
                "欢迎使用 Telegram ↔ Copilot 对话桥。",
                "Welcome to the Telegram ↔ Copilot bridge.",
            ),
            pick(
                language,
                "直接发送消息即可对话；支持话题续聊、智能体切换、模型选择与文件上传。",
                "Send any message to chat; topics keep their own history, and you can switch agents, pick models and upload files.",
            ),
            pick(language, f"常用命令：{commands}", f"Commands: {commands}"),
        ]
        if self._config.repo_url:
            lines.append(f"GitHub: {self._config.repo_url}")
        return "\n".join(lines)

    async def _send(self, chat_id: int, text: str) -> None:
        for chunk in _split_message(text, max_length=self._config.telegram.message_chunk_size):
            await self._transport.send_message(chat_id, chunk)

    async def _safe_send(self, chat_id: int, text: str) -> None:
        try:
            await self._send(chat_id, text)
        except TransportError as e:
            logger.error("reply_send_failed", chat_id=chat_id, error=str(e))


def _split_message(text: str, max_length: int = 3500) -> list[str]:
    """Split a message into chunks that fit within platform limits."""
    if len(text) <= max_length:
        return [text]

    chunks = []
    while text:
        if len(text) <= max_length:
            chunks.append(text)
            break
        # Try to split at a newline
        split_pos = text.rfind("\n", 0, max_length)
        if split_pos <= 0:
            split_pos = max_length
        chunks.append(text[:split_pos])
        text = text[split_pos:].lstrip("\n")
    return chunks
