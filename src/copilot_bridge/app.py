"""Application orchestrator - wires all components and runs the polling loop."""

from __future__ import annotations

import asyncio
from typing import Optional

import httpx

from copilot_bridge.ai.catalog import ModelCatalog, refresh_model_catalog
from copilot_bridge.ai.client import CompletionError, CompletionGateway
from copilot_bridge.ai.handler import MessageHandler
from copilot_bridge.config import AppConfig
from copilot_bridge.core.rate_limit import RateLimiter
from copilot_bridge.core.session import SessionManager
from copilot_bridge.log import bind_update_context, clear_update_context, get_logger
from copilot_bridge.messenger.base import ChatTransport, TransportError
from copilot_bridge.services.documents import LocalDocumentIngestor
from copilot_bridge.storage.conversation_repo import ConversationRepository
from copilot_bridge.storage.database import Database
from copilot_bridge.storage.usage_log import UsageLog

logger = get_logger(__name__)


class BridgeApp:
    """Top-level application orchestrator."""

    def __init__(
        self,
        config: AppConfig,
        transport: Optional[ChatTransport] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.db = Database(config.storage.db_path)
        self.conversation_repo = ConversationRepository(self.db, config.session)
        self.session_manager = SessionManager(self.conversation_repo, config.session)
        self.catalog = ModelCatalog(config.model_catalog_path)
        self.usage_log = UsageLog(config.completion.usage_log_path)
        self.gateway = CompletionGateway(
            config.completion,
            self.usage_log,
            config.session.default_model,
            http_client=http_client,
        )
        self.offset = 0
        self.rate_limiter = RateLimiter(config.completion.min_interval)
        self.ingestor = LocalDocumentIngestor(config.storage.documents_dir)
        self.transport = transport or self._create_transport()
        self.handler = MessageHandler(
            transport=self.transport,
            session_manager=self.session_manager,
            catalog=self.catalog,
            gateway=self.gateway,
            rate_limiter=self.rate_limiter,
            ingestor=self.ingestor,
            config=config,
        )

    async def start(self) -> None:
        """Initialize storage, refresh the model catalog and connect the transport."""
        # 1. Database
        await self.db.initialize()

        # 2. Model catalog
        if self.config.completion.auto_refresh_catalog and self.gateway.is_enabled():
            try:
                ranked = await refresh_model_catalog(
                    self.catalog, self.gateway, self.config.session.default_model
                )
                logger.info("model_catalog_refreshed", count=len(ranked))
            except (httpx.HTTPError, CompletionError, OSError) as e:
                logger.warning("model_catalog_refresh_failed", error=str(e))

        # 3. Transport
        await self.transport.start()
        logger.info(
            "copilot_bridge_started",
            platform=self.transport.platform_name,
            auto_reply=self.gateway.is_enabled(),
            key_source=self.gateway.key_source,
            models=len(self.catalog.ids()),
        )

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        try:
            await self.transport.stop()
        except Exception as e:
            logger.error("transport_stop_error", error=str(e))

        await self.gateway.close()
        await self.db.close()
        logger.info("copilot_bridge_stopped")

    async def poll_once(self, offset: int) -> int:
        """Fetch one batch of updates, handle each in order, persist the new offset.

        The offset advances past each handled update and is saved once per
        batch, even when a handler raises. The failing update and the rest of
        its batch are fetched again on the next cycle.
        """
        self.offset = max(self.offset, offset)
        updates = await self.transport.fetch_updates(self.offset)
        try:
            for update in updates:
                bind_update_context(
                    update.update_id, update.message.chat_id if update.message else None
                )
                try:
                    if update.message:
                        await self.handler.handle(update.message)
                finally:
                    clear_update_context()
                self.offset = max(self.offset, update.update_id + 1)
        finally:
            if updates:
                self.offset = await self.conversation_repo.set_offset(self.offset)
                logger.debug("offset_saved", offset=self.offset, batch=len(updates))
        return self.offset

    async def run(self, stop_event: asyncio.Event) -> None:
        """Poll until ``stop_event`` is set; one failed cycle never ends the loop."""
        self.offset = max(self.offset, await self.conversation_repo.get_offset())
        logger.info("polling_started", offset=self.offset)

        while not stop_event.is_set():
            try:
                await self.poll_once(self.offset)
            except TransportError as e:
                logger.error("poll_failed", error=str(e))
            except Exception as e:
                logger.error("poll_cycle_error", error=str(e), exc_info=True)

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.config.telegram.poll_interval)
            except asyncio.TimeoutError:
                pass

    def _create_transport(self) -> ChatTransport:
        from copilot_bridge.messenger.telegram import TelegramTransport

        return TelegramTransport(self.config.telegram)
