from __future__ import annotations

from typing import Optional

import pytest

from copilot_bridge.ai.catalog import ModelCatalog
from copilot_bridge.ai.conversation import ReplyRequest
from copilot_bridge.config import AppConfig
from copilot_bridge.messenger.base import ChatTransport
from copilot_bridge.messenger.models import IncomingMessage, Update
from copilot_bridge.storage.conversation_repo import ConversationRepository
from copilot_bridge.storage.database import Database


class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instantly."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeTransport(ChatTransport):
    def __init__(self, batches: Optional[list[list[Update]]] = None):
        self.batches = list(batches or [])
        self.offsets: list[Optional[int]] = []
        self.sent: list[tuple[int, str]] = []
        self.files: dict[str, bytes] = {}
        self.started = False

    @property
    def platform_name(self) -> str:
        return "fake"

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False

    async def fetch_updates(self, offset: Optional[int] = None) -> list[Update]:
        self.offsets.append(offset)
        return self.batches.pop(0) if self.batches else []

    async def send_message(self, chat_id: int, text: str) -> int:
        self.sent.append((chat_id, text))
        return len(self.sent)

    async def download_file(self, file_id: str) -> bytes:
        return self.files[file_id]

    def texts(self, chat_id: Optional[int] = None) -> list[str]:
        return [text for cid, text in self.sent if chat_id is None or cid == chat_id]


class StubGateway:
    """Stands in for ``CompletionGateway`` at the handler seam."""

    def __init__(self, reply: str = "stub reply", enabled: bool = True, error: Exception | None = None):
        self.reply = reply
        self.enabled = enabled
        self.error = error
        self.requests: list[ReplyRequest] = []
        self.discovered: list[str] = []

    @property
    def key_source(self) -> str:
        return "api_key" if self.enabled else "none"

    def is_enabled(self) -> bool:
        return self.enabled

    async def generate_reply(self, request: ReplyRequest) -> str:
        self.requests.append(request)
        if self.error:
            raise self.error
        return self.reply

    async def discover_models(self, seed_ids: list[str]) -> list[str]:
        return list(self.discovered)

    async def close(self) -> None:
        pass


def make_message(text: str = "", chat_id: int = 1, **kwargs) -> IncomingMessage:
    return IncomingMessage(chat_id=chat_id, text=text, **kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    return AppConfig(
        data_dir=str(tmp_path),
        model_catalog_path=str(tmp_path / "models.catalog.json"),
        telegram={"token": "test-token", "poll_interval": 0},
        completion={
            "api_key": "test-key",
            "min_interval": 0,
            "usage_log_path": str(tmp_path / "usage.log"),
            "auto_refresh_catalog": False,
        },
        storage={
            "db_path": str(tmp_path / "bridge.db"),
            "documents_dir": str(tmp_path / "documents"),
        },
    )


@pytest.fixture
async def db(app_config):
    database = Database(app_config.storage.db_path)
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def repo(db, app_config) -> ConversationRepository:
    return ConversationRepository(db, app_config.session)


@pytest.fixture
def catalog(app_config) -> ModelCatalog:
    return ModelCatalog(app_config.model_catalog_path)
