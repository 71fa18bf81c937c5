"""Abstract chat transport interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from copilot_bridge.messenger.models import Update


class TransportError(Exception):
    """The chat platform could not be reached or rejected a call."""


class ChatTransport(ABC):
    """Long-poll chat transport consumed by the bridge loop.

    To add a new messenger, subclass this and implement all abstract methods.
    """

    @abstractmethod
    async def start(self) -> None:
        """Open the connection to the platform."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Gracefully disconnect."""
        ...

    @abstractmethod
    async def fetch_updates(self, offset: Optional[int] = None) -> list[Update]:
        """Long-poll for updates with ``update_id >= offset``."""
        ...

    @abstractmethod
    async def send_message(self, chat_id: int, text: str) -> int:
        """Send one text message and return its platform message id."""
        ...

    @abstractmethod
    async def download_file(self, file_id: str) -> bytes:
        """Fetch the bytes of an attached file."""
        ...

    @property
    @abstractmethod
    def platform_name(self) -> str:
        ...
