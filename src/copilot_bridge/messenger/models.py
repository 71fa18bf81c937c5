"""Transport-neutral message models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True, slots=True)
class DocumentRef:
    """A file attached to an inbound message; bytes are fetched on demand."""

    file_id: str
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    file_size: Optional[int] = None


@dataclass(frozen=True, slots=True)
class IncomingMessage:
    chat_id: int
    text: str = ""
    message_id: Optional[int] = None
    user_display_name: str = ""
    timestamp: Optional[datetime] = None
    document: Optional[DocumentRef] = None


@dataclass(frozen=True, slots=True)
class Update:
    update_id: int
    message: Optional[IncomingMessage] = None
