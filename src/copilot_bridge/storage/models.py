"""Data models for storage layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from copilot_bridge.core.types import Role


@dataclass(frozen=True, slots=True)
class SessionMessage:
    """One immutable row of a thread's append-only log."""

    chat_id: int
    topic: str
    role: Role
    content: str
    agent: str
    created_at: datetime
    id: int  # insertion sequence, the only ordering key


@dataclass(frozen=True, slots=True)
class ThreadInfo:
    chat_id: int
    topic: str
    message_count: int
    updated_at: datetime


@dataclass
class ContinuationContext:
    """Bounded view of a thread fed to the completion gateway. Never stored."""

    chat_id: int
    topic: str
    agent: str
    model_id: str
    messages: list[SessionMessage] = field(default_factory=list)
    summary: str = ""
    compacted: int = 0  # older messages folded into the summary digest


@dataclass
class UsageRecord:
    timestamp: str
    model_id: str
    topic: str
    agent: str
    status: str  # "success" | "failure"
    attempt: int
    latency_ms: int
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    estimated_cost_usd: float = 0.0
    request_id: Optional[str] = None
    error: Optional[str] = None
