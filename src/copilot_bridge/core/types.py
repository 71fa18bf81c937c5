"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ReplyMode(StrEnum):
    MANUAL = "manual"  # store messages, never auto-reply
    AUTO = "auto"


class UiLanguage(StrEnum):
    ZH = "zh"
    EN = "en"


class Command(StrEnum):
    START = "start"
    MODELS = "models"
    MODEL_SYNC = "modelsync"
    MODEL = "model"
    ASK = "ask"
    TOPIC = "topic"
    AGENT = "agent"
    HISTORY = "history"
    THREADS = "threads"
    MODE = "mode"
    LANGUAGE = "language"
    STATUS = "status"
