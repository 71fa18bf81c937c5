"""Command classification: an ordered rule table mapping inbound text to an intent."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Callable, Optional

from copilot_bridge.core.session import SessionProfile
from copilot_bridge.core.types import Command, ReplyMode, UiLanguage

NAME_PATTERN = re.compile(r"^[\w\-]{1,64}$")
AGENT_PATTERN = re.compile(r"^[\w\-.]{1,64}$")
MODEL_PATTERN = re.compile(r"^[\w\-.:/]{1,64}$")
ASK_MODEL_FLAG = re.compile(r"^--model\s+(\S+)\s+(.+)$", re.DOTALL)

MISSING_ARGUMENT = "missing_argument"
INVALID_ARGUMENT = "invalid_argument"


@dataclass(frozen=True)
class ParsedMessage:
    """Intent plus the effective profile for one inbound message."""

    topic: str
    agent: str
    model_id: str
    language: UiLanguage
    text: str
    command: Optional[Command] = None
    keyword: Optional[str] = None
    mode: Optional[ReplyMode] = None
    question: Optional[str] = None
    language_input: Optional[str] = None
    model_override: bool = False
    error: Optional[str] = None  # MISSING_ARGUMENT / INVALID_ARGUMENT


Builder = Callable[[re.Match, ParsedMessage], ParsedMessage]


@dataclass(frozen=True)
class CommandRule:
    command: Command
    pattern: re.Pattern
    build: Builder


def _command_pattern(names: str, args: str = "") -> re.Pattern:
    return re.compile(rf"^/(?:{names})(?:@[\w_]+)?{args}$", re.IGNORECASE | re.DOTALL)


def _argument(match: re.Match) -> str:
    return (match.group(1) or "").strip()


def _plain(command: Command, text: str) -> Builder:
    return lambda match, base: replace(base, command=command, text=text)


def _build_model(match: re.Match, base: ParsedMessage) -> ParsedMessage:
    model_id = _argument(match)
    if not model_id:
        return replace(base, command=Command.MODEL, error=MISSING_ARGUMENT)
    if not MODEL_PATTERN.match(model_id):
        return replace(base, command=Command.MODEL, error=INVALID_ARGUMENT, text=model_id)
    return replace(
        base,
        command=Command.MODEL,
        model_id=model_id,
        model_override=True,
        text=f"Model changed to {model_id}",
    )


def _build_ask(match: re.Match, base: ParsedMessage) -> ParsedMessage:
    argument = _argument(match)
    if not argument:
        return replace(base, command=Command.ASK, error=MISSING_ARGUMENT)
    flagged = ASK_MODEL_FLAG.match(argument)
    if flagged:
        return replace(
            base,
            command=Command.ASK,
            model_id=flagged.group(1),
            model_override=True,
            question=flagged.group(2).strip(),
            text=flagged.group(2).strip(),
        )
    if argument.split(maxsplit=1)[0] == "--model":
        return replace(base, command=Command.ASK, error=MISSING_ARGUMENT)
    return replace(base, command=Command.ASK, question=argument, text=argument)


def _build_ask_with_model(match: re.Match, base: ParsedMessage) -> ParsedMessage:
    model_id = (match.group(1) or "").strip()
    question = (match.group(2) or "").strip()
    if not model_id or not question:
        return replace(base, command=Command.ASK, error=MISSING_ARGUMENT)
    return replace(
        base,
        command=Command.ASK,
        model_id=model_id,
        model_override=True,
        question=question,
        text=question,
    )


def _build_topic(match: re.Match, base: ParsedMessage) -> ParsedMessage:
    topic = _argument(match)
    if not topic:
        return replace(base, command=Command.TOPIC, error=MISSING_ARGUMENT)
    if not NAME_PATTERN.match(topic):
        return replace(base, command=Command.TOPIC, error=INVALID_ARGUMENT, text=topic)
    return replace(base, command=Command.TOPIC, topic=topic, text=f"Topic changed to {topic}")


def _build_agent(match: re.Match, base: ParsedMessage) -> ParsedMessage:
    agent = _argument(match)
    if not agent:
        return replace(base, command=Command.AGENT, error=MISSING_ARGUMENT)
    if not AGENT_PATTERN.match(agent):
        return replace(base, command=Command.AGENT, error=INVALID_ARGUMENT, text=agent)
    return replace(base, command=Command.AGENT, agent=agent, text=f"Agent changed to {agent}")


def _build_history(match: re.Match, base: ParsedMessage) -> ParsedMessage:
    return replace(base, command=Command.HISTORY, keyword=_argument(match), text="History query")


def _build_mode(match: re.Match, base: ParsedMessage) -> ParsedMessage:
    raw = _argument(match).lower()
    if not raw:
        return replace(base, command=Command.MODE, error=MISSING_ARGUMENT)
    try:
        mode = ReplyMode(raw)
    except ValueError:
        return replace(base, command=Command.MODE, error=INVALID_ARGUMENT, text=raw)
    return replace(base, command=Command.MODE, mode=mode, text=f"Reply mode changed to {mode}")


def _build_language(match: re.Match, base: ParsedMessage) -> ParsedMessage:
    return replace(base, command=Command.LANGUAGE, language_input=_argument(match) or None, text="Language")


# Evaluated top to bottom; the first matching rule wins.
COMMAND_RULES: tuple[CommandRule, ...] = (
    CommandRule(Command.START, _command_pattern("start|help"), _plain(Command.START, "Welcome")),
    CommandRule(Command.MODELS, _command_pattern("models"), _plain(Command.MODELS, "Model list requested")),
    CommandRule(Command.MODEL_SYNC, _command_pattern("modelsync"), _plain(Command.MODEL_SYNC, "Model sync requested")),
    CommandRule(Command.MODEL, _command_pattern("model", r"(?:\s+(.*))?"), _build_model),
    CommandRule(Command.ASK, _command_pattern("askm", r"(?:\s+(\S+))?(?:\s+(.*))?"), _build_ask_with_model),
    CommandRule(Command.ASK, _command_pattern("ask", r"(?:\s+(.*))?"), _build_ask),
    CommandRule(Command.TOPIC, _command_pattern("topic", r"(?:\s+(.*))?"), _build_topic),
    CommandRule(Command.AGENT, _command_pattern("agent", r"(?:\s+(.*))?"), _build_agent),
    CommandRule(Command.HISTORY, _command_pattern("history", r"(?:\s+(.*))?"), _build_history),
    CommandRule(Command.THREADS, _command_pattern("threads"), _plain(Command.THREADS, "Thread list requested")),
    CommandRule(Command.MODE, _command_pattern("mode", r"(?:\s+(.*))?"), _build_mode),
    CommandRule(Command.LANGUAGE, _command_pattern("language|lang", r"(?:\s+(.*))?"), _build_language),
    CommandRule(Command.STATUS, _command_pattern("status"), _plain(Command.STATUS, "Status requested")),
)


def parse_message(
    text: Optional[str],
    profile: SessionProfile,
    rules: tuple[CommandRule, ...] = COMMAND_RULES,
) -> ParsedMessage:
    """Classify ``text`` against ``rules``; unmatched text is a free-form message.

    Values carried by the command (a new topic, agent or model) override the
    ones in ``profile`` for this message only; persisting them is the
    handler's job.
    """
    raw = (text or "").strip()
    base = ParsedMessage(
        topic=profile.topic,
        agent=profile.agent,
        model_id=profile.model_id,
        language=profile.language,
        text=raw,
    )
    for rule in rules:
        match = rule.pattern.match(raw)
        if match:
            return rule.build(match, base)
    return base
