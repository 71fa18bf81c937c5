"""Build chat-completion messages from a reply request."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

QUALITY_DIRECTIVES = (
    "- Prefer the supplied context and evidence when answering.",
    "- If the evidence is insufficient, say clearly that you are unsure.",
    "- Keep the answer concise and direct, suitable for reading in Telegram.",
)


@dataclass(frozen=True)
class ReplyRequest:
    model_id: str
    topic: str
    agent: str
    user_input: str
    context_summary: str = ""
    extra_context: Optional[str] = None


def build_system_prompt(topic: str, agent: str) -> str:
    return "\n".join(
        [
            "You are a Telegram assistant bridged to a chat-completion model.",
            f"Current topic: {topic}",
            f"Current agent: {agent}",
            "Answer requirements:",
            *QUALITY_DIRECTIVES,
        ]
    )


def build_user_prompt(request: ReplyRequest) -> str:
    parts = [f"Conversation summary:\n{request.context_summary or 'none'}"]
    if request.extra_context:
        parts.append(f"Additional context:\n{request.extra_context}")
    parts.append(f"User input:\n{request.user_input}")
    return "\n\n".join(parts)


def build_messages(request: ReplyRequest) -> list[dict[str, Any]]:
    """Return the two-turn ``messages`` list sent to the completion endpoint.

    The continuation summary travels inside the user turn rather than as
    replayed history, so the request size stays bounded by the summary cap.
    """
    return [
        {"role": "system", "content": build_system_prompt(request.topic, request.agent)},
        {"role": "user", "content": build_user_prompt(request)},
    ]
