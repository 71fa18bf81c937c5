from __future__ import annotations

import pytest

from copilot_bridge.config import SessionConfig
from copilot_bridge.core.types import ReplyMode, Role
from copilot_bridge.storage.conversation_repo import ConversationRepository


async def test_history_keeps_append_order_per_thread(repo):
    for i in range(5):
        await repo.append(1, "default", Role.USER, f"message {i}", "default")
    await repo.append(1, "research", Role.USER, "other topic", "default")
    await repo.append(2, "default", Role.USER, "other chat", "default")

    history = await repo.get_history(1, "default")

    assert [m.content for m in history] == [f"message {i}" for i in range(5)]
    assert all(m.chat_id == 1 and m.topic == "default" for m in history)


async def test_history_limit_returns_newest_oldest_first(repo):
    for i in range(6):
        await repo.append(1, "default", Role.USER, f"m{i}", "default")

    history = await repo.get_history(1, "default", limit=3)

    assert [m.content for m in history] == ["m3", "m4", "m5"]


async def test_history_across_topics_when_topic_omitted(repo):
    await repo.append(1, "a", Role.USER, "first", "default")
    await repo.append(1, "b", Role.USER, "second", "default")

    history = await repo.get_history(1)

    assert [(m.topic, m.content) for m in history] == [("a", "first"), ("b", "second")]


async def test_history_for_unknown_thread_is_empty(repo):
    assert await repo.get_history(42, "nothing") == []


async def test_append_returns_stored_message(repo):
    stored = await repo.append(7, "default", Role.ASSISTANT, "hi", "helper")

    assert stored.id > 0
    assert stored.role is Role.ASSISTANT
    assert stored.agent == "helper"
    assert stored.created_at is not None


async def test_append_rejects_missing_thread_key(repo):
    with pytest.raises(ValueError):
        await repo.append(None, "default", Role.USER, "x", "default")
    with pytest.raises(ValueError):
        await repo.append(1, None, Role.USER, "x", "default")


async def test_retention_by_count_keeps_newest(db):
    repo = ConversationRepository(db, SessionConfig(retention_messages=3))
    for i in range(7):
        await repo.append(1, "default", Role.USER, f"m{i}", "default")
    await repo.append(1, "other", Role.USER, "untouched", "default")

    assert [m.content for m in await repo.get_history(1, "default")] == ["m4", "m5", "m6"]
    assert await repo.count_messages(1, "other") == 1


async def test_retention_never_removes_latest_message(db):
    repo = ConversationRepository(db, SessionConfig(retention_messages=1, retention_days=0))
    await repo.append(1, "default", Role.USER, "old", "default")
    await repo.append(1, "default", Role.USER, "new", "default")

    history = await repo.get_history(1, "default")

    assert [m.content for m in history] == ["new"]


async def test_search_is_case_insensitive_and_newest_first(repo):
    await repo.append(1, "a", Role.USER, "Deploy the Service", "default")
    await repo.append(1, "b", Role.ASSISTANT, "service restarted", "default")
    await repo.append(1, "b", Role.USER, "unrelated", "default")
    await repo.append(2, "a", Role.USER, "service elsewhere", "default")

    found = await repo.search(1, "SERVICE")

    assert [m.content for m in found] == ["service restarted", "Deploy the Service"]


async def test_search_blank_keyword_returns_nothing(repo):
    await repo.append(1, "a", Role.USER, "anything", "default")

    assert await repo.search(1, "   ") == []


async def test_list_threads_most_recent_first(repo):
    await repo.append(1, "a", Role.USER, "x", "default")
    await repo.append(1, "b", Role.USER, "y", "default")
    await repo.append(1, "b", Role.USER, "z", "default")
    await repo.append(1, "a", Role.USER, "w", "default")

    threads = await repo.list_threads(1)

    assert [(t.topic, t.message_count) for t in threads] == [("a", 2), ("b", 2)]


async def test_continue_context_reports_selected_agent_and_model(db):
    repo = ConversationRepository(db, SessionConfig())
    await repo.set_selected_agent(1, "default", "coder")
    await repo.set_selected_model(1, "default", "gpt-4o-mini")
    for i in range(30):
        await repo.append(1, "default", Role.USER, f"turn {i}", "coder")

    context = await repo.continue_context(1, "default", limit=10)

    assert context.agent == "coder"
    assert context.model_id == "gpt-4o-mini"
    assert context.summary.startswith("topic=default; agent=coder; model=gpt-4o-mini")
    assert context.compacted == 20
    assert "[compacted 20 earlier messages]" in context.summary
    assert [m.content for m in context.messages] == [f"turn {i}" for i in range(20, 30)]


async def test_continue_context_never_mixes_threads(repo):
    await repo.append(1, "a", Role.USER, "secret a", "default")
    await repo.append(1, "b", Role.USER, "visible b", "default")

    context = await repo.continue_context(1, "b")

    assert all(m.topic == "b" for m in context.messages)
    assert "secret a" not in context.summary


async def test_continue_context_summary_is_capped(repo):
    for _ in range(50):
        await repo.append(1, "default", Role.USER, "x" * 500, "default")

    context = await repo.continue_context(1, "default", limit=50)

    assert len(context.summary) <= 4000


async def test_topic_state_upsert(repo):
    assert await repo.get_topic_state(1, "t", "k") is None
    await repo.set_topic_state(1, "t", "k", "v1")
    await repo.set_topic_state(1, "t", "k", "v2")

    assert await repo.get_topic_state(1, "t", "k") == "v2"
    assert await repo.get_topic_state(1, "other", "k") is None


async def test_typed_accessors_fall_back_to_defaults(repo):
    assert await repo.get_current_topic(1) == "default"
    assert await repo.get_selected_agent(1, "default") == "default"
    assert await repo.get_selected_model(1, "default") == "gpt-4o"
    assert await repo.get_reply_mode(1, "default") is ReplyMode.AUTO
    assert await repo.get_language(1, "default") is None
    assert await repo.get_nav_step(1, "default") == ""


async def test_current_topic_and_profile(repo):
    await repo.set_current_topic(1, "research")
    await repo.set_selected_agent(1, "research", "analyst")

    assert await repo.get_current_profile(1, "default") == ("research", "analyst")
    assert await repo.get_current_profile(2, "default") == ("default", "default")


async def test_offset_starts_at_zero_and_never_decreases(repo):
    assert await repo.get_offset() == 0

    assert await repo.set_offset(10) == 10
    assert await repo.set_offset(4) == 10
    assert await repo.get_offset() == 10

    assert await repo.set_offset(11) == 11
    assert await repo.get_offset() == 11


async def test_search_folds_case_beyond_ascii(repo):
    await repo.append(1, "default", Role.USER, "Привет МИР and Ünïcode", "default")
    await repo.append(1, "default", Role.USER, "Straße gesperrt", "default")

    assert [m.content for m in await repo.search(1, "мир")] == ["Привет МИР and Ünïcode"]
    assert [m.content for m in await repo.search(1, "üNÏCODE")] == ["Привет МИР and Ünïcode"]
    assert [m.content for m in await repo.search(1, "STRASSE")] == ["Straße gesperrt"]
