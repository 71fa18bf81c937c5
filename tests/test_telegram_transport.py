from __future__ import annotations

from datetime import datetime, timezone

import pytest
from telegram import Chat, Document, Message, User
from telegram import Update as TGUpdate

from copilot_bridge.config import TelegramConfig
from copilot_bridge.messenger.telegram import TelegramTransport

SENT_AT = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def tg_message(**kwargs) -> Message:
    return Message(
        message_id=11,
        date=SENT_AT,
        chat=Chat(id=555, type="private"),
        from_user=User(id=9, first_name="Ada", last_name="L", is_bot=False),
        **kwargs,
    )


def test_convert_text_message():
    update = TelegramTransport._convert(TGUpdate(update_id=42, message=tg_message(text="hello")))

    assert update.update_id == 42
    assert update.message.chat_id == 555
    assert update.message.text == "hello"
    assert update.message.user_display_name == "Ada L"
    assert update.message.document is None


def test_convert_document_uses_caption_as_text():
    document = Document(file_id="f1", file_unique_id="u1", file_name="a.pdf", mime_type="application/pdf")
    update = TelegramTransport._convert(
        TGUpdate(update_id=43, message=tg_message(document=document, caption="see attached"))
    )

    assert update.message.text == "see attached"
    assert update.message.document.file_id == "f1"
    assert update.message.document.file_name == "a.pdf"


def test_convert_update_without_message():
    update = TelegramTransport._convert(TGUpdate(update_id=44))

    assert update.update_id == 44
    assert update.message is None


async def test_start_requires_token():
    with pytest.raises(ValueError):
        await TelegramTransport(TelegramConfig(token="")).start()


def test_bot_unavailable_before_start():
    with pytest.raises(RuntimeError):
        TelegramTransport(TelegramConfig(token="x")).bot
