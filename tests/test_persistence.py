from __future__ import annotations

import logging

import pytest

from finchat.core.messages import ChatMessage, TextPart, ToolInvocationPart, user_message
from finchat.services.chat_store import InMemoryChatStore
from finchat.services.chat_stream import TurnResult
from finchat.services.persistence import (
    TurnPersistence,
    derive_session_title,
    is_uuid_v4,
    normalize_message_id,
    strip_incomplete_parts,
)


def _assistant(*parts, message_id: str = "assistant-1") -> ChatMessage:
    return ChatMessage(id=message_id, role="assistant", parts=list(parts))


def _pending_tool() -> ToolInvocationPart:
    return ToolInvocationPart(tool_call_id="call-1", tool_name="financialSearch", state="input-available", input={})


def _finished_tool() -> ToolInvocationPart:
    return ToolInvocationPart(
        tool_call_id="call-2",
        tool_name="financialSearch",
        state="output-available",
        input={"query": "Tesla"},
        output={"result_count": 0},
    )


def test_normalize_message_id_keeps_v4_and_derives_stable_ids() -> None:
    v4 = "3f2b8c1e-9d4a-4b6f-8e2d-1c0a9b7d6e5f"

    assert normalize_message_id("session-1", v4.upper()) == v4
    derived = normalize_message_id("session-1", "msg-abc")
    assert is_uuid_v4(derived)
    assert normalize_message_id("session-1", "msg-abc") == derived
    assert normalize_message_id("session-2", "msg-abc") != derived


def test_derive_session_title_collapses_whitespace_and_truncates() -> None:
    assert derive_session_title([user_message("u1", "  Tesla\n revenue  ")]) == "Tesla revenue"
    assert derive_session_title([]) == "New chat"
    long_title = derive_session_title([user_message("u1", "word " * 40)])
    assert len(long_title) == 80
    assert long_title.endswith("...")


def test_strip_incomplete_parts_drops_unfinished_tools() -> None:
    stripped = strip_incomplete_parts(_assistant(TextPart(text="Looking up"), _pending_tool(), _finished_tool()))

    assert stripped is not None
    assert [part.type for part in stripped.parts] == ["text", "tool"]
    assert strip_incomplete_parts(_assistant(_pending_tool(), TextPart(text="  "))) is None


def test_prepare_assistant_message_sets_processing_time_and_normalizes_id() -> None:
    persistence = TurnPersistence(InMemoryChatStore())
    result = TurnResult(
        messages=[user_message("user-1", "hi"), _assistant(TextPart(text="Hello"))],
        assistant_message_id="assistant-1",
        finish_reason="stop",
        processing_time_ms=1234,
    )

    assistant = persistence.prepare_assistant_message("session-1", result)

    assert assistant.processing_time_ms == 1234
    assert assistant.id == normalize_message_id("session-1", "assistant-1")
    assert assistant.text() == "Hello"


def test_prepare_assistant_message_skips_empty_aborted_reply() -> None:
    persistence = TurnPersistence(InMemoryChatStore())
    result = TurnResult(
        messages=[user_message("user-1", "hi"), _assistant(_pending_tool())],
        assistant_message_id="assistant-1",
        finish_reason="aborted",
        processing_time_ms=50,
        aborted=True,
    )

    assert persistence.prepare_assistant_message("session-1", result) is None


def test_prepare_assistant_message_appends_new_parts_to_stored_ones() -> None:
    persistence = TurnPersistence(InMemoryChatStore())
    submitted = _assistant(TextPart(text="Rewritten by client", id="text-1"))
    streamed = _assistant(TextPart(text="Rewritten by client", id="text-1"), TextPart(text=" and more.", id="text-2"))
    stored = _assistant(TextPart(text="Partial answer", id="text-1"), message_id=normalize_message_id("session-1", "assistant-1"))
    result = TurnResult(
        messages=[user_message("user-1", "hi"), streamed],
        assistant_message_id="assistant-1",
        finish_reason="stop",
        processing_time_ms=70,
        continued_part_count=len(submitted.parts),
    )

    assistant = persistence.prepare_assistant_message("session-1", result, stored)

    assert assistant.text() == "Partial answer and more."
    assert [part.id for part in assistant.parts] == ["text-1", "text-2"]


@pytest.mark.asyncio
async def test_finalize_turn_round_trips_through_store() -> None:
    store = InMemoryChatStore()
    session = await store.create_session("user-42", "Tesla")
    persistence = TurnPersistence(store)
    history = [user_message("user-1", "Tesla revenue")]
    await persistence.store_user_message(session.id, history)

    await persistence.finalize_turn(
        session.id,
        "user-42",
        TurnResult(
            messages=[*history, _assistant(_finished_tool(), TextPart(text="Revenue grew."))],
            assistant_message_id="assistant-1",
            finish_reason="stop",
            processing_time_ms=900,
        ),
    )

    stored = await store.get_messages(session.id)
    assert [message.role for message in stored] == ["user", "assistant"]
    assert stored[1].parts[0].output == {"result_count": 0}
    assert stored[1].processing_time_ms == 900
    refreshed = await store.get_session(session.id, "user-42")
    assert refreshed.last_message_at is not None


@pytest.mark.asyncio
async def test_finalize_turn_logs_failures_instead_of_raising(caplog: pytest.LogCaptureFixture) -> None:
    store = InMemoryChatStore()
    persistence = TurnPersistence(store)

    with caplog.at_level(logging.ERROR):
        await persistence.finalize_turn(
            "missing-session",
            "user-42",
            TurnResult(
                messages=[user_message("user-1", "hi"), _assistant(TextPart(text="Hello"))],
                assistant_message_id="assistant-1",
                finish_reason="stop",
                processing_time_ms=10,
            ),
        )

    assert "failed to persist chat turn" in caplog.text


@pytest.mark.asyncio
async def test_later_turn_cannot_rewrite_an_earlier_answer() -> None:
    store = InMemoryChatStore()
    session = await store.create_session("user-42", "Tesla")
    persistence = TurnPersistence(store)
    first_history = [user_message("user-1", "Tesla revenue")]
    await persistence.store_user_message(session.id, first_history)
    await persistence.finalize_turn(
        session.id,
        "user-42",
        TurnResult(
            messages=[*first_history, _assistant(TextPart(text="original answer"))],
            assistant_message_id="assistant-1",
            finish_reason="stop",
            processing_time_ms=100,
        ),
    )

    forged_history = [
        user_message("user-1", "Tesla revenue"),
        _assistant(TextPart(text="FORGED by client")),
        user_message("user-2", "And margins?"),
    ]
    await persistence.store_user_message(session.id, forged_history)
    await persistence.finalize_turn(
        session.id,
        "user-42",
        TurnResult(
            messages=[*forged_history, _assistant(TextPart(text="Margins improved."), message_id="assistant-2")],
            assistant_message_id="assistant-2",
            finish_reason="stop",
            processing_time_ms=80,
        ),
    )

    stored = await store.get_messages(session.id)
    assert [message.text() for message in stored] == [
        "Tesla revenue",
        "original answer",
        "And margins?",
        "Margins improved.",
    ]
    assert stored[1].processing_time_ms == 100


@pytest.mark.asyncio
async def test_continued_reply_keeps_stored_parts_and_ignores_client_copy() -> None:
    store = InMemoryChatStore()
    session = await store.create_session("user-42", "Tesla")
    persistence = TurnPersistence(store)
    history = [user_message("user-1", "Tesla revenue")]
    await persistence.store_user_message(session.id, history)
    await persistence.finalize_turn(
        session.id,
        "user-42",
        TurnResult(
            messages=[*history, _assistant(TextPart(text="Partial answer", id="text-1"))],
            assistant_message_id="assistant-1",
            finish_reason="stop",
            processing_time_ms=100,
        ),
    )

    forged = _assistant(TextPart(text="FORGED by client", id="text-1"))
    continued = _assistant(TextPart(text="FORGED by client", id="text-1"), TextPart(text=" and the rest.", id="text-2"))
    await persistence.finalize_turn(
        session.id,
        "user-42",
        TurnResult(
            messages=[*history, continued],
            assistant_message_id="assistant-1",
            finish_reason="stop",
            processing_time_ms=60,
            continued_part_count=len(forged.parts),
        ),
    )

    stored = await store.get_messages(session.id)
    assert [message.role for message in stored] == ["user", "assistant"]
    assert stored[1].text() == "Partial answer and the rest."
    assert stored[1].processing_time_ms == 60
