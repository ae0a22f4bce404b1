from __future__ import annotations

from langchain_core.messages import AIMessage
import pytest

from finchat.agents.tools import MockFinanceSearchProvider, build_default_registry
from finchat.api.schemas.auth import Principal
from finchat.core.errors import AuthRequiredError, ModelCompatibilityError, SessionNotFoundError
from finchat.core.messages import ChatMessage, TextPart, user_message
from finchat.core.settings import Settings
from finchat.core.stream_events import decode_sse_frame
from finchat.services.chat_service import ChatService
from finchat.services.chat_store import InMemoryChatStore
from finchat.services.persistence import is_uuid_v4, normalize_message_id
from tests.conftest import RejectingChatModel, ScriptedChatModel, StaticModelResolver, text_chunk


def _service(
    model,
    *,
    store: InMemoryChatStore | None = None,
    app_mode: str = "hosted",
    title_generation: bool = False,
) -> tuple[ChatService, InMemoryChatStore]:
    store = store or InMemoryChatStore()
    registry = build_default_registry(search_provider=MockFinanceSearchProvider(), sandbox_client=None)
    settings = Settings(APP_MODE=app_mode, CHAT_STORE_BACKEND="memory", SESSION_TITLE_GENERATION=title_generation)
    return ChatService(settings, StaticModelResolver(model), registry, store), store


async def _drain(stream) -> list[dict]:
    return [decode_sse_frame(frame) async for frame in stream]


@pytest.mark.asyncio
async def test_hosted_turn_without_identity_is_rejected() -> None:
    service, _ = _service(ScriptedChatModel([[text_chunk("never")]]))

    with pytest.raises(AuthRequiredError):
        await service.start_turn(
            messages=[user_message("user-1", "hi")],
            principal=None,
            session_id=None,
            delegated_credential=None,
            headers={},
        )


@pytest.mark.asyncio
async def test_first_turn_creates_session_and_persists_transcript() -> None:
    service, store = _service(ScriptedChatModel([[text_chunk("Hello "), text_chunk("there")]]))
    principal = Principal(user_id="user-42")

    session_id, stream = await service.start_turn(
        messages=[user_message("client-msg-1", "What moved Tesla stock this week?")],
        principal=principal,
        session_id=None,
        delegated_credential=None,
        headers={"x-thinking-mode": "false"},
    )

    assert session_id is not None
    stored_before_stream = await store.get_messages(session_id)
    assert [message.role for message in stored_before_stream] == ["user"]

    events = await _drain(stream)

    assert events[0]["type"] == "start"
    assert events[-1]["type"] == "finish"
    stored = await store.get_messages(session_id)
    assert [message.role for message in stored] == ["user", "assistant"]
    assert stored[0].id == normalize_message_id(session_id, "client-msg-1")
    assert all(is_uuid_v4(message.id) for message in stored)
    assert stored[1].text() == "Hello there"
    assert stored[1].processing_time_ms == events[-1]["data"]["processing_time_ms"]
    assert stored[0].processing_time_ms is None

    session = await store.get_session(session_id, "user-42")
    assert session.title == "What moved Tesla stock this week?"
    assert session.last_message_at is not None


@pytest.mark.asyncio
async def test_compatibility_error_surfaces_before_streaming() -> None:
    service, _ = _service(RejectingChatModel("gemma:2b does not support tools"))

    with pytest.raises(ModelCompatibilityError) as exc_info:
        await service.start_turn(
            messages=[user_message("user-1", "hi")],
            principal=Principal(user_id="user-42"),
            session_id=None,
            delegated_credential=None,
            headers={},
        )

    assert exc_info.value.to_payload()["compatibilityIssue"] == "tools"


@pytest.mark.asyncio
async def test_unknown_or_foreign_session_is_not_found() -> None:
    store = InMemoryChatStore()
    foreign = await store.create_session("someone-else", "Their chat")
    service, _ = _service(ScriptedChatModel([[text_chunk("never")]]), store=store)

    with pytest.raises(SessionNotFoundError):
        await service.start_turn(
            messages=[user_message("user-1", "hi")],
            principal=Principal(user_id="user-42"),
            session_id=foreign.id,
            delegated_credential=None,
            headers={},
        )


@pytest.mark.asyncio
async def test_self_hosted_anonymous_turn_streams_without_persistence() -> None:
    service, store = _service(ScriptedChatModel([[text_chunk("Local answer")]]), app_mode="self-hosted")

    session_id, stream = await service.start_turn(
        messages=[user_message("user-1", "hi")],
        principal=None,
        session_id=None,
        delegated_credential=None,
        headers={},
    )
    events = await _drain(stream)

    assert session_id is None
    assert [event["type"] for event in events][-2:] == ["finish-step", "finish"]
    assert store._sessions == {}  # noqa: SLF001


@pytest.mark.asyncio
async def test_continuation_reuses_the_assistant_message_id() -> None:
    service, store = _service(ScriptedChatModel([[text_chunk(" and the rest.")]]))
    session = await store.create_session("user-42", "Tesla")
    await store.append_message(session.id, user_message(normalize_message_id(session.id, "user-1"), "Tesla"))
    await store.save_assistant_message(
        session.id,
        ChatMessage(
            id=normalize_message_id(session.id, "assistant-7"),
            role="assistant",
            parts=[TextPart(text="Partial answer", id="text-1")],
        ),
    )
    submitted = ChatMessage(id="assistant-7", role="assistant", parts=[TextPart(text="Edited by client", id="text-1")])

    _, stream = await service.start_turn(
        messages=[user_message("user-1", "Tesla"), submitted],
        principal=Principal(user_id="user-42"),
        session_id=session.id,
        delegated_credential=None,
        headers={},
    )
    events = await _drain(stream)

    assert events[0]["data"] == {"message_id": "assistant-7"}
    text_start = next(event for event in events if event["type"] == "text-start")
    assert text_start["data"]["id"] == "text-2"
    stored = await store.get_messages(session.id)
    assert [message.role for message in stored] == ["user", "assistant"]
    assert stored[-1].text() == "Partial answer and the rest."


class TitledChatModel(ScriptedChatModel):
    """Scripted model that also answers the one-shot title prompt."""

    def __init__(self, steps, *, title: str) -> None:
        super().__init__(steps)
        self.title = title
        self.title_prompts: list[str] = []

    async def ainvoke(self, messages, *args, **kwargs) -> AIMessage:
        del args, kwargs
        self.title_prompts.append(messages[-1].content)
        return AIMessage(content=self.title)


@pytest.mark.asyncio
async def test_new_session_gets_a_model_written_title() -> None:
    model = TitledChatModel([[text_chunk("Shares rose 4%.")]], title='"Tesla (TSLA) weekly stock moves"')
    service, store = _service(model, title_generation=True)

    session_id, stream = await service.start_turn(
        messages=[user_message("user-1", "What moved Tesla stock this week?")],
        principal=Principal(user_id="user-42"),
        session_id=None,
        delegated_credential=None,
        headers={},
    )
    await _drain(stream)
    await service.aclose()

    session = await store.get_session(session_id, "user-42")
    assert session.title == "Tesla (TSLA) weekly stock moves"
    assert 'User message: "What moved Tesla stock this week?"' in model.title_prompts[0]


@pytest.mark.asyncio
async def test_title_falls_back_to_opening_message_when_model_fails() -> None:
    service, store = _service(ScriptedChatModel([[text_chunk("Shares rose 4%.")]]), title_generation=True)

    session_id, stream = await service.start_turn(
        messages=[user_message("user-1", "What moved Tesla stock this week?")],
        principal=Principal(user_id="user-42"),
        session_id=None,
        delegated_credential=None,
        headers={},
    )
    await _drain(stream)
    await service.aclose()

    session = await store.get_session(session_id, "user-42")
    assert session.title == "What moved Tesla stock this week?"
