from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Mapping
from functools import partial
import logging
import time
import uuid

from finchat.agents.base import ChatAgent
from finchat.agents.factory import build_main_agent
from finchat.agents.model_resolver import LocalModelPreferences, ModelResolver, ResolvedModel
from finchat.agents.tools.contracts import ToolContext
from finchat.agents.tools.registry import ToolRegistry
from finchat.api.schemas.auth import Principal
from finchat.core.errors import AuthRequiredError, ChatTurnError, SessionNotFoundError
from finchat.core.messages import ChatMessage
from finchat.core.settings import Settings
from finchat.core.stream_events import ChatStreamEvent
from finchat.services.chat_stream import ChatStreamEncoder
from finchat.services.contracts import ChatStoreProtocol
from finchat.services.persistence import TurnPersistence, derive_session_title
from finchat.services.session_titles import SessionTitleWriter

logger = logging.getLogger(__name__)

AgentFactory = Callable[..., ChatAgent]


async def _chain(first: ChatStreamEvent, rest: AsyncIterator[ChatStreamEvent]) -> AsyncIterator[ChatStreamEvent]:
    try:
        yield first
        async for event in rest:
            yield event
    finally:
        aclose = getattr(rest, "aclose", None)
        if aclose is not None:
            await aclose()


async def _empty() -> AsyncIterator[ChatStreamEvent]:
    return
    yield


async def _raising(exc: BaseException) -> AsyncIterator[ChatStreamEvent]:
    raise exc
    yield


async def prime_stream(events: AsyncIterator[ChatStreamEvent], *, timeout_seconds: float) -> AsyncIterator[ChatStreamEvent]:
    """Pull the first agent event so request-level errors surface before the response starts."""

    try:
        first = await asyncio.wait_for(anext(events), timeout=timeout_seconds)
    except StopAsyncIteration:
        return _empty()
    except ChatTurnError:
        raise
    except Exception as exc:
        logger.warning("first agent step failed; reporting in-band", extra={"error_type": type(exc).__name__})
        return _raising(exc)
    return _chain(first, events)


class ChatService:
    """Use-case service orchestrating one chat turn: auth, session, model, agent, stream, persistence."""

    def __init__(
        self,
        settings: Settings,
        model_resolver: ModelResolver,
        tool_registry: ToolRegistry,
        chat_store: ChatStoreProtocol,
        agent_factory: AgentFactory = build_main_agent,
    ) -> None:
        self._settings = settings
        self._model_resolver = model_resolver
        self._tool_registry = tool_registry
        self._chat_store = chat_store
        self._agent_factory = agent_factory
        self._persistence = TurnPersistence(chat_store)
        self._encoder = ChatStreamEncoder(turn_timeout_seconds=settings.turn_timeout_seconds)
        self._title_writer = SessionTitleWriter(chat_store, timeout_seconds=settings.session_title_timeout_seconds)
        self._background_tasks: set[asyncio.Task] = set()

    async def _ensure_session(
        self,
        *,
        principal: Principal | None,
        session_id: str | None,
        messages: list[ChatMessage],
    ) -> tuple[str | None, bool]:
        owner_id = principal.user_id if principal is not None else None
        if session_id:
            session = await self._chat_store.get_session(session_id, owner_id)
            if session is None:
                raise SessionNotFoundError(f"Chat session {session_id} was not found.")
            return session.id, False
        if principal is None:
            return None, False
        session = await self._chat_store.create_session(owner_id, derive_session_title(messages))
        logger.info("created chat session", extra={"session_id": session.id, "user_id": owner_id})
        return session.id, True

    def _schedule_title(
        self,
        session_id: str,
        owner_id: str | None,
        resolved: ResolvedModel,
        messages: list[ChatMessage],
    ) -> None:
        if not self._settings.session_title_generation or resolved.source == "mock":
            return
        task = asyncio.create_task(self._title_writer.write_title(session_id, owner_id, resolved.model, messages))
        self._background_tasks.add(task)
        task.add_done_callback(self._on_background_task_done)

    def _on_background_task_done(self, task: asyncio.Task) -> None:
        self._background_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("background chat task failed", exc_info=task.exception())

    async def aclose(self) -> None:
        """Wait for pending session title updates."""

        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

    async def start_turn(
        self,
        *,
        messages: list[ChatMessage],
        principal: Principal | None,
        session_id: str | None,
        delegated_credential: str | None,
        headers: Mapping[str, str],
    ) -> tuple[str | None, AsyncIterator[str]]:
        if principal is None and not self._settings.self_hosted:
            raise AuthRequiredError("Sign in to chat with the assistant.")

        started_at = time.perf_counter()
        owner_id = principal.user_id if principal is not None else None
        session_id, created = await self._ensure_session(principal=principal, session_id=session_id, messages=messages)
        if session_id is not None:
            await self._persistence.store_user_message(session_id, messages)

        resolved: ResolvedModel = await self._model_resolver.resolve(LocalModelPreferences.from_headers(headers))
        if created and session_id is not None:
            self._schedule_title(session_id, owner_id, resolved, messages)
        agent = self._agent_factory(self._settings, resolved=resolved, registry=self._tool_registry)

        last = messages[-1]
        assistant_message_id = last.id if last.role == "assistant" else str(uuid.uuid4())
        cancel_event = asyncio.Event()
        context = ToolContext(user_id=owner_id, session_id=session_id, delegated_credential=delegated_credential)
        logger.info(
            "starting assistant turn",
            extra={
                "session_id": session_id,
                "model_name": resolved.model_name,
                "model_source": resolved.source,
                "continuation": last.role == "assistant",
            },
        )

        events = await prime_stream(
            agent.astream(messages, context=context, cancel_event=cancel_event),
            timeout_seconds=self._settings.turn_timeout_seconds,
        )
        on_finish = partial(self._persistence.finalize_turn, session_id, owner_id) if session_id is not None else None
        stream = self._encoder.encode(
            messages=messages,
            assistant_message_id=assistant_message_id,
            events=events,
            on_finish=on_finish,
            cancel_event=cancel_event,
            started_at=started_at,
        )
        return session_id, stream
