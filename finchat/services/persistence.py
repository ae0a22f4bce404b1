"""Persistence adapter: stores the user turn up front and the assistant reply after streaming."""

from __future__ import annotations

from datetime import UTC, datetime
import logging
import re
import uuid

from finchat.api.schemas.sessions import SessionPatch
from finchat.core.errors import PersistenceError
from finchat.core.messages import ChatMessage, DynamicToolPart, TextPart, ToolInvocationPart
from finchat.services.chat_stream import TurnResult
from finchat.services.contracts import ChatStoreProtocol

logger = logging.getLogger(__name__)

_UUID_V4_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE)
_MESSAGE_ID_NAMESPACE = uuid.UUID("5b0f7c55-2a44-4f63-9a8e-6d1f2f3c9b10")
_MAX_TITLE_CHARS = 80


def is_uuid_v4(value: str) -> bool:
    return bool(_UUID_V4_PATTERN.match(value))


def normalize_message_id(session_id: str, message_id: str) -> str:
    """Return ``message_id`` if it is a v4 UUID, else a v4-shaped UUID derived from it.

    Derivation is deterministic per session, so the same client id maps to the
    same stored row on every turn.
    """

    if is_uuid_v4(message_id):
        return message_id.lower()
    derived = uuid.uuid5(_MESSAGE_ID_NAMESPACE, f"{session_id}:{message_id}")
    return str(uuid.UUID(bytes=derived.bytes, version=4))


def derive_session_title(messages: list[ChatMessage]) -> str:
    for message in messages:
        if message.role != "user":
            continue
        text = " ".join(message.text().split())
        if text:
            return text if len(text) <= _MAX_TITLE_CHARS else f"{text[: _MAX_TITLE_CHARS - 3].rstrip()}..."
    return "New chat"


def strip_incomplete_parts(message: ChatMessage) -> ChatMessage | None:
    """Drop tool parts that never reached a terminal state; ``None`` if nothing worth keeping remains."""

    parts = [
        part
        for part in message.parts
        if not isinstance(part, (ToolInvocationPart, DynamicToolPart)) or part.is_terminal
    ]
    has_text = any(isinstance(part, TextPart) and part.text.strip() for part in parts)
    has_tool_result = any(isinstance(part, (ToolInvocationPart, DynamicToolPart)) for part in parts)
    if not has_text and not has_tool_result:
        return None
    return message.model_copy(update={"parts": parts})


class TurnPersistence:
    """Writes the messages a turn created to the chat store; failures are logged, never raised."""

    def __init__(self, store: ChatStoreProtocol) -> None:
        self._store = store

    async def store_user_message(self, session_id: str, messages: list[ChatMessage]) -> None:
        if not messages or messages[-1].role != "user":
            return
        message = messages[-1]
        normalized = message.model_copy(update={"id": normalize_message_id(session_id, message.id)})
        await self._store.append_message(session_id, normalized)
        logger.debug("stored user message", extra={"session_id": session_id, "message_id": normalized.id})

    def prepare_assistant_message(
        self,
        session_id: str,
        result: TurnResult,
        stored: ChatMessage | None = None,
    ) -> ChatMessage | None:
        """Build the row for the turn's assistant message from the parts streamed in this turn.

        Parts the client submitted for a continued message are replaced by the
        stored ones, so earlier output is never taken from the request body.
        """

        message = result.assistant_message
        if message is None:
            return None
        message = message.model_copy(update={"parts": message.parts[result.continued_part_count :]})
        if result.aborted:
            stripped = strip_incomplete_parts(message)
            if stripped is None:
                logger.info("skipping empty aborted assistant message", extra={"session_id": session_id})
                return None
            message = stripped
        stored_parts = stored.parts if stored is not None and stored.role == "assistant" else []
        return message.model_copy(
            update={
                "id": normalize_message_id(session_id, message.id),
                "parts": [*stored_parts, *message.parts],
                "processing_time_ms": result.processing_time_ms,
            }
        )

    async def finalize_turn(self, session_id: str, owner_id: str | None, result: TurnResult) -> None:
        message: ChatMessage | None = None
        try:
            updated = await self._store.update_session(
                session_id,
                owner_id,
                SessionPatch(last_message_at=datetime.now(UTC)),
            )
            if updated is None:
                raise PersistenceError(f"session {session_id} is not visible to its caller")
            stored = await self._store.get_message(session_id, normalize_message_id(session_id, result.assistant_message_id))
            message = self.prepare_assistant_message(session_id, result, stored)
            if message is not None:
                await self._store.save_assistant_message(session_id, message)
        except Exception:
            logger.exception(
                "failed to persist chat turn",
                extra={"session_id": session_id, "finish_reason": result.finish_reason},
            )
            return
        logger.info(
            "persisted chat turn",
            extra={
                "session_id": session_id,
                "message_id": message.id if message is not None else None,
                "processing_time_ms": result.processing_time_ms,
            },
        )
