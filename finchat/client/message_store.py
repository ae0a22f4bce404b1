"""Client message store: the single owner of message state for one conversation view."""

from __future__ import annotations

from collections.abc import Callable, Iterable
import logging
from typing import Literal
import uuid

from finchat.core.errors import ChatRequestError, StreamProtocolError
from finchat.core.message_reducer import apply_stream_event
from finchat.core.messages import ChatMessage, DynamicToolPart, TextPart, ToolInvocationPart, user_message
from finchat.core.stream_events import ChatStreamEvent

logger = logging.getLogger(__name__)

ChatStatus = Literal["idle", "submitted", "streaming", "ready", "error"]
Listener = Callable[[], None]

KNOWN_TOOLS = frozenset({"financialSearch", "webSearch", "codeExecution", "createChart", "createCSV"})
STREAM_ENDED_MESSAGE = "The response stream ended unexpectedly."


class MessageStore:
    """Applies stream events to an ordered message list and tracks turn status."""

    def __init__(
        self,
        messages: Iterable[ChatMessage] | None = None,
        *,
        known_tools: frozenset[str] | None = KNOWN_TOOLS,
    ) -> None:
        self._messages: list[ChatMessage] = list(messages or [])
        self._known_tools = known_tools
        self._listeners: list[Listener] = []
        self.status: ChatStatus = "idle"
        self.error: ChatRequestError | None = None
        self.stream_error: str | None = None

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    @property
    def is_busy(self) -> bool:
        return self.status in ("submitted", "streaming")

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()

    def _require_idle(self, action: str) -> None:
        if self.is_busy:
            raise RuntimeError(f"cannot {action} while a response is streaming")

    def _index_of(self, message_id: str) -> int:
        for index, message in enumerate(self._messages):
            if message.id == message_id:
                return index
        raise KeyError(message_id)

    def submit_user_message(self, text: str) -> ChatMessage:
        self._require_idle("submit")
        message = user_message(str(uuid.uuid4()), text)
        self._messages.append(message)
        self._begin()
        return message

    def begin_continuation(self) -> None:
        """Mark a turn as submitted without adding a user message (auto-continue, regenerate)."""

        self._require_idle("continue")
        self._begin()

    def _begin(self) -> None:
        self.status = "submitted"
        self.error = None
        self.stream_error = None
        self._notify()

    def apply(self, event: ChatStreamEvent) -> None:
        try:
            self._messages = apply_stream_event(self._messages, event, known_tools=self._known_tools)
        except StreamProtocolError as exc:
            logger.warning("dropping stream after protocol violation", extra={"event_type": event.get("type")})
            self.status = "error"
            self.stream_error = str(exc)
            self._notify()
            raise

        event_type = event["type"]
        if event_type == "start":
            self.status = "streaming"
        elif event_type == "error":
            self.stream_error = str(event["data"].get("message") or "")
        elif event_type == "finish":
            self.status = "error" if event["data"].get("reason") == "error" else "ready"
        self._notify()

    def fail(self, error: ChatRequestError) -> None:
        self.status = "error"
        self.error = error
        self._notify()

    def complete(self) -> None:
        """Close out a turn whose stream ended; a missing ``finish`` event counts as an error."""

        if self.is_busy:
            self.status = "error"
            self.stream_error = STREAM_ENDED_MESSAGE
            self._notify()

    def abort(self) -> None:
        """Settle a user-stopped turn; the partial message is kept exactly as received."""

        if self.is_busy:
            self.status = "ready"
            self._notify()

    def dismiss_error(self) -> None:
        if self.status == "error":
            self.status = "ready"
        self.error = None
        self.stream_error = None
        self._notify()

    def edit_message(self, message_id: str, text: str) -> ChatMessage:
        """Replace a user message with edited text and drop everything after it."""

        self._require_idle("edit")
        index = self._index_of(message_id)
        if self._messages[index].role != "user":
            raise ValueError("only user messages can be edited")
        edited = user_message(str(uuid.uuid4()), text)
        self._messages = [*self._messages[:index], edited]
        self._notify()
        return edited

    def delete_message(self, message_id: str) -> None:
        self._require_idle("delete")
        index = self._index_of(message_id)
        del self._messages[index]
        self._notify()

    def prepare_regenerate(self) -> list[ChatMessage]:
        """Drop the assistant tail after the last user message and return the remaining transcript."""

        self._require_idle("regenerate")
        for index in range(len(self._messages) - 1, -1, -1):
            if self._messages[index].role == "user":
                self._messages = self._messages[: index + 1]
                self._notify()
                return self.messages
        raise ValueError("there is no user message to regenerate a response for")

    def should_auto_submit(self) -> bool:
        """True when the last assistant message ends in finished tool calls and no text after them."""

        if self.status != "ready" or not self._messages:
            return False
        last = self._messages[-1]
        if last.role != "assistant":
            return False

        last_tool_index = None
        for index, part in enumerate(last.parts):
            if isinstance(part, (ToolInvocationPart, DynamicToolPart)):
                if not part.is_terminal:
                    return False
                last_tool_index = index
        if last_tool_index is None:
            return False
        return not any(
            isinstance(part, TextPart) and part.text.strip() for part in last.parts[last_tool_index + 1 :]
        )
