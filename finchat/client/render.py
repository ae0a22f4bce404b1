"""Derives display state from the message store; read-only over messages."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union

from finchat.client.message_store import MessageStore
from finchat.core.messages import (
    ChatMessage,
    DynamicToolPart,
    ReasoningPart,
    TextPart,
    ToolInvocationPart,
)

ToolView = Literal["pending", "running", "result", "error"]

TOOL_TITLES: dict[str, str] = {
    "financialSearch": "Financial Search",
    "webSearch": "Web Search",
    "codeExecution": "Code Execution",
    "createChart": "Chart",
    "createCSV": "Table",
}

_TOOL_VIEWS: dict[str, ToolView] = {
    "input-streaming": "pending",
    "input-available": "running",
    "output-available": "result",
    "output-error": "error",
}


@dataclass(frozen=True)
class TextItem:
    text: str
    kind: Literal["text"] = "text"


@dataclass(frozen=True)
class ReasoningItem:
    """Consecutive reasoning parts merged for display; storage keeps them separate."""

    text: str
    streaming: bool
    steps: int
    kind: Literal["reasoning"] = "reasoning"


@dataclass(frozen=True)
class ToolItem:
    tool_call_id: str
    tool_name: str
    title: str
    view: ToolView
    dynamic: bool
    input: Any = None
    output: Any = None
    error_text: str | None = None
    kind: Literal["tool"] = "tool"

    @property
    def is_streaming(self) -> bool:
        return self.view in ("pending", "running")


RenderItem = Union[TextItem, ReasoningItem, ToolItem]


@dataclass(frozen=True)
class MessageView:
    id: str
    role: str
    items: list[RenderItem] = field(default_factory=list)
    processing_time_ms: int | None = None

    @property
    def tool_count(self) -> int:
        return sum(1 for item in self.items if isinstance(item, ToolItem))


@dataclass(frozen=True)
class ErrorBanner:
    message: str
    code: str | None = None
    compatibility_issue: str | None = None
    retryable: bool = True
    dismissible: bool = True


def tool_item(part: ToolInvocationPart | DynamicToolPart) -> ToolItem:
    dynamic = isinstance(part, DynamicToolPart)
    title = part.tool_name if dynamic else TOOL_TITLES.get(part.tool_name, part.tool_name)
    return ToolItem(
        tool_call_id=part.tool_call_id,
        tool_name=part.tool_name,
        title=title,
        view=_TOOL_VIEWS[part.state],
        dynamic=dynamic,
        input=part.input,
        output=part.output,
        error_text=part.error_text,
    )


def render_message(message: ChatMessage) -> MessageView:
    items: list[RenderItem] = []
    for part in message.parts:
        if isinstance(part, ReasoningPart):
            previous = items[-1] if items else None
            if isinstance(previous, ReasoningItem):
                items[-1] = ReasoningItem(
                    text="\n\n".join(text for text in (previous.text, part.text) if text),
                    streaming=previous.streaming or part.state == "streaming",
                    steps=previous.steps + 1,
                )
            else:
                items.append(ReasoningItem(text=part.text, streaming=part.state == "streaming", steps=1))
        elif isinstance(part, TextPart):
            if part.text:
                items.append(TextItem(text=part.text))
        elif isinstance(part, (ToolInvocationPart, DynamicToolPart)):
            items.append(tool_item(part))
        else:
            raise TypeError(f"unsupported part type {type(part).__name__}")
    return MessageView(
        id=message.id,
        role=message.role,
        items=items,
        processing_time_ms=message.processing_time_ms,
    )


def error_banner(store: MessageStore) -> ErrorBanner | None:
    """Turn-level failure banner; tool errors stay inline on their tool items."""

    if store.error is not None:
        return ErrorBanner(
            message=store.error.message,
            code=store.error.code,
            compatibility_issue=store.error.compatibility_issue,
            retryable=store.error.retryable,
        )
    if store.status == "error" and store.stream_error:
        return ErrorBanner(message=store.stream_error)
    return None
