from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, PrivateAttr, model_validator

ToolState = Literal["input-streaming", "input-available", "output-available", "output-error"]
ReasoningState = Literal["streaming", "done"]
MessageRole = Literal["user", "assistant", "system"]

TOOL_STATE_RANK: dict[str, int] = {
    "input-streaming": 0,
    "input-available": 1,
    "output-available": 2,
    "output-error": 2,
}
TERMINAL_TOOL_STATES = frozenset({"output-available", "output-error"})


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str = ""
    id: str | None = Field(default=None, description="Stream block id the text was delivered under")


class ReasoningPart(BaseModel):
    type: Literal["reasoning"] = "reasoning"
    text: str = ""
    state: ReasoningState = "streaming"
    id: str | None = Field(default=None, description="Stream block id the reasoning was delivered under")


class _ToolPartBase(BaseModel):
    tool_call_id: str = Field(..., min_length=1)
    tool_name: str = Field(..., min_length=1)
    state: ToolState
    input: Any = None
    output: Any = None
    error_text: str | None = None

    _raw_input: str = PrivateAttr(default="")

    @model_validator(mode="after")
    def _check_state_payload(self) -> _ToolPartBase:
        if (self.output is not None) != (self.state == "output-available"):
            raise ValueError("output must be present exactly when state is output-available")
        if (self.error_text is not None) != (self.state == "output-error"):
            raise ValueError("error_text must be present exactly when state is output-error")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_TOOL_STATES


class ToolInvocationPart(_ToolPartBase):
    """Invocation of a tool the client knows about at build time."""

    type: Literal["tool"] = "tool"


class DynamicToolPart(_ToolPartBase):
    """Invocation of a tool registered at runtime; rendered through the generic fallback."""

    type: Literal["dynamic-tool"] = "dynamic-tool"


ToolPart = Union[ToolInvocationPart, DynamicToolPart]
Part = Annotated[
    Union[TextPart, ReasoningPart, ToolInvocationPart, DynamicToolPart],
    Field(discriminator="type"),
]


class ChatMessage(BaseModel):
    id: str = Field(..., min_length=1)
    role: MessageRole
    parts: list[Part] = Field(default_factory=list)
    processing_time_ms: int | None = Field(default=None, ge=0)

    def text(self) -> str:
        return "".join(part.text for part in self.parts if isinstance(part, TextPart))

    def tool_parts(self) -> list[ToolPart]:
        return [part for part in self.parts if isinstance(part, (ToolInvocationPart, DynamicToolPart))]


def user_message(message_id: str, text: str) -> ChatMessage:
    return ChatMessage(id=message_id, role="user", parts=[TextPart(text=text)])
