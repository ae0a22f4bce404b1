from __future__ import annotations

import json
from typing import Any, Literal, TypedDict

ChatStreamEventType = Literal[
    "start",
    "start-step",
    "reasoning-start",
    "reasoning-delta",
    "reasoning-end",
    "text-start",
    "text-delta",
    "text-end",
    "tool-input-start",
    "tool-input-delta",
    "tool-input-available",
    "tool-output-available",
    "tool-output-error",
    "finish-step",
    "finish",
    "error",
]
EventKind = Literal["create", "delta", "finalize"]
FinishReason = Literal["stop", "step-limit", "error", "aborted"]


class ChatStreamEvent(TypedDict):
    type: ChatStreamEventType
    data: dict[str, Any]


def start(message_id: str) -> ChatStreamEvent:
    return {"type": "start", "data": {"message_id": message_id}}


def start_step(step: int) -> ChatStreamEvent:
    return {"type": "start-step", "data": {"step": step}}


def finish_step(step: int) -> ChatStreamEvent:
    return {"type": "finish-step", "data": {"step": step}}


def finish(reason: FinishReason, processing_time_ms: int | None = None) -> ChatStreamEvent:
    return {"type": "finish", "data": {"reason": reason, "processing_time_ms": processing_time_ms}}


def error(message: str) -> ChatStreamEvent:
    return {"type": "error", "data": {"message": message}}


def block_start(block: Literal["text", "reasoning"], block_id: str) -> ChatStreamEvent:
    return {"type": f"{block}-start", "data": {"id": block_id, "kind": "create", "state": "streaming"}}  # type: ignore[typeddict-item]


def block_delta(block: Literal["text", "reasoning"], block_id: str, delta: str) -> ChatStreamEvent:
    return {
        "type": f"{block}-delta",  # type: ignore[typeddict-item]
        "data": {"id": block_id, "delta": delta, "kind": "delta", "state": "streaming"},
    }


def block_end(block: Literal["text", "reasoning"], block_id: str) -> ChatStreamEvent:
    return {"type": f"{block}-end", "data": {"id": block_id, "kind": "finalize", "state": "done"}}  # type: ignore[typeddict-item]


def tool_input_start(tool_call_id: str, tool_name: str, *, dynamic: bool = False) -> ChatStreamEvent:
    return {
        "type": "tool-input-start",
        "data": {
            "tool_call_id": tool_call_id,
            "tool_name": tool_name,
            "dynamic": dynamic,
            "kind": "create",
            "state": "input-streaming",
        },
    }


def tool_input_delta(tool_call_id: str, delta: str) -> ChatStreamEvent:
    return {
        "type": "tool-input-delta",
        "data": {"tool_call_id": tool_call_id, "delta": delta, "kind": "delta", "state": "input-streaming"},
    }


def tool_input_available(tool_call_id: str, tool_name: str, tool_input: Any, *, dynamic: bool = False) -> ChatStreamEvent:
    return {
        "type": "tool-input-available",
        "data": {
            "tool_call_id": tool_call_id,
            "tool_name": tool_name,
            "dynamic": dynamic,
            "input": tool_input,
            "kind": "delta",
            "state": "input-available",
        },
    }


def tool_output_available(tool_call_id: str, output: Any) -> ChatStreamEvent:
    return {
        "type": "tool-output-available",
        "data": {"tool_call_id": tool_call_id, "output": output, "kind": "finalize", "state": "output-available"},
    }


def tool_output_error(tool_call_id: str, error_text: str) -> ChatStreamEvent:
    return {
        "type": "tool-output-error",
        "data": {"tool_call_id": tool_call_id, "error_text": error_text, "kind": "finalize", "state": "output-error"},
    }


def encode_sse_event(event: ChatStreamEvent) -> str:
    return f"event: {event['type']}\ndata: {json.dumps(event['data'], default=str)}\n\n"


def decode_sse_frame(frame: str) -> ChatStreamEvent | None:
    """Parse one ``event:``/``data:`` frame; returns ``None`` for comments and keep-alives."""

    event_type: str | None = None
    data_lines: list[str] = []
    for line in frame.splitlines():
        if line.startswith(":"):
            continue
        if line.startswith("event:"):
            event_type = line.removeprefix("event:").strip()
        elif line.startswith("data:"):
            data_lines.append(line.removeprefix("data:").lstrip())
    if event_type is None:
        return None
    data = json.loads("\n".join(data_lines)) if data_lines else {}
    if not isinstance(data, dict):
        raise ValueError(f"event {event_type!r} carries a non-object payload")
    return {"type": event_type, "data": data}  # type: ignore[typeddict-item]
