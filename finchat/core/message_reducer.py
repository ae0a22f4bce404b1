"""Pure reducer that rebuilds message state from an ordered stream event log.

The server uses it to assemble the finalized assistant message handed to the
persistence hook, and the client uses it behind the message store, so both
sides agree on what a given event log means.
"""

from __future__ import annotations

from typing import Any

from langchain_core.utils.json import parse_partial_json

from finchat.core.errors import StreamProtocolError
from finchat.core.messages import (
    TOOL_STATE_RANK,
    ChatMessage,
    DynamicToolPart,
    Part,
    ReasoningPart,
    TextPart,
    ToolInvocationPart,
    ToolPart,
)
from finchat.core.stream_events import ChatStreamEvent

# Event types that carry no part mutation.
_PASSIVE_EVENTS = frozenset({"start-step", "finish-step", "error"})


def apply_stream_event(
    messages: list[ChatMessage],
    event: ChatStreamEvent,
    *,
    known_tools: frozenset[str] | None = None,
) -> list[ChatMessage]:
    """Return a new message list with ``event`` applied; the input list is never mutated.

    ``known_tools`` is the set of tool names rendered with dedicated views. Tool
    parts for any other name, or flagged ``dynamic`` by the server, become
    :class:`DynamicToolPart`. ``None`` means every tool is known.
    """

    event_type = event["type"]
    data = event.get("data") or {}

    if event_type in _PASSIVE_EVENTS:
        return messages

    if event_type == "start":
        message_id = str(data.get("message_id") or "")
        if not message_id:
            raise StreamProtocolError("start event is missing message_id")
        if messages and messages[-1].id == message_id:
            if messages[-1].role != "assistant":
                raise StreamProtocolError(f"message {message_id} is not an assistant message")
            return messages
        return [*messages, ChatMessage(id=message_id, role="assistant")]

    if not messages or messages[-1].role != "assistant":
        raise StreamProtocolError(f"{event_type} event received before start")

    target = messages[-1]
    if event_type == "finish":
        processing_time_ms = data.get("processing_time_ms")
        if processing_time_ms is None:
            return messages
        return [*messages[:-1], target.model_copy(update={"processing_time_ms": int(processing_time_ms)})]

    parts = list(target.parts)
    if event_type in ("text-start", "reasoning-start"):
        parts.append(_new_block(event_type, data))
    elif event_type in ("text-delta", "reasoning-delta", "text-end", "reasoning-end"):
        index = _find_block(parts, event_type, data)
        parts[index] = _update_block(parts[index], event_type, data)
    elif event_type.startswith("tool-"):
        _apply_tool_event(parts, event_type, data, known_tools)
    else:
        raise StreamProtocolError(f"unsupported event type {event_type!r}")

    return [*messages[:-1], target.model_copy(update={"parts": parts})]


def replay_stream_events(
    events: list[ChatStreamEvent],
    messages: list[ChatMessage] | None = None,
    *,
    known_tools: frozenset[str] | None = None,
) -> list[ChatMessage]:
    state = list(messages or [])
    for event in events:
        state = apply_stream_event(state, event, known_tools=known_tools)
    return state


def _new_block(event_type: str, data: dict[str, Any]) -> Part:
    block_id = str(data.get("id") or "")
    if not block_id:
        raise StreamProtocolError(f"{event_type} event is missing id")
    if event_type == "text-start":
        return TextPart(id=block_id)
    return ReasoningPart(id=block_id, state="streaming")


def _find_block(parts: list[Part], event_type: str, data: dict[str, Any]) -> int:
    block_type = TextPart if event_type.startswith("text-") else ReasoningPart
    block_id = data.get("id")
    for index in range(len(parts) - 1, -1, -1):
        part = parts[index]
        if isinstance(part, block_type) and part.id == block_id:
            return index
    raise StreamProtocolError(f"{event_type} targets unknown block {block_id!r}")


def _update_block(part: Part, event_type: str, data: dict[str, Any]) -> Part:
    if isinstance(part, ReasoningPart) and part.state == "done":
        raise StreamProtocolError(f"{event_type} targets finished reasoning block {part.id!r}")
    if event_type.endswith("-delta"):
        return part.model_copy(update={"text": part.text + str(data.get("delta") or "")})
    if isinstance(part, ReasoningPart):
        return part.model_copy(update={"state": "done"})
    return part


def _find_tool_part(parts: list[Part], tool_call_id: str) -> int | None:
    for index, part in enumerate(parts):
        if isinstance(part, (ToolInvocationPart, DynamicToolPart)) and part.tool_call_id == tool_call_id:
            return index
    return None


def _tool_part_class(tool_name: str, dynamic: bool, known_tools: frozenset[str] | None) -> type[ToolPart]:
    if dynamic or (known_tools is not None and tool_name not in known_tools):
        return DynamicToolPart
    return ToolInvocationPart


def _advance(part: ToolPart, **changes: Any) -> ToolPart:
    new_state = changes["state"]
    if TOOL_STATE_RANK[new_state] <= TOOL_STATE_RANK[part.state]:
        raise StreamProtocolError(
            f"tool call {part.tool_call_id} cannot move from {part.state} to {new_state}"
        )
    return type(part).model_validate({**part.model_dump(), **changes})


def _apply_tool_event(
    parts: list[Part],
    event_type: str,
    data: dict[str, Any],
    known_tools: frozenset[str] | None,
) -> None:
    tool_call_id = str(data.get("tool_call_id") or "")
    if not tool_call_id:
        raise StreamProtocolError(f"{event_type} event is missing tool_call_id")
    index = _find_tool_part(parts, tool_call_id)

    if event_type == "tool-input-start":
        if index is not None:
            raise StreamProtocolError(f"tool call {tool_call_id} was already created")
        part_class = _tool_part_class(str(data.get("tool_name") or ""), bool(data.get("dynamic")), known_tools)
        parts.append(
            part_class(
                tool_call_id=tool_call_id,
                tool_name=str(data.get("tool_name") or ""),
                state="input-streaming",
            )
        )
        return

    if event_type == "tool-input-delta":
        if index is None:
            raise StreamProtocolError(f"tool-input-delta for unknown tool call {tool_call_id}")
        part = parts[index]
        if part.state != "input-streaming":
            raise StreamProtocolError(f"tool call {tool_call_id} is no longer streaming input")
        raw_input = part._raw_input + str(data.get("delta") or "")
        updated = part.model_copy(update={"input": parse_partial_json(raw_input) if raw_input.strip() else None})
        updated._raw_input = raw_input
        parts[index] = updated
        return

    if event_type == "tool-input-available":
        if index is None:
            part_class = _tool_part_class(str(data.get("tool_name") or ""), bool(data.get("dynamic")), known_tools)
            parts.append(
                part_class(
                    tool_call_id=tool_call_id,
                    tool_name=str(data.get("tool_name") or ""),
                    state="input-available",
                    input=data.get("input"),
                )
            )
            return
        parts[index] = _advance(parts[index], state="input-available", input=data.get("input"))
        return

    if index is None:
        raise StreamProtocolError(f"{event_type} for unknown tool call {tool_call_id}")
    part = parts[index]
    if part.state != "input-available":
        raise StreamProtocolError(f"tool call {tool_call_id} has no complete input yet (state {part.state})")

    if event_type == "tool-output-available":
        output = data.get("output")
        parts[index] = _advance(part, state="output-available", output={} if output is None else output)
    elif event_type == "tool-output-error":
        parts[index] = _advance(part, state="output-error", error_text=str(data.get("error_text") or "Tool failed"))
    else:
        raise StreamProtocolError(f"unsupported event type {event_type!r}")
