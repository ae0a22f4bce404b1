"""Conversion between stored chat messages and LangChain message objects."""

from __future__ import annotations

import json
from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

from finchat.core.messages import ChatMessage, ReasoningPart, TextPart, ToolPart


def tool_result_content(part: ToolPart) -> str:
    if part.state == "output-error":
        return part.error_text or "Tool failed"
    return json.dumps(part.output, default=str)


def _flush_assistant_segment(
    text: list[str],
    tool_parts: list[ToolPart],
    output: list[BaseMessage],
) -> None:
    if not text and not tool_parts:
        return
    output.append(
        AIMessage(
            content="".join(text),
            tool_calls=[
                {
                    "id": part.tool_call_id,
                    "name": part.tool_name,
                    "args": part.input if isinstance(part.input, dict) else {},
                    "type": "tool_call",
                }
                for part in tool_parts
            ],
        )
    )
    for part in tool_parts:
        output.append(
            ToolMessage(
                content=tool_result_content(part),
                tool_call_id=part.tool_call_id,
                name=part.tool_name,
                status="error" if part.state == "output-error" else "success",
            )
        )


def assistant_to_langchain(message: ChatMessage) -> list[BaseMessage]:
    """Split an assistant message into model steps: text, then its tool calls and their results."""

    output: list[BaseMessage] = []
    text: list[str] = []
    tool_parts: list[ToolPart] = []
    for part in message.parts:
        if isinstance(part, ReasoningPart):
            continue
        if isinstance(part, TextPart):
            if tool_parts:
                _flush_assistant_segment(text, tool_parts, output)
                text, tool_parts = [], []
            text.append(part.text)
            continue
        # Calls without a result cannot be replayed to the model.
        if part.is_terminal:
            tool_parts.append(part)
    _flush_assistant_segment(text, tool_parts, output)
    return output


def to_langchain_messages(messages: list[ChatMessage], system_prompt: str | None = None) -> list[BaseMessage]:
    converted: list[BaseMessage] = [SystemMessage(content=system_prompt)] if system_prompt else []
    for message in messages:
        if message.role == "assistant":
            converted.extend(assistant_to_langchain(message))
        elif message.role == "system":
            converted.append(SystemMessage(content=message.text()))
        else:
            converted.append(HumanMessage(content=message.text()))
    return converted


def extract_text_deltas(content: Any) -> list[str]:
    if isinstance(content, str):
        return [content] if content else []
    if not isinstance(content, list):
        return []

    parsed: list[str] = []
    for item in content:
        if isinstance(item, str):
            if item:
                parsed.append(item)
            continue
        if not isinstance(item, dict) or item.get("type") != "text":
            continue
        text = item.get("text", "")
        if text:
            parsed.append(text)
    return parsed


def extract_reasoning_deltas(content: Any, additional_kwargs: dict[str, Any]) -> list[str]:
    """Reasoning text from content blocks, Responses API summaries or ``reasoning_content``."""

    parsed: list[str] = []
    if isinstance(content, list):
        for item in content:
            if not isinstance(item, dict) or item.get("type") not in ("reasoning", "thinking"):
                continue
            if item.get("reasoning"):
                parsed.append(str(item["reasoning"]))
            if item.get("thinking"):
                parsed.append(str(item["thinking"]))
            for summary in item.get("summary") or []:
                if isinstance(summary, dict) and summary.get("text"):
                    parsed.append(str(summary["text"]))

    reasoning_content = additional_kwargs.get("reasoning_content")
    if isinstance(reasoning_content, str) and reasoning_content:
        parsed.append(reasoning_content)

    reasoning = additional_kwargs.get("reasoning")
    if isinstance(reasoning, dict):
        for summary in reasoning.get("summary") or []:
            if isinstance(summary, dict) and summary.get("text"):
                parsed.append(str(summary["text"]))
    return parsed
