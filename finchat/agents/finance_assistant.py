from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from enum import Enum
import itertools
import json
import logging
from typing import Any
import uuid

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage, ToolMessage

from finchat.agents.base import ChatAgent
from finchat.agents.tools.contracts import ToolContext, ToolOutcome
from finchat.agents.tools.registry import ToolRegistry
from finchat.agents.transcript import extract_reasoning_deltas, extract_text_deltas, to_langchain_messages
from finchat.core.errors import CompatibilityIssue, ModelCompatibilityError
from finchat.core.messages import ChatMessage
from finchat.core import stream_events
from finchat.core.stream_events import ChatStreamEvent, FinishReason

logger = logging.getLogger(__name__)

_COMPATIBILITY_MARKERS: tuple[tuple[str, CompatibilityIssue], ...] = (
    ("does not support tools", "tools"),
    ("does not support tool", "tools"),
    ("tools are not supported", "tools"),
    ("does not support thinking", "thinking"),
    ("thinking is not supported", "thinking"),
)


class TurnState(str, Enum):
    IDLE = "idle"
    STEPPING = "stepping"
    FINALIZING = "finalizing"
    DONE = "done"


def classify_model_error(exc: Exception) -> ModelCompatibilityError | None:
    """Recognize provider rejections caused by missing tool or thinking support."""

    message = str(exc)
    lowered = message.lower()
    for marker, issue in _COMPATIBILITY_MARKERS:
        if marker in lowered:
            if issue == "tools":
                text = "The selected model does not support tool calling, which this assistant requires."
            else:
                text = "The selected model does not support thinking mode."
            return ModelCompatibilityError(f"{text} ({message})", compatibility_issue=issue)
    return None


@dataclass
class PendingToolCall:
    tool_call_id: str
    tool_name: str = ""
    raw_args: str = ""
    announced: bool = False
    args: dict[str, Any] | None = None
    invalid_reason: str | None = None


def _as_chunk(message: BaseMessage) -> AIMessageChunk:
    if isinstance(message, AIMessageChunk):
        return message
    tool_calls = getattr(message, "tool_calls", None) or []
    return AIMessageChunk(
        content=message.content,
        additional_kwargs=dict(message.additional_kwargs),
        id=message.id,
        tool_call_chunks=[
            {
                "name": call["name"],
                "args": json.dumps(call.get("args") or {}),
                "id": call.get("id"),
                "index": index,
                "type": "tool_call_chunk",
            }
            for index, call in enumerate(tool_calls)
        ],
    )


class StepStream:
    """Turns one step's model chunks into ordered part events and the aggregated AI message."""

    def __init__(self, step: int, block_ids: itertools.count, is_dynamic: Callable[[str], bool]) -> None:
        self.step = step
        self.started = False
        self._block_ids = block_ids
        self._is_dynamic = is_dynamic
        self._aggregate: AIMessageChunk | None = None
        self._open_block: tuple[str, str] | None = None
        self._calls: dict[Any, PendingToolCall] = {}

    def consume(self, message: BaseMessage) -> list[ChatStreamEvent]:
        chunk = _as_chunk(message)
        self._aggregate = chunk if self._aggregate is None else self._aggregate + chunk

        events: list[ChatStreamEvent] = []
        if not self.started:
            self.started = True
            events.append(stream_events.start_step(self.step))

        for delta in extract_reasoning_deltas(chunk.content, chunk.additional_kwargs):
            block_id = self._open("reasoning", events)
            events.append(stream_events.block_delta("reasoning", block_id, delta))
        for delta in extract_text_deltas(chunk.content):
            block_id = self._open("text", events)
            events.append(stream_events.block_delta("text", block_id, delta))
        for tool_chunk in chunk.tool_call_chunks:
            self._consume_tool_chunk(tool_chunk, events)
        return events

    def _open(self, block: str, events: list[ChatStreamEvent]) -> str:
        if self._open_block is not None and self._open_block[0] == block:
            return self._open_block[1]
        events.extend(self.close_blocks())
        block_id = f"{block}-{next(self._block_ids)}"
        self._open_block = (block, block_id)
        events.append(stream_events.block_start(block, block_id))  # type: ignore[arg-type]
        return block_id

    def close_blocks(self) -> list[ChatStreamEvent]:
        if self._open_block is None:
            return []
        block, block_id = self._open_block
        self._open_block = None
        return [stream_events.block_end(block, block_id)]  # type: ignore[arg-type]

    def _announce(self, call: PendingToolCall, events: list[ChatStreamEvent]) -> None:
        call.announced = True
        events.append(
            stream_events.tool_input_start(call.tool_call_id, call.tool_name, dynamic=self._is_dynamic(call.tool_name))
        )
        if call.raw_args:
            events.append(stream_events.tool_input_delta(call.tool_call_id, call.raw_args))

    def _consume_tool_chunk(self, tool_chunk: dict[str, Any], events: list[ChatStreamEvent]) -> None:
        index = tool_chunk.get("index")
        key = index if index is not None else len(self._calls)
        call = self._calls.get(key)
        if call is None:
            events.extend(self.close_blocks())
            call = PendingToolCall(tool_call_id=tool_chunk.get("id") or f"call_{uuid.uuid4().hex[:24]}")
            self._calls[key] = call

        name = tool_chunk.get("name")
        if name and not call.announced:
            call.tool_name += name
        args = tool_chunk.get("args") or ""
        if args:
            call.raw_args += args

        if not call.announced and call.tool_name:
            self._announce(call, events)
        elif call.announced and args:
            events.append(stream_events.tool_input_delta(call.tool_call_id, args))

    def finalize(self) -> tuple[AIMessage, list[PendingToolCall], list[ChatStreamEvent]]:
        """Resolve buffered tool calls and return the AI message to append to the transcript."""

        events = self.close_blocks()
        if not self.started:
            self.started = True
            events.insert(0, stream_events.start_step(self.step))

        calls = list(self._calls.values())
        for call in calls:
            if not call.tool_name:
                call.tool_name = "unknown"
            if not call.announced:
                self._announce(call, events)
            try:
                parsed = json.loads(call.raw_args) if call.raw_args.strip() else {}
            except json.JSONDecodeError as exc:
                call.invalid_reason = f"Tool arguments for {call.tool_name} are not valid JSON: {exc.msg}. Retry with a complete JSON object."
                continue
            if not isinstance(parsed, dict):
                call.invalid_reason = f"Tool arguments for {call.tool_name} must be a JSON object."
                continue
            call.args = parsed

        aggregate = self._aggregate
        message = AIMessage(
            content=aggregate.content if aggregate is not None else "",
            additional_kwargs=dict(aggregate.additional_kwargs) if aggregate is not None else {},
            id=aggregate.id if aggregate is not None else None,
            tool_calls=[
                {"id": call.tool_call_id, "name": call.tool_name, "args": call.args or {}, "type": "tool_call"}
                for call in calls
            ],
        )
        return message, calls, events


def _existing_block_count(messages: list[ChatMessage]) -> int:
    if messages and messages[-1].role == "assistant":
        return len(messages[-1].parts)
    return 0


class FinanceAssistantAgent(ChatAgent):
    """Step-bounded tool-calling loop over a LangChain chat model."""

    def __init__(
        self,
        *,
        model: BaseChatModel,
        registry: ToolRegistry,
        system_prompt: str,
        max_steps: int = 10,
        max_parallel_tool_calls: int = 5,
        bind_tools: bool = True,
    ) -> None:
        if max_steps < 1:
            raise ValueError("max_steps must be at least 1")
        self._registry = registry
        self._system_prompt = system_prompt
        self._max_steps = max_steps
        self._max_parallel_tool_calls = max(1, max_parallel_tool_calls)
        self._runnable: Any = model.bind_tools(registry.tool_definitions()) if bind_tools and len(registry) else model
        self.state = TurnState.IDLE

    def _is_dynamic(self, tool_name: str) -> bool:
        spec = self._registry.get(tool_name)
        return spec is None or spec.dynamic

    async def astream(
        self,
        messages: list[ChatMessage],
        *,
        context: ToolContext,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[ChatStreamEvent]:
        cancel_event = cancel_event or asyncio.Event()
        transcript = to_langchain_messages(messages, self._system_prompt)
        block_ids = itertools.count(_existing_block_count(messages) + 1)
        finish_reason: FinishReason = "step-limit"
        self.state = TurnState.STEPPING

        for step in range(1, self._max_steps + 1):
            if cancel_event.is_set():
                finish_reason = "aborted"
                break

            logger.debug("agent step started", extra={"step": step, "session_id": context.session_id})
            step_stream = StepStream(step, block_ids, self._is_dynamic)
            try:
                async for chunk in self._runnable.astream(transcript):
                    for event in step_stream.consume(chunk):
                        yield event
                    if cancel_event.is_set():
                        break
            except Exception as exc:
                compatibility_error = classify_model_error(exc)
                if compatibility_error is not None:
                    raise compatibility_error from exc
                raise

            ai_message, calls, closing_events = step_stream.finalize()
            for event in closing_events:
                yield event
            transcript.append(ai_message)

            if cancel_event.is_set():
                yield stream_events.finish_step(step)
                finish_reason = "aborted"
                break
            if not calls:
                yield stream_events.finish_step(step)
                finish_reason = "stop"
                break

            for call in calls:
                yield stream_events.tool_input_available(
                    call.tool_call_id,
                    call.tool_name,
                    call.args if call.args is not None else call.raw_args,
                    dynamic=self._is_dynamic(call.tool_name),
                )
            outcomes: dict[str, ToolOutcome] = {}
            async for event in self._execute_tool_calls(calls, context, cancel_event, outcomes):
                yield event
            for call in calls:
                outcome = outcomes.get(call.tool_call_id)
                if outcome is not None:
                    transcript.append(_tool_message(call, outcome))
            yield stream_events.finish_step(step)

            if cancel_event.is_set():
                finish_reason = "aborted"
                break

        self.state = TurnState.FINALIZING
        logger.info(
            "agent turn finished",
            extra={"finish_reason": finish_reason, "session_id": context.session_id},
        )
        yield stream_events.finish(finish_reason)
        self.state = TurnState.DONE

    async def _execute_tool_calls(
        self,
        calls: list[PendingToolCall],
        context: ToolContext,
        cancel_event: asyncio.Event,
        outcomes: dict[str, ToolOutcome],
    ) -> AsyncIterator[ChatStreamEvent]:
        semaphore = asyncio.Semaphore(self._max_parallel_tool_calls)

        async def _run(call: PendingToolCall) -> tuple[PendingToolCall, ToolOutcome | None]:
            async with semaphore:
                if cancel_event.is_set():
                    return call, None
                if call.invalid_reason is not None:
                    return call, ToolOutcome(error=call.invalid_reason, error_kind="malformed_input")
                logger.debug(
                    "executing tool call",
                    extra={"tool_name": call.tool_name, "tool_call_id": call.tool_call_id},
                )
                return call, await self._registry.execute(call.tool_name, call.args, context)

        tasks = [asyncio.create_task(_run(call)) for call in calls]
        try:
            for next_done in asyncio.as_completed(tasks):
                call, outcome = await next_done
                if outcome is None:
                    continue
                outcomes[call.tool_call_id] = outcome
                if outcome.ok:
                    yield stream_events.tool_output_available(call.tool_call_id, outcome.output)
                else:
                    yield stream_events.tool_output_error(call.tool_call_id, outcome.error or "Tool failed")
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()


def _tool_message(call: PendingToolCall, outcome: ToolOutcome) -> ToolMessage:
    if outcome.ok:
        return ToolMessage(
            content=json.dumps(outcome.output, default=str),
            tool_call_id=call.tool_call_id,
            name=call.tool_name,
        )
    return ToolMessage(
        content=outcome.error or "Tool failed",
        tool_call_id=call.tool_call_id,
        name=call.tool_name,
        status="error",
    )
