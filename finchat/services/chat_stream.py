"""Stream encoder: frames agent events as SSE and fires the completion hook."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
import logging
import time

from finchat.core import stream_events
from finchat.core.errors import ChatTurnError, StreamProtocolError
from finchat.core.message_reducer import apply_stream_event
from finchat.core.messages import ChatMessage
from finchat.core.stream_events import ChatStreamEvent, FinishReason, encode_sse_event

logger = logging.getLogger(__name__)

ASSISTANT_STREAM_ERROR_FALLBACK = (
    "I ran into a temporary issue while generating a response. Please try again in a moment."
)
TURN_TIMEOUT_MESSAGE = "The response took too long and was stopped."


@dataclass(frozen=True)
class TurnResult:
    """Finalized transcript handed to the completion hook."""

    messages: list[ChatMessage]
    assistant_message_id: str
    finish_reason: FinishReason
    processing_time_ms: int
    aborted: bool = False
    # Parts the submitted transcript already held for a continued assistant message.
    continued_part_count: int = 0

    @property
    def assistant_message(self) -> ChatMessage | None:
        for message in reversed(self.messages):
            if message.id == self.assistant_message_id:
                return message
        return None


OnFinish = Callable[[TurnResult], Awaitable[None]]


class ChatStreamEncoder:
    """Applies each agent event to the running transcript and flushes it as one SSE frame."""

    def __init__(self, *, turn_timeout_seconds: float = 120.0, known_tools: frozenset[str] | None = None) -> None:
        self._turn_timeout_seconds = turn_timeout_seconds
        self._known_tools = known_tools

    async def encode(
        self,
        *,
        messages: list[ChatMessage],
        assistant_message_id: str,
        events: AsyncIterator[ChatStreamEvent],
        on_finish: OnFinish | None = None,
        cancel_event: asyncio.Event | None = None,
        started_at: float | None = None,
    ) -> AsyncIterator[str]:
        started_at = time.perf_counter() if started_at is None else started_at
        deadline = started_at + self._turn_timeout_seconds
        state = list(messages)
        continued_part_count = next((len(message.parts) for message in messages if message.id == assistant_message_id), 0)
        finish_reason: FinishReason = "stop"
        result: TurnResult | None = None
        hook_done = False

        def _apply(event: ChatStreamEvent) -> str:
            nonlocal state
            state = apply_stream_event(state, event, known_tools=self._known_tools)
            return encode_sse_event(event)

        def _elapsed_ms() -> int:
            return int((time.perf_counter() - started_at) * 1000)

        def _result(aborted: bool, processing_time_ms: int | None = None) -> TurnResult:
            return TurnResult(
                messages=state,
                assistant_message_id=assistant_message_id,
                finish_reason=finish_reason,
                processing_time_ms=_elapsed_ms() if processing_time_ms is None else processing_time_ms,
                aborted=aborted,
                continued_part_count=continued_part_count,
            )

        try:
            yield _apply(stream_events.start(assistant_message_id))
            try:
                while True:
                    remaining = deadline - time.perf_counter()
                    if remaining <= 0:
                        raise TimeoutError
                    try:
                        event = await asyncio.wait_for(anext(events), timeout=remaining)
                    except StopAsyncIteration:
                        break
                    if event["type"] == "finish":
                        finish_reason = event["data"].get("reason") or "stop"
                        break
                    yield _apply(event)
            except TimeoutError:
                logger.warning("turn exceeded wall-clock limit", extra={"timeout_seconds": self._turn_timeout_seconds})
                if cancel_event is not None:
                    cancel_event.set()
                finish_reason = "error"
                yield _apply(stream_events.error(TURN_TIMEOUT_MESSAGE))
            except ChatTurnError as exc:
                logger.warning("assistant turn failed", extra={"error_code": exc.code})
                finish_reason = "error"
                yield _apply(stream_events.error(exc.message))
            except StreamProtocolError:
                logger.exception("agent emitted an out-of-order event")
                finish_reason = "error"
                yield _apply(stream_events.error(ASSISTANT_STREAM_ERROR_FALLBACK))
            except Exception:
                logger.exception("assistant stream failed; sending fallback message")
                finish_reason = "error"
                yield _apply(stream_events.error(ASSISTANT_STREAM_ERROR_FALLBACK))

            processing_time_ms = _elapsed_ms()
            frame = _apply(stream_events.finish(finish_reason, processing_time_ms))
            result = _result(aborted=finish_reason == "aborted", processing_time_ms=processing_time_ms)
            yield frame
            hook_done = True
            await self._run_on_finish(on_finish, result)
        except (asyncio.CancelledError, GeneratorExit):
            if cancel_event is not None:
                cancel_event.set()
            if not hook_done:
                hook_done = True
                if result is None:
                    finish_reason = "aborted"
                    result = _result(aborted=True)
                    logger.info("client aborted assistant stream", extra={"message_id": assistant_message_id})
                await asyncio.shield(self._run_on_finish(on_finish, result))
            raise
        finally:
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _run_on_finish(self, on_finish: OnFinish | None, result: TurnResult) -> None:
        if on_finish is None:
            return
        try:
            await on_finish(result)
        except Exception:
            logger.exception(
                "completion hook failed",
                extra={"message_id": result.assistant_message_id, "finish_reason": result.finish_reason},
            )
