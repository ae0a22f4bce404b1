from __future__ import annotations

import asyncio
from typing import AsyncIterator, Protocol

from finchat.agents.tools.contracts import ToolContext
from finchat.core.messages import ChatMessage
from finchat.core.stream_events import ChatStreamEvent


class ChatAgent(Protocol):
    """Contract for chat agents that stream typed chat events."""

    def astream(
        self,
        messages: list[ChatMessage],
        *,
        context: ToolContext,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[ChatStreamEvent]:
        """Stream step, part and final ``finish`` events for one turn over ``messages``."""
