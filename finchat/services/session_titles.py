"""Session titles written by the chat model from the opening user message."""

from __future__ import annotations

import asyncio
import logging

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage

from finchat.agents.transcript import extract_text_deltas
from finchat.api.schemas.sessions import SessionPatch
from finchat.core.messages import ChatMessage
from finchat.services.contracts import ChatStoreProtocol

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 50
TITLE_PROMPT = (
    "Generate a concise title (max 50 characters) for a chat conversation that starts with this message.\n"
    "The title should capture the main topic or question.\n"
    "If it's about a specific company or stock ticker, include it.\n"
    "Return ONLY the title, no quotes, no explanation.\n\n"
    'User message: "{message}"'
)


def clean_title(text: str) -> str:
    title = " ".join(text.split()).strip("\"'` ")
    return title[:TITLE_MAX_CHARS].rstrip()


def opening_user_text(messages: list[ChatMessage]) -> str | None:
    for message in messages:
        if message.role == "user":
            text = message.text().strip()
            if text:
                return text
    return None


class SessionTitleWriter:
    """Replaces the truncated title of a new session with a model-written one."""

    def __init__(self, store: ChatStoreProtocol, *, timeout_seconds: float = 10.0) -> None:
        self._store = store
        self._timeout_seconds = timeout_seconds

    async def generate(self, model: BaseChatModel, opening_message: str) -> str | None:
        response = await asyncio.wait_for(
            model.ainvoke([HumanMessage(content=TITLE_PROMPT.format(message=opening_message))]),
            timeout=self._timeout_seconds,
        )
        return clean_title("".join(extract_text_deltas(response.content))) or None

    async def write_title(
        self,
        session_id: str,
        owner_id: str | None,
        model: BaseChatModel,
        messages: list[ChatMessage],
    ) -> str | None:
        """Store a generated title; on any model failure the derived title stays in place."""

        opening_message = opening_user_text(messages)
        if opening_message is None:
            return None
        try:
            title = await self.generate(model, opening_message)
        except Exception:
            logger.warning("session title generation failed; keeping derived title", exc_info=True, extra={"session_id": session_id})
            return None
        if title is None:
            return None
        updated = await self._store.update_session(session_id, owner_id, SessionPatch(title=title))
        if updated is None:
            return None
        logger.info("generated session title", extra={"session_id": session_id})
        return title
