"""HTTP transport for the turn endpoint: posts the transcript and decodes the SSE reply."""

from __future__ import annotations

from collections.abc import AsyncIterator
import logging
from typing import Any

import httpx

from finchat.agents.model_resolver import LocalModelPreferences
from finchat.core.errors import ChatRequestError
from finchat.core.messages import ChatMessage
from finchat.core.stream_events import ChatStreamEvent, decode_sse_frame

logger = logging.getLogger(__name__)

_FRAME_SEPARATOR = "\n\n"


def _request_error(response: httpx.Response) -> ChatRequestError:
    try:
        payload: Any = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict) and "error" in payload:
        issue = payload.get("compatibilityIssue")
        return ChatRequestError(
            str(payload.get("message") or response.reason_phrase),
            code=str(payload["error"]),
            status_code=response.status_code,
            compatibility_issue=issue if issue in ("tools", "thinking") else None,
        )
    return ChatRequestError(
        response.text or response.reason_phrase or "Request failed",
        code=f"HTTP_{response.status_code}",
        status_code=response.status_code,
    )


class ChatTransport:
    """Streams one assistant turn from the backend as decoded stream events."""

    def __init__(
        self,
        base_url: str,
        *,
        access_token: str | None = None,
        local_preferences: LocalModelPreferences | None = None,
        timeout_seconds: float = 130.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.local_preferences = local_preferences
        self.session_id: str | None = None
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds, connect=10.0))

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "text/event-stream"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        if self.local_preferences is not None:
            headers.update(self.local_preferences.to_headers())
        return headers

    async def stream_turn(
        self,
        *,
        messages: list[ChatMessage],
        session_id: str | None = None,
        delegated_credential: str | None = None,
    ) -> AsyncIterator[ChatStreamEvent]:
        """Post the transcript and yield events as frames arrive.

        Raises :class:`ChatRequestError` when the backend rejects the turn before
        streaming starts.
        """

        body: dict[str, Any] = {"messages": [message.model_dump(mode="json") for message in messages]}
        if session_id:
            body["sessionId"] = session_id
        if delegated_credential:
            body["delegatedCredential"] = delegated_credential

        async with self._client.stream(
            "POST",
            f"{self.base_url}/api/chat",
            json=body,
            headers=self._headers(),
        ) as response:
            if response.status_code >= 400:
                await response.aread()
                error = _request_error(response)
                logger.warning(
                    "chat request rejected",
                    extra={"status_code": response.status_code, "error_code": error.code},
                )
                raise error

            self.session_id = response.headers.get("x-session-id") or session_id
            buffer = ""
            async for text in response.aiter_text():
                buffer = (buffer + text).replace("\r\n", "\n")
                while _FRAME_SEPARATOR in buffer:
                    frame, buffer = buffer.split(_FRAME_SEPARATOR, 1)
                    event = decode_sse_frame(frame)
                    if event is not None:
                        yield event
            if buffer.strip():
                event = decode_sse_frame(buffer)
                if event is not None:
                    yield event

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
