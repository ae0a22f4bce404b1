"""Chat session controller: send, stop, regenerate and automatic continuation."""

from __future__ import annotations

import asyncio
from contextlib import aclosing
import logging

import httpx

from finchat.client.message_store import MessageStore
from finchat.client.transport import ChatTransport
from finchat.core.errors import ChatRequestError, StreamProtocolError

logger = logging.getLogger(__name__)


class ChatSession:
    def __init__(
        self,
        transport: ChatTransport,
        store: MessageStore | None = None,
        *,
        session_id: str | None = None,
        delegated_credential: str | None = None,
        max_auto_continues: int = 3,
    ) -> None:
        self.transport = transport
        self.store = store or MessageStore()
        self.session_id = session_id
        self.delegated_credential = delegated_credential
        self.max_auto_continues = max_auto_continues
        self._task: asyncio.Task[None] | None = None
        self._stop_requested = False

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def send(self, text: str) -> None:
        self.store.submit_user_message(text)
        await self._run()

    async def regenerate(self) -> None:
        self.store.prepare_regenerate()
        self.store.begin_continuation()
        await self._run()

    async def retry(self) -> None:
        """Re-run the last turn after a banner error."""

        self.store.dismiss_error()
        await self.regenerate()

    def stop(self) -> None:
        if self.is_running:
            self._stop_requested = True
            self._task.cancel()

    async def _run(self) -> None:
        if self.is_running:
            raise RuntimeError("a turn is already running")
        self._stop_requested = False
        self._task = asyncio.create_task(self._drive())
        try:
            await self._task
        finally:
            self._task = None

    async def _drive(self) -> None:
        continues = 0
        try:
            while True:
                await self._stream_once()
                if continues >= self.max_auto_continues or not self.store.should_auto_submit():
                    return
                continues += 1
                logger.debug("auto-continuing after completed tool calls", extra={"continues": continues})
                self.store.begin_continuation()
        except asyncio.CancelledError:
            self.store.abort()
            if not self._stop_requested:
                raise
            logger.info("assistant turn stopped by user", extra={"session_id": self.session_id})

    async def _stream_once(self) -> None:
        events = self.transport.stream_turn(
            messages=self.store.messages,
            session_id=self.session_id,
            delegated_credential=self.delegated_credential,
        )
        try:
            async with aclosing(events):
                async for event in events:
                    self.store.apply(event)
        except ChatRequestError as exc:
            self.store.fail(exc)
            return
        except StreamProtocolError:
            return
        except httpx.HTTPError as exc:
            logger.warning("chat stream transport failed", extra={"error_type": type(exc).__name__})
            self.store.fail(ChatRequestError(str(exc) or "Network error", code="NETWORK_ERROR"))
            return
        finally:
            if self.transport.session_id:
                self.session_id = self.transport.session_id
        self.store.complete()
