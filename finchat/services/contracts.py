from __future__ import annotations

from collections.abc import AsyncIterator, Mapping, Sequence
from typing import Protocol

import asyncpg

from finchat.api.schemas.artifacts import ArtifactKind, ArtifactRecord
from finchat.api.schemas.auth import Principal
from finchat.api.schemas.sessions import ChatSessionRecord, SessionPatch
from finchat.core.messages import ChatMessage


class DatabaseServiceProtocol(Protocol):
    """Abstraction for async SQL execution against the chat Postgres store."""

    async def connect(self) -> None:
        """Initialize underlying DB resources before request handling begins."""

    async def disconnect(self) -> None:
        """Release open DB resources during application shutdown."""

    async def fetchrow(self, query: str, *args: object) -> asyncpg.Record | None:
        """Execute a query and return a single row, or ``None`` when no row matches."""

    async def fetch(self, query: str, *args: object) -> Sequence[asyncpg.Record]:
        """Execute a query and return all matching rows."""

    async def execute(self, query: str, *args: object) -> str:
        """Execute a write statement and return the backend status string."""


class ChatStoreProtocol(Protocol):
    """Persistence contract for chat sessions and their ordered messages."""

    async def create_session(self, owner_id: str | None, title: str) -> ChatSessionRecord:
        """Create a session owned by ``owner_id`` (``None`` for anonymous self-hosted use)."""

    async def get_session(self, session_id: str, owner_id: str | None) -> ChatSessionRecord | None:
        """Load one session visible to ``owner_id``."""

    async def list_sessions(self, owner_id: str) -> list[ChatSessionRecord]:
        """List the owner's sessions, most recently active first."""

    async def update_session(self, session_id: str, owner_id: str | None, patch: SessionPatch) -> ChatSessionRecord | None:
        """Apply a title and/or activity patch; returns ``None`` when the session is not visible."""

    async def get_messages(self, session_id: str) -> list[ChatMessage]:
        """Return the session transcript in conversation order."""

    async def append_message(self, session_id: str, message: ChatMessage) -> None:
        """Store one message at the end of the transcript unless its id is already stored."""

    async def get_message(self, session_id: str, message_id: str) -> ChatMessage | None:
        """Load one stored message of the session."""

    async def save_assistant_message(self, session_id: str, message: ChatMessage) -> None:
        """Append an assistant message, or replace the parts of the same session's stored assistant row."""

    async def save_artifact(self, artifact: ArtifactRecord) -> None:
        """Store a chart or table payload; an id that is already stored is left untouched."""

    async def get_artifact(self, kind: ArtifactKind, artifact_id: str, owner_id: str | None) -> ArtifactRecord | None:
        """Load an artifact created by ``owner_id``."""


class SessionStoreProtocol(Protocol):
    """Cookie-session lookup used to authenticate browser callers."""

    async def ping(self) -> bool:
        """Check connectivity with the session cache."""

    async def create_session(self, session_id: str, user_id: str, ttl_seconds: int) -> None:
        """Bind ``session_id`` to ``user_id`` for ``ttl_seconds``."""

    async def get_user_id(self, session_id: str) -> str | None:
        """Resolve the user bound to a live session id."""

    async def close(self) -> None:
        """Release the cache connection."""


class AuthServiceProtocol(Protocol):
    """Caller identity resolution for API requests."""

    def principal_from_bearer(self, bearer_token: str | None) -> Principal | None:
        """Validate a bearer JWT and return its principal."""

    async def principal_from_session(self, session_id: str | None) -> Principal | None:
        """Resolve the principal behind a browser session cookie."""


class ChatServiceProtocol(Protocol):
    """Turn orchestration contract used by the chat router."""

    async def start_turn(
        self,
        *,
        messages: list[ChatMessage],
        principal: Principal | None,
        session_id: str | None,
        delegated_credential: str | None,
        headers: Mapping[str, str],
    ) -> tuple[str | None, AsyncIterator[str]]:
        """Prepare a turn and return its session id plus the primed SSE frame stream."""

    async def aclose(self) -> None:
        """Finish background work started by earlier turns."""
