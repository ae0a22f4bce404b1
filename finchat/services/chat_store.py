from __future__ import annotations

from datetime import UTC, datetime
import json
import logging
from typing import Any
import uuid

import asyncpg
from pydantic import TypeAdapter

from finchat.api.schemas.artifacts import ArtifactKind, ArtifactRecord
from finchat.api.schemas.sessions import ChatSessionRecord, SessionPatch
from finchat.core.messages import ChatMessage, Part
from finchat.services.contracts import DatabaseServiceProtocol

logger = logging.getLogger(__name__)

_PARTS_ADAPTER = TypeAdapter(list[Part])

CHAT_STORE_SCHEMA = """
CREATE TABLE IF NOT EXISTS chat_sessions (
  id uuid PRIMARY KEY,
  owner_id text,
  title text NOT NULL,
  created_at timestamptz NOT NULL DEFAULT NOW(),
  updated_at timestamptz NOT NULL DEFAULT NOW(),
  last_message_at timestamptz
);
CREATE INDEX IF NOT EXISTS chat_sessions_owner_idx ON chat_sessions (owner_id, last_message_at DESC);
CREATE TABLE IF NOT EXISTS chat_messages (
  id uuid PRIMARY KEY,
  session_id uuid NOT NULL REFERENCES chat_sessions (id) ON DELETE CASCADE,
  position integer NOT NULL,
  role text NOT NULL,
  parts jsonb NOT NULL,
  processing_time_ms integer,
  created_at timestamptz NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS chat_messages_session_idx ON chat_messages (session_id, position);
CREATE TABLE IF NOT EXISTS chat_artifacts (
  id uuid PRIMARY KEY,
  kind text NOT NULL,
  owner_id text,
  session_id uuid REFERENCES chat_sessions (id) ON DELETE CASCADE,
  payload jsonb NOT NULL,
  created_at timestamptz NOT NULL DEFAULT NOW()
);
"""

_SESSION_COLUMNS = "id::text AS id, owner_id, title, created_at, updated_at, last_message_at"


def _session_from_row(row: asyncpg.Record | dict[str, Any]) -> ChatSessionRecord:
    return ChatSessionRecord(
        id=row["id"],
        owner_id=row["owner_id"],
        title=row["title"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        last_message_at=row["last_message_at"],
    )


def _message_from_row(row: asyncpg.Record | dict[str, Any]) -> ChatMessage:
    raw_parts = row["parts"]
    parts = json.loads(raw_parts) if isinstance(raw_parts, str) else raw_parts
    return ChatMessage(
        id=row["id"],
        role=row["role"],
        parts=_PARTS_ADAPTER.validate_python(parts),
        processing_time_ms=row["processing_time_ms"],
    )


def _dump_parts(message: ChatMessage) -> str:
    return json.dumps(_PARTS_ADAPTER.dump_python(message.parts, mode="json"))


def _artifact_from_row(row: asyncpg.Record | dict[str, Any]) -> ArtifactRecord:
    raw_payload = row["payload"]
    return ArtifactRecord(
        id=row["id"],
        kind=row["kind"],
        owner_id=row["owner_id"],
        session_id=row["session_id"],
        payload=json.loads(raw_payload) if isinstance(raw_payload, str) else raw_payload,
        created_at=row["created_at"],
    )


class PostgresChatStore:
    """Chat session and transcript persistence backed by Postgres."""

    def __init__(self, database: DatabaseServiceProtocol) -> None:
        self._database = database

    async def create_session(self, owner_id: str | None, title: str) -> ChatSessionRecord:
        row = await self._database.fetchrow(
            f"""
            INSERT INTO chat_sessions (id, owner_id, title)
            VALUES ($1::uuid, $2, $3)
            RETURNING {_SESSION_COLUMNS}
            """,
            str(uuid.uuid4()),
            owner_id,
            title,
        )
        assert row is not None
        return _session_from_row(row)

    async def get_session(self, session_id: str, owner_id: str | None) -> ChatSessionRecord | None:
        row = await self._database.fetchrow(
            f"""
            SELECT {_SESSION_COLUMNS}
            FROM chat_sessions
            WHERE id = $1::uuid AND owner_id IS NOT DISTINCT FROM $2
            """,
            session_id,
            owner_id,
        )
        return _session_from_row(row) if row is not None else None

    async def list_sessions(self, owner_id: str) -> list[ChatSessionRecord]:
        rows = await self._database.fetch(
            f"""
            SELECT {_SESSION_COLUMNS}
            FROM chat_sessions
            WHERE owner_id = $1
            ORDER BY COALESCE(last_message_at, created_at) DESC
            """,
            owner_id,
        )
        return [_session_from_row(row) for row in rows]

    async def update_session(self, session_id: str, owner_id: str | None, patch: SessionPatch) -> ChatSessionRecord | None:
        row = await self._database.fetchrow(
            f"""
            UPDATE chat_sessions
            SET title = COALESCE($3, title),
                last_message_at = COALESCE($4, last_message_at),
                updated_at = NOW()
            WHERE id = $1::uuid AND owner_id IS NOT DISTINCT FROM $2
            RETURNING {_SESSION_COLUMNS}
            """,
            session_id,
            owner_id,
            patch.title,
            patch.last_message_at,
        )
        return _session_from_row(row) if row is not None else None

    async def get_messages(self, session_id: str) -> list[ChatMessage]:
        rows = await self._database.fetch(
            """
            SELECT id::text AS id, role, parts, processing_time_ms
            FROM chat_messages
            WHERE session_id = $1::uuid
            ORDER BY position ASC
            """,
            session_id,
        )
        return [_message_from_row(row) for row in rows]

    async def append_message(self, session_id: str, message: ChatMessage) -> None:
        await self._database.execute(
            """
            INSERT INTO chat_messages (id, session_id, position, role, parts, processing_time_ms)
            VALUES (
              $1::uuid,
              $2::uuid,
              COALESCE((SELECT MAX(m.position) FROM chat_messages m WHERE m.session_id = $2::uuid), -1) + 1,
              $3,
              $4::jsonb,
              $5
            )
            ON CONFLICT (id) DO NOTHING
            """,
            message.id,
            session_id,
            message.role,
            _dump_parts(message),
            message.processing_time_ms,
        )

    async def get_message(self, session_id: str, message_id: str) -> ChatMessage | None:
        row = await self._database.fetchrow(
            """
            SELECT id::text AS id, role, parts, processing_time_ms
            FROM chat_messages
            WHERE session_id = $1::uuid AND id = $2::uuid
            """,
            session_id,
            message_id,
        )
        return _message_from_row(row) if row is not None else None

    async def save_assistant_message(self, session_id: str, message: ChatMessage) -> None:
        # Conflicting ids from another session or a user row are left untouched.
        await self._database.execute(
            """
            INSERT INTO chat_messages (id, session_id, position, role, parts, processing_time_ms)
            VALUES (
              $1::uuid,
              $2::uuid,
              COALESCE((SELECT MAX(m.position) FROM chat_messages m WHERE m.session_id = $2::uuid), -1) + 1,
              'assistant',
              $3::jsonb,
              $4
            )
            ON CONFLICT (id) DO UPDATE SET
              parts = EXCLUDED.parts,
              processing_time_ms = COALESCE(EXCLUDED.processing_time_ms, chat_messages.processing_time_ms)
            WHERE chat_messages.session_id = EXCLUDED.session_id AND chat_messages.role = 'assistant'
            """,
            message.id,
            session_id,
            _dump_parts(message),
            message.processing_time_ms,
        )

    async def save_artifact(self, artifact: ArtifactRecord) -> None:
        await self._database.execute(
            """
            INSERT INTO chat_artifacts (id, kind, owner_id, session_id, payload)
            VALUES ($1::uuid, $2, $3, $4::uuid, $5::jsonb)
            ON CONFLICT (id) DO NOTHING
            """,
            artifact.id,
            artifact.kind,
            artifact.owner_id,
            artifact.session_id,
            json.dumps(artifact.payload),
        )

    async def get_artifact(self, kind: ArtifactKind, artifact_id: str, owner_id: str | None) -> ArtifactRecord | None:
        row = await self._database.fetchrow(
            """
            SELECT id::text AS id, kind, owner_id, session_id::text AS session_id, payload, created_at
            FROM chat_artifacts
            WHERE id = $1::uuid AND kind = $2 AND owner_id IS NOT DISTINCT FROM $3
            """,
            artifact_id,
            kind,
            owner_id,
        )
        return _artifact_from_row(row) if row is not None else None


class InMemoryChatStore:
    """Process-local chat store for development and tests."""

    def __init__(self) -> None:
        self._sessions: dict[str, ChatSessionRecord] = {}
        self._messages: dict[str, list[ChatMessage]] = {}
        self._artifacts: dict[str, ArtifactRecord] = {}

    async def create_session(self, owner_id: str | None, title: str) -> ChatSessionRecord:
        now = datetime.now(UTC)
        record = ChatSessionRecord(id=str(uuid.uuid4()), owner_id=owner_id, title=title, created_at=now, updated_at=now)
        self._sessions[record.id] = record
        self._messages[record.id] = []
        return record

    async def get_session(self, session_id: str, owner_id: str | None) -> ChatSessionRecord | None:
        record = self._sessions.get(session_id)
        if record is None or record.owner_id != owner_id:
            return None
        return record

    async def list_sessions(self, owner_id: str) -> list[ChatSessionRecord]:
        owned = [record for record in self._sessions.values() if record.owner_id == owner_id]
        return sorted(owned, key=lambda record: record.last_message_at or record.created_at, reverse=True)

    async def update_session(self, session_id: str, owner_id: str | None, patch: SessionPatch) -> ChatSessionRecord | None:
        record = await self.get_session(session_id, owner_id)
        if record is None:
            return None
        changes: dict[str, Any] = {"updated_at": datetime.now(UTC)}
        if patch.title is not None:
            changes["title"] = patch.title
        if patch.last_message_at is not None:
            changes["last_message_at"] = patch.last_message_at
        updated = record.model_copy(update=changes)
        self._sessions[session_id] = updated
        return updated

    async def get_messages(self, session_id: str) -> list[ChatMessage]:
        return [message.model_copy(deep=True) for message in self._messages.get(session_id, [])]

    async def append_message(self, session_id: str, message: ChatMessage) -> None:
        if any(existing.id == message.id for stored in self._messages.values() for existing in stored):
            return
        self._messages.setdefault(session_id, []).append(message.model_copy(deep=True))

    async def get_message(self, session_id: str, message_id: str) -> ChatMessage | None:
        for message in self._messages.get(session_id, []):
            if message.id == message_id:
                return message.model_copy(deep=True)
        return None

    async def save_assistant_message(self, session_id: str, message: ChatMessage) -> None:
        for stored_session_id, stored in self._messages.items():
            for index, existing in enumerate(stored):
                if existing.id != message.id:
                    continue
                if stored_session_id != session_id or existing.role != "assistant":
                    return
                processing_time_ms = (
                    message.processing_time_ms if message.processing_time_ms is not None else existing.processing_time_ms
                )
                stored[index] = existing.model_copy(
                    update={
                        "parts": [part.model_copy(deep=True) for part in message.parts],
                        "processing_time_ms": processing_time_ms,
                    }
                )
                return
        self._messages.setdefault(session_id, []).append(message.model_copy(update={"role": "assistant"}, deep=True))

    async def save_artifact(self, artifact: ArtifactRecord) -> None:
        if artifact.id in self._artifacts:
            return
        self._artifacts[artifact.id] = artifact.model_copy(update={"created_at": datetime.now(UTC)}, deep=True)

    async def get_artifact(self, kind: ArtifactKind, artifact_id: str, owner_id: str | None) -> ArtifactRecord | None:
        artifact = self._artifacts.get(artifact_id)
        if artifact is None or artifact.kind != kind or artifact.owner_id != owner_id:
            return None
        return artifact.model_copy(deep=True)
