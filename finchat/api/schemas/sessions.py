from datetime import datetime

from pydantic import BaseModel, Field

from finchat.core.messages import ChatMessage


class ChatSessionRecord(BaseModel):
    id: str = Field(..., description="Session UUID")
    owner_id: str | None = Field(default=None, description="Owning user id; absent for anonymous sessions")
    title: str = Field(..., description="Session title derived from the first user message")
    created_at: datetime
    updated_at: datetime
    last_message_at: datetime | None = None


class SessionPatch(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    last_message_at: datetime | None = None


class SessionRenameRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200, description="New session title")


class SessionListResponse(BaseModel):
    sessions: list[ChatSessionRecord]


class SessionDetailResponse(BaseModel):
    session: ChatSessionRecord
    messages: list[ChatMessage]
