from finchat.api.schemas.artifacts import ArtifactRecord, ChartResponse, CsvResponse
from finchat.api.schemas.auth import Principal
from finchat.api.schemas.chat import ChatErrorResponse, ChatTurnRequest
from finchat.api.schemas.sessions import (
    ChatSessionRecord,
    SessionDetailResponse,
    SessionListResponse,
    SessionPatch,
    SessionRenameRequest,
)

__all__ = [
    "ArtifactRecord",
    "ChartResponse",
    "CsvResponse",
    "ChatErrorResponse",
    "ChatSessionRecord",
    "ChatTurnRequest",
    "Principal",
    "SessionDetailResponse",
    "SessionListResponse",
    "SessionPatch",
    "SessionRenameRequest",
]
