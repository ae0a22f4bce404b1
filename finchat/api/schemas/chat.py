from pydantic import BaseModel, ConfigDict, Field

from finchat.core.messages import ChatMessage


class ChatTurnRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages: list[ChatMessage] = Field(
        ...,
        min_length=1,
        description="Full client transcript; the last message is the new user turn or an assistant message to continue",
    )
    session_id: str | None = Field(
        default=None,
        alias="sessionId",
        description="Existing chat session id; omitted on the first turn of a new conversation",
    )
    delegated_credential: str | None = Field(
        default=None,
        alias="delegatedCredential",
        description="Upstream access token forwarded to tool backends on behalf of the caller",
    )


class ChatErrorResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    error: str = Field(..., description="Error kind, e.g. AUTH_REQUIRED or MODEL_COMPATIBILITY_ERROR")
    message: str = Field(..., description="Human-readable error detail")
    compatibility_issue: str | None = Field(
        default=None,
        alias="compatibilityIssue",
        description="Present for MODEL_COMPATIBILITY_ERROR: `tools` or `thinking`",
    )
