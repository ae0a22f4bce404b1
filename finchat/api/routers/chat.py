import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from finchat.api.dependencies.auth import get_optional_auth_context
from finchat.api.schemas.auth import Principal
from finchat.api.schemas.chat import ChatErrorResponse, ChatTurnRequest
from finchat.dependency_injection import get_container
from finchat.services.contracts import ChatServiceProtocol

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/chat", tags=["chat"])


@router.post(
    "",
    summary="Run one assistant turn and stream its events",
    description=(
        "Persists the new user message, resolves a model, and streams agent events as server-sent events. "
        "Request-level failures (auth, model compatibility, configuration) are returned as JSON before streaming starts."
    ),
    responses={
        400: {"model": ChatErrorResponse},
        401: {"model": ChatErrorResponse},
        404: {"model": ChatErrorResponse},
        500: {"model": ChatErrorResponse},
    },
)
async def chat_turn(
    payload: ChatTurnRequest,
    request: Request,
    principal: Principal | None = Depends(get_optional_auth_context),
) -> StreamingResponse:
    logger.info(
        "assistant chat request",
        extra={
            "user_id": principal.user_id if principal else None,
            "messages_count": len(payload.messages),
            "session_id": payload.session_id,
        },
    )
    chat_service = get_container(request).resolve(ChatServiceProtocol)
    session_id, stream = await chat_service.start_turn(
        messages=payload.messages,
        principal=principal,
        session_id=payload.session_id,
        delegated_credential=payload.delegated_credential,
        headers=request.headers,
    )

    headers = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
    if session_id is not None:
        headers["X-Session-Id"] = session_id
    return StreamingResponse(stream, media_type="text/event-stream", headers=headers)
