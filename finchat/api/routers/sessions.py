import logging

from fastapi import APIRouter, Depends, Request

from finchat.api.dependencies.auth import get_required_auth_context
from finchat.api.schemas.auth import Principal
from finchat.api.schemas.sessions import (
    SessionDetailResponse,
    SessionListResponse,
    SessionPatch,
    SessionRenameRequest,
)
from finchat.core.errors import SessionNotFoundError
from finchat.dependency_injection import get_container
from finchat.services.contracts import ChatStoreProtocol

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/chat/sessions", tags=["chat"])


@router.get("", response_model=SessionListResponse, summary="List the caller's chat sessions, newest first")
async def list_sessions(
    request: Request,
    principal: Principal = Depends(get_required_auth_context),
) -> SessionListResponse:
    store = get_container(request).resolve(ChatStoreProtocol)
    return SessionListResponse(sessions=await store.list_sessions(principal.user_id))


@router.get("/{session_id}", response_model=SessionDetailResponse, summary="Load one session with its messages")
async def get_session(
    session_id: str,
    request: Request,
    principal: Principal = Depends(get_required_auth_context),
) -> SessionDetailResponse:
    store = get_container(request).resolve(ChatStoreProtocol)
    session = await store.get_session(session_id, principal.user_id)
    if session is None:
        raise SessionNotFoundError(f"Chat session {session_id} was not found.")
    return SessionDetailResponse(session=session, messages=await store.get_messages(session_id))


@router.patch("/{session_id}", response_model=SessionDetailResponse, summary="Rename a chat session")
async def rename_session(
    session_id: str,
    payload: SessionRenameRequest,
    request: Request,
    principal: Principal = Depends(get_required_auth_context),
) -> SessionDetailResponse:
    store = get_container(request).resolve(ChatStoreProtocol)
    session = await store.update_session(session_id, principal.user_id, SessionPatch(title=payload.title.strip()))
    if session is None:
        raise SessionNotFoundError(f"Chat session {session_id} was not found.")
    logger.info("renamed chat session", extra={"session_id": session_id})
    return SessionDetailResponse(session=session, messages=await store.get_messages(session_id))
