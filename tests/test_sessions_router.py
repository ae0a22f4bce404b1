from __future__ import annotations

import asyncio

from fastapi import FastAPI
from fastapi.testclient import TestClient
import pytest

from finchat.api.dependencies.auth import get_required_auth_context
from finchat.api.routers import sessions as sessions_router
from finchat.api.schemas.auth import Principal
from finchat.api.schemas.sessions import SessionRenameRequest
from finchat.core.errors import ChatTurnError, SessionNotFoundError
from finchat.core.messages import user_message
from finchat.main import chat_turn_error_handler
from finchat.services.chat_store import InMemoryChatStore
from finchat.services.contracts import ChatStoreProtocol
from tests.conftest import build_test_container, build_test_request


@pytest.mark.asyncio
async def test_get_session_returns_transcript_for_owner() -> None:
    store = InMemoryChatStore()
    session = await store.create_session("user-42", "Tesla")
    await store.append_message(session.id, user_message("m-1", "Tesla revenue"))
    request = build_test_request(build_test_container({ChatStoreProtocol: store}))

    response = await sessions_router.get_session(
        session_id=session.id,
        request=request,
        principal=Principal(user_id="user-42"),
    )

    assert response.session.id == session.id
    assert [message.text() for message in response.messages] == ["Tesla revenue"]


@pytest.mark.asyncio
async def test_rename_session_of_another_user_is_not_found() -> None:
    store = InMemoryChatStore()
    session = await store.create_session("someone-else", "Theirs")
    request = build_test_request(build_test_container({ChatStoreProtocol: store}))

    with pytest.raises(SessionNotFoundError):
        await sessions_router.rename_session(
            session_id=session.id,
            payload=SessionRenameRequest(title="Mine now"),
            request=request,
            principal=Principal(user_id="user-42"),
        )


def test_api_lists_and_renames_sessions() -> None:
    store = InMemoryChatStore()
    container = build_test_container({ChatStoreProtocol: store})
    principal = Principal(user_id="user-42")

    app = FastAPI()

    @app.middleware("http")
    async def attach_container(request, call_next):
        request.app.state.container = container
        return await call_next(request)

    app.add_exception_handler(ChatTurnError, chat_turn_error_handler)
    app.dependency_overrides[get_required_auth_context] = lambda: principal
    app.include_router(sessions_router.router, prefix="/api")

    created = asyncio.run(store.create_session("user-42", "Tesla"))

    with TestClient(app) as client:
        listing = client.get("/api/chat/sessions")
        renamed = client.patch(f"/api/chat/sessions/{created.id}", json={"title": "  Tesla deep dive  "})
        missing = client.get("/api/chat/sessions/does-not-exist")

    assert listing.status_code == 200
    assert [session["title"] for session in listing.json()["sessions"]] == ["Tesla"]
    assert renamed.status_code == 200
    assert renamed.json()["session"]["title"] == "Tesla deep dive"
    assert missing.status_code == 404
    assert missing.json()["error"] == "SESSION_NOT_FOUND"
