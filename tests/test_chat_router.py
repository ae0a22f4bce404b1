"""API tests for the streaming chat turn endpoint."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient
import punq

from finchat.agents.tools import MockFinanceSearchProvider, build_default_registry
from finchat.api.dependencies.auth import get_optional_auth_context
from finchat.api.routers import chat as chat_router
from finchat.api.schemas.auth import Principal
from finchat.api.schemas.chat import ChatErrorResponse
from finchat.core.errors import ChatTurnError
from finchat.core.settings import Settings
from finchat.core.stream_events import decode_sse_frame
from finchat.main import chat_turn_error_handler
from finchat.services.chat_service import ChatService
from finchat.services.chat_store import InMemoryChatStore
from finchat.services.contracts import AuthServiceProtocol, ChatServiceProtocol
from tests.conftest import RejectingChatModel, ScriptedChatModel, StaticModelResolver, build_test_container, text_chunk


class AnonymousAuthService:
    def principal_from_bearer(self, bearer_token: str | None) -> Principal | None:
        del bearer_token
        return None

    async def principal_from_session(self, session_id: str | None) -> Principal | None:
        del session_id
        return None


def _app(model, *, principal: Principal | None = None) -> tuple[FastAPI, InMemoryChatStore]:
    settings = Settings(APP_MODE="hosted", CHAT_STORE_BACKEND="memory", SESSION_TITLE_GENERATION=False)
    store = InMemoryChatStore()
    service = ChatService(
        settings,
        StaticModelResolver(model),
        build_default_registry(search_provider=MockFinanceSearchProvider(), sandbox_client=None),
        store,
    )
    container: punq.Container = build_test_container(
        {Settings: settings, AuthServiceProtocol: AnonymousAuthService(), ChatServiceProtocol: service}
    )

    app = FastAPI()

    @app.middleware("http")
    async def attach_container(request, call_next):
        request.app.state.container = container
        return await call_next(request)

    app.add_exception_handler(ChatTurnError, chat_turn_error_handler)
    if principal is not None:
        app.dependency_overrides[get_optional_auth_context] = lambda: principal
    app.include_router(chat_router.router, prefix="/api")
    return app, store


def _turn_body(text: str = "How did Tesla revenue grow?") -> dict:
    return {"messages": [{"id": "client-1", "role": "user", "parts": [{"type": "text", "text": text}]}]}


def test_unauthenticated_hosted_turn_returns_json_401() -> None:
    app, _ = _app(ScriptedChatModel([[text_chunk("never")]]))

    with TestClient(app) as client:
        response = client.post("/api/chat", json=_turn_body())

    assert response.status_code == 401
    assert response.json()["error"] == "AUTH_REQUIRED"


def test_turn_streams_sse_frames_with_session_header() -> None:
    app, store = _app(ScriptedChatModel([[text_chunk("Revenue grew 19%.")]]), principal=Principal(user_id="user-42"))

    with TestClient(app) as client:
        response = client.post("/api/chat", json=_turn_body())

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"
    session_id = response.headers["x-session-id"]
    frames = [frame for frame in response.text.split("\n\n") if frame.strip()]
    events = [decode_sse_frame(frame + "\n\n") for frame in frames]
    assert events[0]["type"] == "start"
    assert events[-1]["type"] == "finish"
    assert "".join(event["data"]["delta"] for event in events if event["type"] == "text-delta") == "Revenue grew 19%."
    assert session_id in store._sessions  # noqa: SLF001


def test_incompatible_model_returns_json_400_before_streaming() -> None:
    app, _ = _app(RejectingChatModel("llama2 does not support tools"), principal=Principal(user_id="user-42"))

    with TestClient(app) as client:
        response = client.post("/api/chat", json=_turn_body())

    assert response.status_code == 400
    assert response.json() == {
        "error": "MODEL_COMPATIBILITY_ERROR",
        "message": response.json()["message"],
        "compatibilityIssue": "tools",
    }


def test_empty_transcript_is_rejected_by_validation() -> None:
    app, _ = _app(ScriptedChatModel([]), principal=Principal(user_id="user-42"))

    with TestClient(app) as client:
        response = client.post("/api/chat", json={"messages": []})

    assert response.status_code == 422


def test_error_response_uses_snake_case_fields_and_camel_case_wire_names() -> None:
    parsed = ChatErrorResponse.model_validate(
        {"error": "MODEL_COMPATIBILITY_ERROR", "message": "No thinking support.", "compatibilityIssue": "thinking"}
    )

    assert parsed.compatibility_issue == "thinking"
    assert parsed.model_dump(by_alias=True)["compatibilityIssue"] == "thinking"
    assert ChatErrorResponse(error="AUTH_REQUIRED", message="Sign in.").model_dump(by_alias=True, exclude_none=True) == {
        "error": "AUTH_REQUIRED",
        "message": "Sign in.",
    }
