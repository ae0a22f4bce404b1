"""Shared test utilities and fixtures for finchat tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
import json
from types import SimpleNamespace
from typing import Any

from langchain_core.messages import AIMessageChunk, BaseMessage
import pytest
import punq

from finchat.agents.model_resolver import LocalModelPreferences, ResolvedModel
from finchat.agents.tools.contracts import ToolContext
from finchat.core.settings import Settings


def text_chunk(text: str) -> AIMessageChunk:
    return AIMessageChunk(content=text)


def reasoning_chunk(text: str) -> AIMessageChunk:
    return AIMessageChunk(content="", additional_kwargs={"reasoning_content": text})


def tool_call_chunk(*, index: int, args: str, name: str | None = None, call_id: str | None = None) -> AIMessageChunk:
    return AIMessageChunk(
        content="",
        tool_call_chunks=[{"name": name, "args": args, "id": call_id, "index": index, "type": "tool_call_chunk"}],
    )


def tool_call(name: str, args: dict[str, Any], *, call_id: str, index: int = 0) -> list[AIMessageChunk]:
    """One complete tool call split into a name chunk and an argument chunk."""

    raw = json.dumps(args)
    middle = len(raw) // 2
    return [
        tool_call_chunk(index=index, name=name, call_id=call_id, args=raw[:middle]),
        tool_call_chunk(index=index, args=raw[middle:]),
    ]


class ScriptedChatModel:
    """Chat model double that streams one scripted chunk list per step."""

    def __init__(self, steps: Sequence[Sequence[AIMessageChunk]], *, repeat_last: bool = False) -> None:
        self.steps = [list(step) for step in steps]
        self.repeat_last = repeat_last
        self.calls: list[list[BaseMessage]] = []
        self.bound_tools: list[dict[str, Any]] | None = None

    def bind_tools(self, tools: list[dict[str, Any]], **kwargs: Any) -> ScriptedChatModel:
        del kwargs
        self.bound_tools = tools
        return self

    async def astream(self, messages: list[BaseMessage], *args: Any, **kwargs: Any) -> AsyncIterator[AIMessageChunk]:
        del args, kwargs
        index = len(self.calls)
        self.calls.append(list(messages))
        if index >= len(self.steps):
            if not self.repeat_last:
                raise AssertionError(f"model called more times than scripted ({index + 1})")
            index = len(self.steps) - 1
        for chunk in self.steps[index]:
            yield chunk


class StaticModelResolver:
    """Model resolver double that always serves the same model."""

    def __init__(self, model: Any, *, model_name: str = "scripted") -> None:
        self.model = model
        self.model_name = model_name
        self.preferences: list[LocalModelPreferences | None] = []

    async def resolve(self, preferences: LocalModelPreferences | None = None) -> ResolvedModel:
        self.preferences.append(preferences)
        return ResolvedModel(model=self.model, model_name=self.model_name, source="cloud")


class RejectingChatModel:
    """Chat model double whose provider rejects every request."""

    def __init__(self, message: str) -> None:
        self.message = message

    def bind_tools(self, tools: list[dict[str, Any]], **kwargs: Any) -> RejectingChatModel:
        del tools, kwargs
        return self

    async def astream(self, messages: list[BaseMessage], *args: Any, **kwargs: Any) -> AsyncIterator[AIMessageChunk]:
        del messages, args, kwargs
        raise RuntimeError(self.message)
        yield  # pragma: no cover


class FakeDatabaseService:
    """Shared fake DB service used at the external DB boundary in unit tests."""

    def __init__(self) -> None:
        self.fetchrow_calls: list[tuple[str, tuple]] = []
        self.fetch_calls: list[tuple[str, tuple]] = []
        self.execute_calls: list[tuple[str, tuple]] = []
        self.fetch_rows: list[dict[str, Any]] = []
        self.fetchrow_result: dict[str, Any] | None = None

    async def connect(self) -> None:
        return None

    async def disconnect(self) -> None:
        return None

    async def fetchrow(self, query: str, *args):
        self.fetchrow_calls.append((query, args))
        return self.fetchrow_result

    async def fetch(self, query: str, *args):
        self.fetch_calls.append((query, args))
        return self.fetch_rows

    async def execute(self, query: str, *args):
        self.execute_calls.append((query, args))
        return "INSERT 0 1"


class FakeScrollContainer:
    """Scroll viewport double with browser-like clamping of the scroll offset."""

    def __init__(self, *, client_height: float = 500.0, scroll_height: float = 500.0) -> None:
        self.client_height = client_height
        self.scroll_height = scroll_height
        self.scroll_top = max(0.0, scroll_height - client_height)
        self.scroll_to_end_calls = 0

    @property
    def max_scroll_top(self) -> float:
        return max(0.0, self.scroll_height - self.client_height)

    def grow(self, pixels: float) -> None:
        self.scroll_height += pixels

    def scroll_by(self, pixels: float) -> None:
        self.scroll_top = min(self.max_scroll_top, max(0.0, self.scroll_top + pixels))

    def scroll_to_end(self) -> None:
        self.scroll_to_end_calls += 1
        self.scroll_top = self.max_scroll_top


@pytest.fixture
def fake_database_service() -> FakeDatabaseService:
    return FakeDatabaseService()


@pytest.fixture
def test_settings() -> Settings:
    return Settings()


@pytest.fixture
def tool_context() -> ToolContext:
    return ToolContext(user_id="user-1", session_id="session-1")


def build_test_request(container: punq.Container, *, headers: dict[str, str] | None = None, cookies: dict[str, str] | None = None):
    """Build a request-shaped object using a real punq container in app state."""

    return SimpleNamespace(
        app=SimpleNamespace(state=SimpleNamespace(container=container)),
        headers=headers or {},
        cookies=cookies or {},
    )


def build_test_container(bindings: dict[object, object]) -> punq.Container:
    """Create a punq container and bind protocol/service keys to test doubles."""

    container = punq.Container()
    for key, value in bindings.items():
        container.register(key, instance=value)
    return container
