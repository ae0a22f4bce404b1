from __future__ import annotations

import httpx
from pydantic import BaseModel, Field
import pytest

from finchat.agents import factory
from finchat.agents.tools import build_default_registry
from finchat.agents.tools.contracts import ToolContext
from finchat.agents.tools.finance import MockFinanceSearchProvider
from finchat.agents.tools.registry import ToolRegistry, describe_tool_error
from finchat.core.errors import ToolExecutionError
from finchat.core.settings import Settings


class EchoInput(BaseModel):
    text: str = Field(..., min_length=1)


async def _echo(tool_input: EchoInput, context: ToolContext) -> dict[str, str | None]:
    return {"text": tool_input.text, "session_id": context.session_id}


def test_register_rejects_duplicate_names() -> None:
    registry = ToolRegistry()
    registry.register("echo", EchoInput, _echo, description="Echo text back")

    with pytest.raises(ValueError, match="already registered"):
        registry.register("echo", EchoInput, _echo, description="Echo text back")


def test_tool_definitions_use_registered_names_and_descriptions() -> None:
    registry = ToolRegistry()
    registry.register("echo", EchoInput, _echo, description="Echo text back")

    [definition] = registry.tool_definitions()

    assert definition["type"] == "function"
    assert definition["function"]["name"] == "echo"
    assert definition["function"]["description"] == "Echo text back"
    assert "text" in definition["function"]["parameters"]["properties"]


@pytest.mark.asyncio
async def test_execute_validates_input_and_passes_context(tool_context: ToolContext) -> None:
    registry = ToolRegistry()
    registry.register("echo", EchoInput, _echo, description="Echo text back")

    outcome = await registry.execute("echo", {"text": "hi"}, tool_context)

    assert outcome.ok
    assert outcome.output == {"text": "hi", "session_id": "session-1"}


@pytest.mark.asyncio
async def test_execute_reports_malformed_input_without_raising(tool_context: ToolContext) -> None:
    registry = ToolRegistry()
    registry.register("echo", EchoInput, _echo, description="Echo text back")

    outcome = await registry.execute("echo", {"text": ""}, tool_context)

    assert not outcome.ok
    assert outcome.error_kind == "malformed_input"
    assert "text" in (outcome.error or "")


@pytest.mark.asyncio
async def test_execute_reports_unknown_tool(tool_context: ToolContext) -> None:
    registry = ToolRegistry()
    registry.register("echo", EchoInput, _echo, description="Echo text back")

    outcome = await registry.execute("missing", {}, tool_context)

    assert outcome.error_kind == "unknown_tool"
    assert "echo" in (outcome.error or "")


@pytest.mark.asyncio
async def test_execute_recovers_executor_failures(tool_context: ToolContext) -> None:
    async def _explode(tool_input: EchoInput, context: ToolContext) -> None:
        del tool_input, context
        raise RuntimeError("backend exploded")

    registry = ToolRegistry()
    registry.register("explode", EchoInput, _explode, description="Always fails")

    outcome = await registry.execute("explode", {"text": "x"}, tool_context)

    assert outcome.error == "explode failed: backend exploded"
    assert outcome.error_kind == "execution"


@pytest.mark.asyncio
async def test_execute_normalizes_empty_output(tool_context: ToolContext) -> None:
    async def _nothing(tool_input: EchoInput, context: ToolContext) -> None:
        del tool_input, context

    registry = ToolRegistry()
    registry.register("nothing", EchoInput, _nothing, description="Returns nothing")

    outcome = await registry.execute("nothing", {"text": "x"}, tool_context)

    assert outcome.ok
    assert outcome.output == {}


@pytest.mark.parametrize(
    ("status_code", "kind"),
    [(401, "auth"), (403, "auth"), (429, "rate_limit"), (422, "malformed_input"), (503, "network")],
)
def test_describe_tool_error_classifies_http_status(status_code: int, kind: str) -> None:
    request = httpx.Request("POST", "https://api.example.com/search")
    response = httpx.Response(status_code, request=request)
    exc = httpx.HTTPStatusError("failed", request=request, response=response)

    message, classified = describe_tool_error("webSearch", exc)

    assert classified == kind
    assert message


def test_describe_tool_error_keeps_tool_error_kind() -> None:
    message, kind = describe_tool_error("codeExecution", ToolExecutionError("Code too long.", kind="malformed_input"))

    assert (message, kind) == ("Code too long.", "malformed_input")


def test_describe_tool_error_classifies_network_failures() -> None:
    request = httpx.Request("POST", "https://api.example.com/search")

    _, kind = describe_tool_error("webSearch", httpx.ConnectTimeout("timed out", request=request))

    assert kind == "network"


def test_default_registry_exposes_all_tools() -> None:
    registry = build_default_registry(search_provider=MockFinanceSearchProvider(), sandbox_client=None)

    assert registry.names() == ["financialSearch", "webSearch", "codeExecution", "createChart", "createCSV"]
    assert not any(registry.get(name).dynamic for name in registry.names())


class RecordingResource:
    def __init__(self) -> None:
        self.close_calls = 0

    async def close(self) -> None:
        self.close_calls += 1


@pytest.mark.asyncio
async def test_aclose_closes_owned_resources_once() -> None:
    registry = ToolRegistry()
    resource = RecordingResource()
    registry.own(resource)

    await registry.aclose()
    await registry.aclose()

    assert resource.close_calls == 1


@pytest.mark.asyncio
async def test_built_registry_closes_the_sandbox_client(monkeypatch: pytest.MonkeyPatch) -> None:
    sandbox_client = RecordingResource()
    monkeypatch.setattr(factory, "build_sandbox_client", lambda settings: sandbox_client)
    registry = factory.build_tool_registry(Settings(FINANCE_TOOLS_USE_MOCK=True))

    await registry.aclose()

    assert "codeExecution" in registry
    assert sandbox_client.close_calls == 1
