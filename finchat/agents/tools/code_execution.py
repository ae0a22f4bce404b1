from __future__ import annotations

import base64
import logging
import shlex
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, Field

from finchat.agents.tools.contracts import ToolContext
from finchat.agents.tools.registry import ToolRegistry
from finchat.core.errors import SandboxTeardownError, ToolExecutionError

logger = logging.getLogger(__name__)

_ERROR_TIPS = (
    ("NameError", "Make sure all variables are defined before use. Include the full calculation in your code."),
    ("SyntaxError", "Check your Python syntax. Make sure all parentheses, quotes and indentation are correct."),
    ("ModuleNotFoundError", "You can install packages inside the sandbox with pip if needed (e.g. pip install numpy)."),
)


@dataclass(frozen=True)
class SandboxExecution:
    exit_code: int
    result: str


class SandboxClient(Protocol):
    """Ephemeral Python sandbox lifecycle."""

    async def create(self) -> str: ...

    async def execute(self, sandbox_id: str, code: str) -> SandboxExecution: ...

    async def delete(self, sandbox_id: str) -> None: ...


class DaytonaSandboxClient(SandboxClient):
    """Daytona REST API client for ephemeral Python sandboxes."""

    def __init__(
        self,
        *,
        api_key: str,
        api_url: str = "https://app.daytona.io/api",
        target: str | None = None,
        timeout_seconds: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._target = target
        self._headers = {"Authorization": f"Bearer {api_key}"}
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    async def create(self) -> str:
        payload: dict[str, Any] = {"language": "python"}
        if self._target:
            payload["target"] = self._target
        response = await self._http_client.post(f"{self._api_url}/sandbox", headers=self._headers, json=payload)
        response.raise_for_status()
        sandbox_id = response.json().get("id")
        if not sandbox_id:
            raise ToolExecutionError("Sandbox service did not return a sandbox id.", kind="network")
        return str(sandbox_id)

    async def execute(self, sandbox_id: str, code: str) -> SandboxExecution:
        encoded = base64.b64encode(code.encode("utf-8")).decode("ascii")
        bootstrap = f"exec(__import__('base64').b64decode('{encoded}').decode('utf-8'))"
        response = await self._http_client.post(
            f"{self._api_url}/toolbox/{sandbox_id}/toolbox/process/execute",
            headers=self._headers,
            json={"command": f"python3 -c {shlex.quote(bootstrap)}"},
        )
        response.raise_for_status()
        body = response.json()
        return SandboxExecution(exit_code=int(body.get("exitCode", 0)), result=str(body.get("result") or ""))

    async def delete(self, sandbox_id: str) -> None:
        response = await self._http_client.delete(
            f"{self._api_url}/sandbox/{sandbox_id}",
            headers=self._headers,
            params={"force": "true"},
        )
        response.raise_for_status()

    async def close(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()


@asynccontextmanager
async def sandbox_session(client: SandboxClient) -> AsyncIterator[str]:
    """Yield a fresh sandbox id and always release the sandbox on exit."""

    sandbox_id = await client.create()
    logger.info("sandbox created", extra={"sandbox_id": sandbox_id})
    try:
        yield sandbox_id
    finally:
        try:
            await _release_sandbox(client, sandbox_id)
        except SandboxTeardownError:
            logger.exception("sandbox teardown failed", extra={"sandbox_id": sandbox_id})


async def _release_sandbox(client: SandboxClient, sandbox_id: str) -> None:
    try:
        await client.delete(sandbox_id)
    except (httpx.HTTPError, ToolExecutionError) as exc:
        raise SandboxTeardownError(f"failed to delete sandbox {sandbox_id}: {exc}") from exc


def with_error_tip(result: str) -> str:
    message = result or "Unknown execution error"
    for marker, tip in _ERROR_TIPS:
        if marker in message:
            return f"{message}\n\nTip: {tip}"
    return message


class CodeExecutionInput(BaseModel):
    code: str = Field(
        ...,
        min_length=1,
        description="Python code to execute. MUST include print() statements to display results.",
    )
    description: str | None = Field(
        default=None,
        description='Brief description of the calculation (e.g. "Calculate future value with compound interest")',
    )


def register_code_execution_tool(
    registry: ToolRegistry,
    *,
    sandbox_client: SandboxClient | None,
    max_code_chars: int = 10_000,
) -> None:
    async def _code_execution(tool_input: CodeExecutionInput, context: ToolContext) -> dict[str, object]:
        if len(tool_input.code) > max_code_chars:
            raise ToolExecutionError(
                f"Code too long. Please limit your code to {max_code_chars:,} characters.",
                kind="malformed_input",
            )
        if sandbox_client is None:
            raise ToolExecutionError(
                "Code execution is not configured. Set DAYTONA_API_KEY to enable it.",
                kind="auth",
            )

        start = time.perf_counter()
        async with sandbox_session(sandbox_client) as sandbox_id:
            execution = await sandbox_client.execute(sandbox_id, tool_input.code)
        execution_time_ms = int((time.perf_counter() - start) * 1000)

        logger.info(
            "code execution finished",
            extra={
                "exit_code": execution.exit_code,
                "execution_time_ms": execution_time_ms,
                "session_id": context.session_id,
            },
        )
        if execution.exit_code != 0:
            raise ToolExecutionError(f"Execution error: {with_error_tip(execution.result)}", kind="execution")
        return {
            "success": True,
            "output": execution.result or "(No output)",
            "execution_time_ms": execution_time_ms,
            "description": tool_input.description,
            "executed_code": tool_input.code,
        }

    registry.register(
        "codeExecution",
        CodeExecutionInput,
        _code_execution,
        description=(
            "Execute Python code in a secure ephemeral sandbox for financial modeling, data analysis and "
            "calculations. Always end with print() statements showing the final results, with labels, "
            "units and currency symbols where appropriate."
        ),
    )
