from __future__ import annotations

import logging
import time
from typing import Any

import httpx
from langchain_core.utils.function_calling import convert_to_openai_tool
from pydantic import BaseModel, ValidationError

from finchat.agents.tools.contracts import ClosableResource, ToolContext, ToolExecutor, ToolOutcome, ToolSpec
from finchat.core.errors import ToolErrorKind, ToolExecutionError

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Name-keyed tool catalogue; executions never raise past :meth:`execute`."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}
        self._resources: list[ClosableResource] = []

    def register(
        self,
        name: str,
        input_schema: type[BaseModel],
        executor: ToolExecutor,
        *,
        description: str,
        dynamic: bool = False,
    ) -> None:
        if name in self._tools:
            raise ValueError(f"tool {name!r} is already registered")
        self._tools[name] = ToolSpec(
            name=name,
            description=description,
            input_schema=input_schema,
            executor=executor,
            dynamic=dynamic,
        )
        logger.debug("registered tool", extra={"tool_name": name, "dynamic": dynamic})

    def own(self, resource: ClosableResource) -> None:
        """Close ``resource`` together with the registry."""

        self._resources.append(resource)

    async def aclose(self) -> None:
        while self._resources:
            resource = self._resources.pop()
            await resource.close()
        logger.debug("tool registry closed")

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def tool_definitions(self) -> list[dict[str, Any]]:
        """OpenAI function-calling definitions suitable for ``BaseChatModel.bind_tools``."""

        definitions: list[dict[str, Any]] = []
        for spec in self._tools.values():
            definition = convert_to_openai_tool(spec.input_schema)
            definition["function"]["name"] = spec.name
            definition["function"]["description"] = spec.description
            definitions.append(definition)
        return definitions

    async def execute(self, name: str, raw_input: Any, context: ToolContext) -> ToolOutcome:
        spec = self._tools.get(name)
        if spec is None:
            return ToolOutcome(error=f"Unknown tool {name!r}. Available tools: {', '.join(self._tools)}", error_kind="unknown_tool")

        start = time.perf_counter()
        try:
            tool_input = spec.input_schema.model_validate(raw_input if raw_input is not None else {})
            output = await spec.executor(tool_input, context)
        except Exception as exc:  # noqa: BLE001
            message, kind = describe_tool_error(name, exc)
            logger.warning(
                "tool execution failed",
                extra={"tool_name": name, "error_kind": kind, "session_id": context.session_id},
            )
            return ToolOutcome(error=message, error_kind=kind)

        logger.info(
            "tool execution completed",
            extra={
                "tool_name": name,
                "latency_ms": int((time.perf_counter() - start) * 1000),
                "session_id": context.session_id,
            },
        )
        return ToolOutcome(output={} if output is None else output)


def describe_tool_error(tool_name: str, exc: Exception) -> tuple[str, ToolErrorKind]:
    """Map an executor failure to a human-readable message and an error class."""

    if isinstance(exc, ToolExecutionError):
        return exc.message, exc.kind
    if isinstance(exc, ValidationError):
        problems = "; ".join(
            f"{'.'.join(str(loc) for loc in error['loc']) or 'input'}: {error['msg']}" for error in exc.errors()
        )
        return f"Invalid input for {tool_name}: {problems}. Provide all required fields and retry.", "malformed_input"
    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
        if status_code in (401, 403):
            return f"{tool_name} was rejected by its backend: authentication failed.", "auth"
        if status_code == 429:
            return "Rate limit exceeded. Please try again in a moment.", "rate_limit"
        if 400 <= status_code < 500:
            return f"{tool_name} backend rejected the request ({status_code}).", "malformed_input"
        return f"{tool_name} backend is unavailable ({status_code}).", "network"
    if isinstance(exc, httpx.RequestError):
        return f"Network error while running {tool_name}: {exc.__class__.__name__}.", "network"
    return f"{tool_name} failed: {exc}", "execution"
