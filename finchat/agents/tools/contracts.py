from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from pydantic import BaseModel

from finchat.api.schemas.artifacts import ArtifactRecord
from finchat.core.errors import ToolErrorKind


@dataclass(frozen=True)
class ToolContext:
    """Caller scope handed to every tool executor."""

    user_id: str | None = None
    session_id: str | None = None
    delegated_credential: str | None = None


class ToolExecutor(Protocol):
    """Runs one validated tool call and returns JSON-serializable data, or raises."""

    async def __call__(self, tool_input: Any, context: ToolContext) -> Any:
        ...


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    input_schema: type[BaseModel]
    executor: ToolExecutor
    dynamic: bool = False


@dataclass(frozen=True)
class ToolOutcome:
    """Result of a registry execution; exactly one of ``output`` or ``error`` is meaningful."""

    output: Any = None
    error: str | None = None
    error_kind: ToolErrorKind | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ClosableResource(Protocol):
    """Long-lived tool backend client holding network resources."""

    async def close(self) -> None:
        ...


class ArtifactSink(Protocol):
    """Stores chart and table payloads so they can be loaded by id later."""

    async def save_artifact(self, artifact: ArtifactRecord) -> None:
        ...
