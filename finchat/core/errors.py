from __future__ import annotations

from typing import Literal

CompatibilityIssue = Literal["tools", "thinking"]
ToolErrorKind = Literal["network", "auth", "rate_limit", "malformed_input", "execution", "unknown_tool"]


class ChatTurnError(Exception):
    """Request-level failure surfaced as a JSON error response before streaming starts."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, str]:
        return {"error": self.code, "message": self.message}


class AuthRequiredError(ChatTurnError):
    """Raised when there is no caller identity and the deployment is not self-hosted."""

    status_code = 401
    code = "AUTH_REQUIRED"


class ModelCompatibilityError(ChatTurnError):
    """Raised when the resolved model cannot serve tool calls or the requested reasoning mode."""

    status_code = 400
    code = "MODEL_COMPATIBILITY_ERROR"

    def __init__(self, message: str, compatibility_issue: CompatibilityIssue) -> None:
        super().__init__(message)
        self.compatibility_issue = compatibility_issue

    def to_payload(self) -> dict[str, str]:
        return {**super().to_payload(), "compatibilityIssue": self.compatibility_issue}


class ConfigurationError(ChatTurnError):
    """Raised when no usable language model can be resolved for a request."""

    status_code = 500
    code = "CONFIGURATION_ERROR"


class ToolExecutionError(RuntimeError):
    """Raised by tool executors; recovered into an ``output-error`` part by the agent loop."""

    def __init__(self, message: str, kind: ToolErrorKind = "execution") -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind


class PersistenceError(RuntimeError):
    """Raised when the chat store cannot read or write a transcript."""


class SandboxTeardownError(RuntimeError):
    """Raised when an ephemeral execution sandbox could not be released."""


class StreamProtocolError(ValueError):
    """Raised when a stream event violates the part state ordering."""


class SessionNotFoundError(ChatTurnError):
    """Raised when a session id does not exist or belongs to another caller."""

    status_code = 404
    code = "SESSION_NOT_FOUND"


class ArtifactNotFoundError(ChatTurnError):
    """Raised when a chart or table id is unknown to the caller."""

    status_code = 404
    code = "ARTIFACT_NOT_FOUND"


class ChatRequestError(Exception):
    """Client-side view of a non-stream error response from the turn endpoint."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "INTERNAL_ERROR",
        status_code: int | None = None,
        compatibility_issue: CompatibilityIssue | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.compatibility_issue = compatibility_issue

    @property
    def retryable(self) -> bool:
        return self.code != "AUTH_REQUIRED"
