from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Any, Literal

import httpx
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_openai import ChatOpenAI

from finchat.core.errors import ConfigurationError, ModelCompatibilityError
from finchat.core.settings import Settings

logger = logging.getLogger(__name__)

LocalProvider = Literal["ollama", "lmstudio"]
ModelSource = Literal["local", "cloud", "mock"]

_MOCK_MESSAGE_DELIMITER = "\n\n--- message ---\n\n"
_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class LocalModelPreferences:
    """Per-request local inference preferences sent by the client as headers."""

    enabled: bool = True
    provider: LocalProvider = "ollama"
    model: str | None = None
    thinking_mode: bool = False

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> LocalModelPreferences:
        enabled_header = headers.get("x-local-enabled")
        provider = (headers.get("x-local-provider") or "ollama").strip().lower()
        model = (headers.get("x-local-model") or "").strip()
        return cls(
            enabled=True if enabled_header is None else enabled_header.strip().lower() in _TRUTHY,
            provider="lmstudio" if provider == "lmstudio" else "ollama",
            model=model or None,
            thinking_mode=(headers.get("x-thinking-mode") or "").strip().lower() in _TRUTHY,
        )

    def to_headers(self) -> dict[str, str]:
        headers = {
            "X-Local-Enabled": "true" if self.enabled else "false",
            "X-Local-Provider": self.provider,
            "X-Thinking-Mode": "true" if self.thinking_mode else "false",
        }
        if self.model:
            headers["X-Local-Model"] = self.model
        return headers


@dataclass(frozen=True)
class ResolvedModel:
    model: BaseChatModel
    model_name: str
    source: ModelSource
    supports_tools: bool = True
    supports_thinking: bool = False
    provider_options: dict[str, Any] = field(default_factory=dict)


def load_mock_messages(messages_file: str) -> list[str]:
    path = Path(messages_file)
    raw_content = path.read_text(encoding="utf-8")
    parsed_messages = [chunk.strip() for chunk in raw_content.split(_MOCK_MESSAGE_DELIMITER)]
    messages = [message for message in parsed_messages if message]
    if not messages:
        raise ValueError(
            f"No mock messages found in {path}. Use delimiter {_MOCK_MESSAGE_DELIMITER!r} between messages."
        )
    return messages


def select_local_model(available: list[str], requested: str | None, preferred: list[str]) -> str | None:
    """Pick the requested model, else the first matching a preferred substring, else the first listed."""

    if not available:
        return None
    if requested and requested in available:
        return requested
    for marker in preferred:
        for name in available:
            if marker.lower() in name.lower():
                return name
    return available[0]


class ModelResolver:
    """Chooses the chat model for one request: local endpoint first, then exactly one cloud fallback."""

    def __init__(
        self,
        settings: Settings,
        *,
        http_client: httpx.AsyncClient | None = None,
        model_builder: Callable[..., BaseChatModel] = ChatOpenAI,
    ) -> None:
        self._settings = settings
        self._http_client = http_client
        self._model_builder = model_builder

    def supports_thinking(self, model_name: str) -> bool:
        lowered = model_name.lower()
        return any(marker.lower() in lowered for marker in self._settings.thinking_model_markers)

    def _local_base_url(self, provider: LocalProvider) -> str | None:
        base_url = self._settings.lmstudio_base_url if provider == "lmstudio" else self._settings.ollama_base_url
        return base_url.rstrip("/") if base_url else None

    async def resolve(self, preferences: LocalModelPreferences | None = None) -> ResolvedModel:
        preferences = preferences or LocalModelPreferences()
        settings = self._settings

        if settings.main_agent_use_mock:
            responses = load_mock_messages(settings.main_agent_mock_messages_file)
            logger.info("using FakeListChatModel assistant model", extra={"responses_count": len(responses)})
            return ResolvedModel(
                model=FakeListChatModel(responses=responses),
                model_name="mock",
                source="mock",
                supports_tools=False,
            )

        base_url = self._local_base_url(preferences.provider)
        if settings.self_hosted and preferences.enabled and base_url:
            local = await self._resolve_local(preferences, base_url)
            if local is not None:
                return local

        return self._resolve_cloud(preferences)

    async def probe_local_models(self, provider: LocalProvider, base_url: str) -> list[str]:
        """List model names advertised by an Ollama or LM Studio endpoint."""

        url = f"{base_url}/v1/models" if provider == "lmstudio" else f"{base_url}/api/tags"
        timeout = self._settings.local_probe_timeout_seconds
        if self._http_client is not None:
            response = await self._http_client.get(url, timeout=timeout)
        else:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.get(url)
        response.raise_for_status()
        payload = response.json()

        if provider == "lmstudio":
            entries, key = payload.get("data", []), "id"
        else:
            entries, key = payload.get("models", []), "name"
        return [str(entry[key]) for entry in entries if isinstance(entry, dict) and entry.get(key)]

    async def _resolve_local(self, preferences: LocalModelPreferences, base_url: str) -> ResolvedModel | None:
        try:
            available = await self.probe_local_models(preferences.provider, base_url)
        except (httpx.HTTPError, ValueError, AttributeError):
            logger.warning(
                "local model probe failed; falling back to cloud model",
                extra={"provider": preferences.provider, "base_url": base_url},
                exc_info=True,
            )
            return None

        model_name = select_local_model(available, preferences.model, self._settings.local_preferred_models)
        if model_name is None:
            logger.warning("local endpoint advertises no models", extra={"provider": preferences.provider})
            return None

        supports_thinking = self.supports_thinking(model_name)
        if preferences.thinking_mode and not supports_thinking:
            raise ModelCompatibilityError(
                f"The model {model_name} does not support thinking mode. Choose a reasoning model or disable thinking.",
                compatibility_issue="thinking",
            )

        provider_options: dict[str, Any] = {}
        model_kwargs: dict[str, Any] = {
            "model": model_name,
            "base_url": f"{base_url}/v1",
            "api_key": preferences.provider,
            "streaming": True,
        }
        if preferences.thinking_mode:
            provider_options["reasoning_effort"] = self._settings.local_reasoning_effort
            model_kwargs["reasoning_effort"] = self._settings.local_reasoning_effort
        if self._settings.main_agent_temperature is not None:
            model_kwargs["temperature"] = self._settings.main_agent_temperature

        logger.info(
            "using local assistant model",
            extra={"provider": preferences.provider, "model_name": model_name, "supports_thinking": supports_thinking},
        )
        return ResolvedModel(
            model=self._model_builder(**model_kwargs),
            model_name=model_name,
            source="local",
            supports_thinking=supports_thinking,
            provider_options=provider_options,
        )

    def _resolve_cloud(self, preferences: LocalModelPreferences) -> ResolvedModel:
        settings = self._settings
        if not settings.openai_api_key:
            raise ConfigurationError(
                "No language model is available: the local endpoint is unreachable and OPENAI_API_KEY is not set."
            )

        provider_options = {"reasoning": {"summary": settings.cloud_reasoning_summary}}
        model_kwargs: dict[str, Any] = {
            "model": settings.cloud_model,
            "api_key": settings.openai_api_key,
            "streaming": True,
            **provider_options,
        }
        if settings.cloud_base_url:
            model_kwargs["base_url"] = settings.cloud_base_url
        if settings.main_agent_temperature is not None:
            model_kwargs["temperature"] = settings.main_agent_temperature

        logger.info(
            "using cloud assistant model",
            extra={"model_name": settings.cloud_model, "thinking_mode": preferences.thinking_mode},
        )
        return ResolvedModel(
            model=self._model_builder(**model_kwargs),
            model_name=settings.cloud_model,
            source="cloud",
            supports_thinking=True,
            provider_options=provider_options,
        )
