from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Protocol

import httpx

from finchat.core.errors import ToolExecutionError

logger = logging.getLogger(__name__)


class FinanceSearchProvider(Protocol):
    """Protocol for DeepSearch-style search backends."""

    async def search(
        self,
        *,
        query: str,
        max_results: int,
        search_type: str = "all",
        included_sources: list[str] | None = None,
        delegated_credential: str | None = None,
    ) -> Any: ...


class ValyuSearchProvider(FinanceSearchProvider):
    """Valyu DeepSearch HTTP client.

    Requests carrying a delegated credential are routed through the proxy URL
    with a bearer token; all others authenticate with the deployment API key.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str = "https://api.valyu.network/v1",
        proxy_url: str | None = None,
        timeout_seconds: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._proxy_url = proxy_url
        self._timeout_seconds = timeout_seconds
        self._http_client = http_client

    def _route(self, delegated_credential: str | None) -> tuple[str, dict[str, str]]:
        if delegated_credential and self._proxy_url:
            return self._proxy_url, {"Authorization": f"Bearer {delegated_credential}"}
        if self._api_key:
            return f"{self._base_url}/deepsearch", {"x-api-key": self._api_key}
        raise ToolExecutionError(
            "Valyu API key not configured. Set VALYU_API_KEY to enable search.",
            kind="auth",
        )

    async def _post(self, url: str, *, headers: dict[str, str], payload: dict[str, Any]) -> Any:
        if self._http_client is not None:
            response = await self._http_client.post(url, headers=headers, json=payload)
            response.raise_for_status()
            return response.json()

        async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
            response = await client.post(url, headers=headers, json=payload)
            response.raise_for_status()
            return response.json()

    async def search(
        self,
        *,
        query: str,
        max_results: int,
        search_type: str = "all",
        included_sources: list[str] | None = None,
        delegated_credential: str | None = None,
    ) -> Any:
        url, headers = self._route(delegated_credential)
        payload: dict[str, Any] = {
            "query": query,
            "max_num_results": max_results,
            "search_type": search_type,
            "is_tool_call": True,
        }
        if included_sources:
            payload["included_sources"] = included_sources

        try:
            raw = await self._post(url, headers=headers, payload=payload)
        except json.JSONDecodeError as exc:
            raise ToolExecutionError("Search backend returned a non-JSON response.", kind="network") from exc

        logger.debug(
            "valyu search completed",
            extra={
                "search_type": search_type,
                "result_count": len(raw.get("results") or []) if isinstance(raw, dict) else None,
                "delegated": bool(delegated_credential and self._proxy_url),
            },
        )
        return raw


_DEFAULT_FINANCE_TOOLS_MOCK_DATA = {
    "search": {
        "results": [
            {
                "title": "Offline mock financial result",
                "url": "https://example.com/offline-mock",
                "content": "Offline mock search result used for development environments.",
                "relevance_score": 1.0,
                "data_type": "unstructured",
                "metadata": {"date": "2026-01-01", "source": "example.com"},
            }
        ]
    }
}


class MockFinanceSearchProvider(FinanceSearchProvider):
    """Search provider that serves fixture payloads instead of network calls."""

    def __init__(self, *, mock_data_file: str | None = None) -> None:
        self._mock_payload = self._load_mock_payload(mock_data_file)
        self.calls: list[dict[str, Any]] = []

    def _load_mock_payload(self, mock_data_file: str | None) -> dict[str, Any]:
        if not mock_data_file:
            return _DEFAULT_FINANCE_TOOLS_MOCK_DATA

        payload = json.loads(Path(mock_data_file).read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("FINANCE_TOOLS_MOCK_DATA_FILE must contain a JSON object")
        return payload

    async def search(
        self,
        *,
        query: str,
        max_results: int,
        search_type: str = "all",
        included_sources: list[str] | None = None,
        delegated_credential: str | None = None,  # noqa: ARG002
    ) -> Any:
        self.calls.append(
            {
                "query": query,
                "max_results": max_results,
                "search_type": search_type,
                "included_sources": included_sources,
            }
        )
        return self._mock_payload.get("search", {})
