from __future__ import annotations

import json

import httpx
import pytest

from finchat.agents.tools.contracts import ToolContext
from finchat.agents.tools.finance import MockFinanceSearchProvider, ValyuSearchProvider, register_finance_tools
from finchat.agents.tools.finance.parsing import (
    format_search_response,
    included_sources_for,
    parse_max_results,
    parse_search_results,
)
from finchat.agents.tools.registry import ToolRegistry
from finchat.core.errors import ToolExecutionError


def _valyu_payload(count: int) -> dict[str, object]:
    return {
        "results": [
            {
                "title": f"Tesla 10-K excerpt {index}",
                "url": f"HTTPS://Example.COM/tesla/{index}#section",
                "content": "Revenue grew " * 10,
                "relevance_score": 0.9 - index / 10,
                "data_type": "unstructured",
                "metadata": {"date": "2025-01-29", "source": "sec.gov"},
            }
            for index in range(count)
        ]
    }


def test_parse_search_results_normalizes_and_skips_entries_without_url() -> None:
    raw = _valyu_payload(2)
    raw["results"].append({"title": "no url"})  # type: ignore[union-attr]

    results = parse_search_results(raw, fallback_title="Financial Data")

    assert len(results) == 2
    assert results[0]["url"] == "https://example.com/tesla/0"
    assert results[0]["date"] == "2025-01-29"
    assert results[0]["source"] == "sec.gov"


def test_format_search_response_explains_empty_results() -> None:
    response = format_search_response({"results": []}, search_type="web_search", query="obscure topic")

    assert response["result_count"] == 0
    assert "obscure topic" in response["message"]


def test_included_sources_for_auto_lets_backend_choose() -> None:
    assert included_sources_for("auto") is None
    assert included_sources_for("sec_filings")


def test_parse_max_results_clamps_to_limit() -> None:
    assert parse_max_results(0) == 1
    assert parse_max_results(50) == 20


@pytest.mark.asyncio
async def test_valyu_provider_uses_api_key_without_delegated_credential() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_valyu_payload(1))

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = ValyuSearchProvider(api_key="valyu-key", proxy_url="https://proxy.example.com/search", http_client=client)
        raw = await provider.search(query="Tesla revenue", max_results=3, included_sources=["valyu/valyu-sec-filings"])

    assert raw["results"]
    assert str(seen[0].url) == "https://api.valyu.network/v1/deepsearch"
    assert seen[0].headers["x-api-key"] == "valyu-key"
    body = json.loads(seen[0].content)
    assert body == {
        "query": "Tesla revenue",
        "max_num_results": 3,
        "search_type": "all",
        "is_tool_call": True,
        "included_sources": ["valyu/valyu-sec-filings"],
    }


@pytest.mark.asyncio
async def test_valyu_provider_routes_delegated_credential_through_proxy() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_valyu_payload(1))

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = ValyuSearchProvider(api_key="valyu-key", proxy_url="https://proxy.example.com/search", http_client=client)
        await provider.search(query="Tesla", max_results=1, delegated_credential="user-token")

    assert str(seen[0].url) == "https://proxy.example.com/search"
    assert seen[0].headers["authorization"] == "Bearer user-token"
    assert "x-api-key" not in seen[0].headers


@pytest.mark.asyncio
async def test_valyu_provider_without_credentials_raises_auth_error() -> None:
    provider = ValyuSearchProvider(api_key=None)

    with pytest.raises(ToolExecutionError) as exc_info:
        await provider.search(query="Tesla", max_results=1)

    assert exc_info.value.kind == "auth"


@pytest.mark.asyncio
async def test_financial_search_tool_maps_data_type_to_sources(tool_context: ToolContext) -> None:
    provider = MockFinanceSearchProvider()
    registry = ToolRegistry()
    register_finance_tools(registry, provider=provider)

    outcome = await registry.execute(
        "financialSearch",
        {"query": "Tesla 10-K", "dataType": "sec_filings", "maxResults": 4},
        tool_context,
    )

    assert outcome.ok
    assert outcome.output["type"] == "financial_search"
    assert outcome.output["data_type"] == "sec_filings"
    assert outcome.output["result_count"] == 1
    assert provider.calls[0]["max_results"] == 4
    assert provider.calls[0]["included_sources"] == included_sources_for("sec_filings")


@pytest.mark.asyncio
async def test_web_search_tool_rejects_out_of_range_max_results(tool_context: ToolContext) -> None:
    registry = ToolRegistry()
    register_finance_tools(registry, provider=MockFinanceSearchProvider())

    outcome = await registry.execute("webSearch", {"query": "news", "maxResults": 50}, tool_context)

    assert outcome.error_kind == "malformed_input"


@pytest.mark.asyncio
async def test_rate_limited_backend_surfaces_retry_message(tool_context: ToolContext) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": "slow down"}, request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        registry = ToolRegistry()
        register_finance_tools(registry, provider=ValyuSearchProvider(api_key="k", http_client=client))
        outcome = await registry.execute("webSearch", {"query": "news"}, tool_context)

    assert outcome.error_kind == "rate_limit"
    assert outcome.error == "Rate limit exceeded. Please try again in a moment."


@pytest.mark.asyncio
async def test_mock_provider_reads_fixture_file(tmp_path) -> None:
    fixture = tmp_path / "finance.json"
    fixture.write_text(json.dumps({"search": _valyu_payload(3)}), encoding="utf-8")

    provider = MockFinanceSearchProvider(mock_data_file=str(fixture))
    raw = await provider.search(query="Tesla", max_results=3)

    assert len(raw["results"]) == 3
