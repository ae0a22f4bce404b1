from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from finchat.agents.tools.contracts import ToolContext
from finchat.agents.tools.finance.constants import _DEFAULT_FINANCIAL_MAX_RESULTS, _DEFAULT_WEB_MAX_RESULTS
from finchat.agents.tools.finance.parsing import format_search_response, included_sources_for, parse_max_results
from finchat.agents.tools.finance.provider import FinanceSearchProvider
from finchat.agents.tools.registry import ToolRegistry

FinancialDataType = Literal["auto", "market_data", "earnings", "sec_filings", "news", "regulatory"]


class FinancialSearchInput(BaseModel):
    query: str = Field(
        ...,
        min_length=1,
        description='Financial search query (e.g. "Apple latest quarterly earnings", "Tesla SEC filings")',
    )
    dataType: FinancialDataType = Field(default="auto", description="Type of financial data to focus on")
    maxResults: int = Field(
        default=_DEFAULT_FINANCIAL_MAX_RESULTS,
        ge=1,
        le=20,
        description="Maximum number of results. One year of prices for one company counts as one result.",
    )


class WebSearchInput(BaseModel):
    query: str = Field(..., min_length=1, description="Search query for any topic")
    maxResults: int = Field(default=_DEFAULT_WEB_MAX_RESULTS, ge=1, le=20, description="Maximum number of results")


def register_finance_tools(registry: ToolRegistry, *, provider: FinanceSearchProvider) -> None:
    """Register ``financialSearch`` and ``webSearch`` against one search provider."""

    async def _financial_search(tool_input: FinancialSearchInput, context: ToolContext) -> dict[str, object]:
        raw = await provider.search(
            query=tool_input.query,
            max_results=parse_max_results(tool_input.maxResults),
            search_type="all",
            included_sources=included_sources_for(tool_input.dataType),
            delegated_credential=context.delegated_credential,
        )
        return format_search_response(
            raw,
            search_type="financial_search",
            query=tool_input.query,
            data_type=tool_input.dataType,
        )

    async def _web_search(tool_input: WebSearchInput, context: ToolContext) -> dict[str, object]:
        raw = await provider.search(
            query=tool_input.query,
            max_results=parse_max_results(tool_input.maxResults),
            search_type="all",
            delegated_credential=context.delegated_credential,
        )
        return format_search_response(raw, search_type="web_search", query=tool_input.query)

    registry.register(
        "financialSearch",
        FinancialSearchInput,
        _financial_search,
        description=(
            "Search comprehensive financial data: real-time market data, earnings reports, SEC filings, "
            "regulatory updates and financial news. Returns title, url, content, date, source and relevance_score."
        ),
    )
    registry.register(
        "webSearch",
        WebSearchInput,
        _web_search,
        description=(
            "Search the web for general information on any topic across proprietary and web sources. "
            "Returns title, url, content, date, source and relevance_score."
        ),
    )
