from finchat.agents.tools.finance.parsing import format_search_response, included_sources_for, parse_search_results
from finchat.agents.tools.finance.provider import FinanceSearchProvider, MockFinanceSearchProvider, ValyuSearchProvider
from finchat.agents.tools.finance.tooling import FinancialSearchInput, WebSearchInput, register_finance_tools

__all__ = [
    "FinanceSearchProvider",
    "ValyuSearchProvider",
    "MockFinanceSearchProvider",
    "FinancialSearchInput",
    "WebSearchInput",
    "register_finance_tools",
    "format_search_response",
    "included_sources_for",
    "parse_search_results",
]
