from __future__ import annotations

import logging

from finchat.agents.base import ChatAgent
from finchat.agents.finance_assistant import FinanceAssistantAgent
from finchat.agents.model_resolver import ResolvedModel
from finchat.agents.tools import (
    ArtifactSink,
    DaytonaSandboxClient,
    FinanceSearchProvider,
    MockFinanceSearchProvider,
    ToolRegistry,
    ValyuSearchProvider,
    build_default_registry,
)
from finchat.core.settings import Settings

logger = logging.getLogger(__name__)

_TOOL_INSTRUCTIONS = """

Tool policy:
- You must only make max {max_parallel} parallel tool calls at a time.
- Use financialSearch for markets, companies, earnings, SEC filings and economic data; use webSearch for general topics and current events.
- Use codeExecution whenever the user asks to calculate, compute or run Python. Never just show code as text. Always end scripts with print() statements.
- Never suggest fetching data from the internet inside Python; all data retrieval goes through financialSearch or webSearch.
- When you have time series data, visualize it with createChart (line by default). Use createCSV for tabular data the user may want to download.
- When comparing several series in parallel calls, request the same date ranges for each call.
- If a tool call fails, read the error, fix every problem it names and retry immediately without asking the user.
- After every reasoning step, either call a tool or give the final answer.
"""

_FORMATTING_INSTRUCTIONS = """

Response formatting policy:
- Start with a brief executive summary, then organized sections with headers, and end with key takeaways.
- Present financial metrics in markdown tables with comma separators and percentage changes.
- Wrap mathematical expressions in <math>...</math> tags.
- Do not repeat executed Python code in the final answer; reference its results instead.
- Do not link to charts; they render automatically.
- Cite sources as [1], [2], ... in the order they appear in tool results.
"""


def build_search_provider(settings: Settings) -> FinanceSearchProvider:
    if settings.finance_tools_use_mock:
        logger.info(
            "using MockFinanceSearchProvider",
            extra={"mock_data_file": settings.finance_tools_mock_data_file},
        )
        return MockFinanceSearchProvider(mock_data_file=settings.finance_tools_mock_data_file)

    logger.info("using ValyuSearchProvider", extra={"proxy_enabled": bool(settings.valyu_proxy_url)})
    return ValyuSearchProvider(
        api_key=settings.valyu_api_key,
        base_url=settings.valyu_base_url,
        proxy_url=settings.valyu_proxy_url,
        timeout_seconds=settings.tool_http_timeout_seconds,
    )


def build_sandbox_client(settings: Settings) -> DaytonaSandboxClient | None:
    if not settings.daytona_api_key:
        logger.info("code execution disabled: DAYTONA_API_KEY is not set")
        return None
    return DaytonaSandboxClient(
        api_key=settings.daytona_api_key,
        api_url=settings.daytona_api_url,
        target=settings.daytona_target,
        timeout_seconds=settings.tool_http_timeout_seconds,
    )


def build_tool_registry(settings: Settings, *, artifact_sink: ArtifactSink | None = None) -> ToolRegistry:
    sandbox_client = build_sandbox_client(settings)
    registry = build_default_registry(
        search_provider=build_search_provider(settings),
        sandbox_client=sandbox_client,
        max_code_chars=settings.code_execution_max_chars,
        artifact_sink=artifact_sink,
    )
    if sandbox_client is not None:
        registry.own(sandbox_client)
    return registry


def build_system_prompt(settings: Settings) -> str:
    return "\n".join(
        [
            settings.main_agent_system_prompt.strip(),
            _TOOL_INSTRUCTIONS.format(max_parallel=settings.agent_max_parallel_tool_calls).strip(),
            _FORMATTING_INSTRUCTIONS.strip(),
        ]
    )


def build_main_agent(settings: Settings, *, resolved: ResolvedModel, registry: ToolRegistry) -> ChatAgent:
    """Create the per-turn assistant agent for a resolved model."""

    return FinanceAssistantAgent(
        model=resolved.model,
        registry=registry,
        system_prompt=build_system_prompt(settings),
        max_steps=settings.agent_max_steps,
        max_parallel_tool_calls=settings.agent_max_parallel_tool_calls,
        bind_tools=resolved.supports_tools,
    )
