from finchat.agents.tools.charts import register_chart_tools
from finchat.agents.tools.code_execution import DaytonaSandboxClient, SandboxClient, register_code_execution_tool
from finchat.agents.tools.contracts import ArtifactSink, ToolContext, ToolOutcome, ToolSpec
from finchat.agents.tools.finance import (
    FinanceSearchProvider,
    MockFinanceSearchProvider,
    ValyuSearchProvider,
    register_finance_tools,
)
from finchat.agents.tools.registry import ToolRegistry


def build_default_registry(
    *,
    search_provider: FinanceSearchProvider,
    sandbox_client: SandboxClient | None,
    max_code_chars: int = 10_000,
    artifact_sink: ArtifactSink | None = None,
) -> ToolRegistry:
    registry = ToolRegistry()
    register_finance_tools(registry, provider=search_provider)
    register_code_execution_tool(registry, sandbox_client=sandbox_client, max_code_chars=max_code_chars)
    register_chart_tools(registry, artifact_sink=artifact_sink)
    return registry


__all__ = [
    "ArtifactSink",
    "ToolRegistry",
    "ToolContext",
    "ToolOutcome",
    "ToolSpec",
    "FinanceSearchProvider",
    "ValyuSearchProvider",
    "MockFinanceSearchProvider",
    "SandboxClient",
    "DaytonaSandboxClient",
    "build_default_registry",
]
