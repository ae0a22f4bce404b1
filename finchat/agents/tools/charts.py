from __future__ import annotations

import csv
import io
import logging
import uuid
from typing import Literal

from pydantic import BaseModel, Field

from finchat.agents.tools.contracts import ArtifactSink, ToolContext
from finchat.agents.tools.registry import ToolRegistry
from finchat.api.schemas.artifacts import ArtifactKind, ArtifactRecord
from finchat.core.errors import ToolExecutionError

logger = logging.getLogger(__name__)


class DataPoint(BaseModel):
    x: str | float = Field(..., description='X-axis value, e.g. a date string like "2024-01-01"')
    y: float = Field(..., description="Y-axis numeric value")


class DataSeries(BaseModel):
    name: str = Field(..., description='Series name, including ticker for stocks (e.g. "Apple (AAPL)")')
    data: list[DataPoint] = Field(..., description="Data points with x and y values")


class CreateChartInput(BaseModel):
    title: str = Field(..., min_length=1, description="Chart title")
    type: Literal["line", "bar", "area"] = Field(..., description='Use "line" for time series such as prices')
    xAxisLabel: str = Field(..., description='X-axis label (e.g. "Date", "Quarter")')
    yAxisLabel: str = Field(..., description='Y-axis label (e.g. "Price ($)", "Revenue (Millions)")')
    dataSeries: list[DataSeries] = Field(..., min_length=1, description="One or more named series of x/y points")
    description: str | None = Field(default=None, description="Optional explanation of what the chart shows")


class CreateCSVInput(BaseModel):
    title: str = Field(..., min_length=1, description="Table title")
    headers: list[str] = Field(..., min_length=1, description="Column headers")
    rows: list[list[str | float | int | None]] = Field(..., description="Table rows; each row matches the headers")
    description: str | None = Field(default=None, description="Optional explanation of the table")


def build_chart_payload(tool_input: CreateChartInput) -> dict[str, object]:
    first_series = tool_input.dataSeries[0].data
    date_range = {"start": first_series[0].x, "end": first_series[-1].x} if first_series else None
    return {
        "chart_id": str(uuid.uuid4()),
        "chart_type": tool_input.type,
        "title": tool_input.title,
        "x_axis_label": tool_input.xAxisLabel,
        "y_axis_label": tool_input.yAxisLabel,
        "data_series": [series.model_dump() for series in tool_input.dataSeries],
        "description": tool_input.description,
        "metadata": {
            "total_series": len(tool_input.dataSeries),
            "total_data_points": sum(len(series.data) for series in tool_input.dataSeries),
            "date_range": date_range,
        },
    }


def build_csv_payload(tool_input: CreateCSVInput) -> dict[str, object]:
    width = len(tool_input.headers)
    for index, row in enumerate(tool_input.rows):
        if len(row) != width:
            raise ToolExecutionError(
                f"Row {index} has {len(row)} cells but there are {width} headers.",
                kind="malformed_input",
            )

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(tool_input.headers)
    writer.writerows(["" if cell is None else cell for cell in row] for row in tool_input.rows)
    return {
        "csv_id": str(uuid.uuid4()),
        "title": tool_input.title,
        "headers": tool_input.headers,
        "rows": tool_input.rows,
        "row_count": len(tool_input.rows),
        "csv": buffer.getvalue(),
        "description": tool_input.description,
    }


def register_chart_tools(registry: ToolRegistry, *, artifact_sink: ArtifactSink | None = None) -> None:
    async def _store(kind: ArtifactKind, artifact_id: str, payload: dict[str, object], context: ToolContext) -> None:
        if artifact_sink is None:
            return
        await artifact_sink.save_artifact(
            ArtifactRecord(
                id=artifact_id,
                kind=kind,
                owner_id=context.user_id,
                session_id=context.session_id,
                payload=payload,
            )
        )
        logger.info("stored artifact", extra={"artifact_kind": kind, "artifact_id": artifact_id, "session_id": context.session_id})

    async def _create_chart(tool_input: CreateChartInput, context: ToolContext) -> dict[str, object]:
        payload = build_chart_payload(tool_input)
        await _store("chart", str(payload["chart_id"]), payload, context)
        return payload

    async def _create_csv(tool_input: CreateCSVInput, context: ToolContext) -> dict[str, object]:
        payload = build_csv_payload(tool_input)
        await _store("csv", str(payload["csv_id"]), payload, context)
        return payload

    registry.register(
        "createChart",
        CreateChartInput,
        _create_chart,
        description=(
            "Create an interactive financial chart. All five fields are required: title, type (line, bar "
            "or area), xAxisLabel, yAxisLabel and dataSeries, where each series has a name and x/y points."
        ),
    )
    registry.register(
        "createCSV",
        CreateCSVInput,
        _create_csv,
        description=(
            "Create a downloadable table. Provide a title, the column headers and rows whose cells line up "
            "with the headers."
        ),
    )
