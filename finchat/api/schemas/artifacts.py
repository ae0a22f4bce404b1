from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

ArtifactKind = Literal["chart", "csv"]


class ArtifactRecord(BaseModel):
    id: str = Field(..., description="Artifact UUID, returned to the model as chart_id or csv_id")
    kind: ArtifactKind
    owner_id: str | None = Field(default=None, description="Caller who ran the tool; absent for anonymous use")
    session_id: str | None = Field(default=None, description="Chat session the tool call belonged to")
    payload: dict[str, Any]
    created_at: datetime | None = None


class ChartResponse(BaseModel):
    chart_id: str
    chart_type: str
    title: str
    x_axis_label: str
    y_axis_label: str
    data_series: list[dict[str, Any]]
    description: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class CsvResponse(BaseModel):
    csv_id: str
    title: str
    description: str | None = None
    headers: list[str]
    rows: list[list[Any]]
    row_count: int
    csv: str
    created_at: datetime | None = None
