import logging

from fastapi import APIRouter, Depends, Request

from finchat.api.dependencies.auth import get_optional_auth_context
from finchat.api.schemas.artifacts import ArtifactKind, ArtifactRecord, ChartResponse, CsvResponse
from finchat.api.schemas.auth import Principal
from finchat.core.errors import ArtifactNotFoundError
from finchat.dependency_injection import get_container
from finchat.services.contracts import ChatStoreProtocol

logger = logging.getLogger(__name__)
router = APIRouter(tags=["artifacts"])

_LABELS: dict[str, str] = {"chart": "Chart", "csv": "Table"}


async def _load_artifact(request: Request, kind: ArtifactKind, artifact_id: str, principal: Principal | None) -> ArtifactRecord:
    store = get_container(request).resolve(ChatStoreProtocol)
    owner_id = principal.user_id if principal is not None else None
    artifact = await store.get_artifact(kind, artifact_id, owner_id)
    if artifact is None:
        logger.info("artifact not found", extra={"artifact_kind": kind, "artifact_id": artifact_id})
        raise ArtifactNotFoundError(f"{_LABELS[kind]} {artifact_id} was not found.")
    return artifact


@router.get("/charts/{chart_id}", response_model=ChartResponse, summary="Load a chart created by createChart")
async def get_chart(
    chart_id: str,
    request: Request,
    principal: Principal | None = Depends(get_optional_auth_context),
) -> ChartResponse:
    artifact = await _load_artifact(request, "chart", chart_id, principal)
    return ChartResponse.model_validate(artifact.payload)


@router.get("/csvs/{csv_id}", response_model=CsvResponse, summary="Load a table created by createCSV")
async def get_csv(
    csv_id: str,
    request: Request,
    principal: Principal | None = Depends(get_optional_auth_context),
) -> CsvResponse:
    artifact = await _load_artifact(request, "csv", csv_id, principal)
    return CsvResponse.model_validate({**artifact.payload, "created_at": artifact.created_at})
