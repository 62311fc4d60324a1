"""Analysis API endpoints.

- ``POST /projects/{project_id}/analysis``: run an analysis and store it
- ``GET /projects/{project_id}/analysis?user_id=``: fetch the stored document

Error classes map to distinct statuses so a client can show the right
message: 400 for unusable input, 503 for provider configuration, 502 for
other model-endpoint failures, 409 when a concurrent run stored first and
422 when strict quality mode rejected the matrix.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from qualmatrix.errors import (
    InputError,
    LLMConfigurationError,
    LLMTransportError,
    QualityGateError,
    StaleRecordError,
)
from qualmatrix.llm.kinds import parse_kind
from qualmatrix.models import ProjectConfig, QualityDefect, RawDocument
from qualmatrix.pipeline import run_analysis
from qualmatrix.server.store import ResultStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------


class AnalysisRequest(BaseModel):
    user_id: str
    kind: str = "content"
    project: ProjectConfig | None = None
    documents: list[RawDocument] = Field(default_factory=list)
    expected_version: int | None = None


class AnalysisResponse(BaseModel):
    success: bool
    analysis_type: str
    status: str
    analysis: dict[str, Any]
    repairs: list[str]
    defects: list[QualityDefect]
    documents_analyzed: int
    stored: bool
    version: int | None
    timestamp: str


class StoredAnalysisResponse(BaseModel):
    project_id: str
    user_id: str
    analysis_type: str
    analysis: dict[str, Any]
    version: int
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_store(request: Request) -> ResultStore:
    """Get the result store from app state."""
    return ResultStore(request.app.state.db_factory)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/projects/{project_id}/analysis", response_model=AnalysisResponse)
async def create_analysis(
    project_id: str,
    body: AnalysisRequest,
    request: Request,
) -> AnalysisResponse:
    """Run the analysis for one project and store the result."""
    try:
        kind = parse_kind(body.kind)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    settings = request.app.state.settings
    try:
        llm_client = request.app.state.llm_client_factory(settings)
        outcome = await run_analysis(
            body.project,
            body.documents,
            llm_client,
            kind=kind,
            settings=settings,
            store=_get_store(request),
            project_id=project_id,
            user_id=body.user_id,
            expected_version=body.expected_version,
        )
    except InputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except LLMConfigurationError as exc:
        logger.error("Analysis for project %s failed: %s", project_id, exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except LLMTransportError as exc:
        logger.error("Analysis for project %s failed: %s", project_id, exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except StaleRecordError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except QualityGateError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    result = outcome.result
    return AnalysisResponse(
        success=True,
        analysis_type=kind.value,
        status=result.status.value,
        analysis=result.data,
        repairs=result.repairs,
        defects=result.defects,
        documents_analyzed=outcome.documents_analyzed,
        stored=outcome.stored is not None,
        version=outcome.stored.version if outcome.stored else None,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@router.get("/projects/{project_id}/analysis", response_model=StoredAnalysisResponse)
def get_analysis(
    project_id: str,
    request: Request,
    user_id: str = Query(..., description="Owner of the stored analysis"),
) -> StoredAnalysisResponse:
    """Return the stored analysis document for a project and user."""
    record = _get_store(request).get(project_id, user_id)
    if record is None:
        raise HTTPException(status_code=404, detail="No analysis stored for this project")
    return StoredAnalysisResponse(
        project_id=record.project_id,
        user_id=record.user_id,
        analysis_type=record.analysis_kind,
        analysis=record.data,
        version=record.version,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )
