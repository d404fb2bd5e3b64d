from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from tripgen.api.v1.errors import ERROR_RESPONSES, ApiError
from tripgen.core.dependencies import get_run_registry
from tripgen.domain.chunk_plan import get_chunk_definition
from tripgen.domain.schemas import PlanningRequest
from tripgen.services.run_registry import PlanRun, PlanRunRegistry

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/plans", tags=["plans"])


class PlanRunCreatedResponse(BaseModel):
    run_id: str

    model_config = {
        "json_schema_extra": {"example": {"run_id": "2b0f3a52-7d0e-4d8e-9d55-3f0f1c7f4b8e"}}
    }


class PlanStateResponse(BaseModel):
    run_id: Optional[str] = None
    is_loading: bool
    session: Optional[Dict[str, Any]] = None
    chunks: Dict[str, Dict[str, Any]]
    completed_count: int
    total_chunks: int
    overall_progress_percent: int
    combined_result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class ChunkRetryAcceptedResponse(BaseModel):
    run_id: str
    chunk_id: int
    status: str = "accepted"


def _require_run(registry: PlanRunRegistry, run_id: str) -> PlanRun:
    run = registry.get(run_id)
    if run is None:
        raise ApiError(
            status_code=404,
            code="PLAN_RUN_NOT_FOUND",
            message="Plan run not found",
            details={"run_id": run_id},
        )
    return run


@router.post(
    "",
    status_code=status.HTTP_202_ACCEPTED,
    operation_id="startPlanRun",
    summary="Start a plan run",
    description="Initializes a session and dispatches every chunk concurrently. Poll the run for progress.",
    response_model=PlanRunCreatedResponse,
    responses={422: ERROR_RESPONSES[422], 500: ERROR_RESPONSES[500]},
)
async def start_plan_run(
    request: PlanningRequest,
    registry: PlanRunRegistry = Depends(get_run_registry),
) -> PlanRunCreatedResponse:
    run = registry.start(request)
    logger.info("plan_run_accepted", run_id=run.run_id, destination=request.destination.name)
    return PlanRunCreatedResponse(run_id=run.run_id)


@router.get(
    "/{run_id}",
    operation_id="getPlanRun",
    summary="Get plan run state",
    response_model=PlanStateResponse,
    responses={404: ERROR_RESPONSES[404]},
)
async def get_plan_run(
    run_id: str,
    registry: PlanRunRegistry = Depends(get_run_registry),
) -> PlanStateResponse:
    run = _require_run(registry, run_id)
    return PlanStateResponse(**run.orchestrator.state.to_dict())


@router.post(
    "/{run_id}/chunks/{chunk_id}/retry",
    status_code=status.HTTP_202_ACCEPTED,
    operation_id="retryPlanChunk",
    summary="Retry a single chunk",
    description="Cancels the chunk's in-flight attempt (if any) and runs it again from a fresh state.",
    response_model=ChunkRetryAcceptedResponse,
    responses={404: ERROR_RESPONSES[404]},
)
async def retry_plan_chunk(
    run_id: str,
    chunk_id: int,
    registry: PlanRunRegistry = Depends(get_run_registry),
) -> ChunkRetryAcceptedResponse:
    run = _require_run(registry, run_id)
    try:
        get_chunk_definition(chunk_id, run.orchestrator.plan)
    except KeyError:
        raise ApiError(
            status_code=404,
            code="CHUNK_NOT_FOUND",
            message="Chunk not found",
            details={"chunk_id": chunk_id},
        )
    registry.retry_chunk(run_id, chunk_id)
    return ChunkRetryAcceptedResponse(run_id=run_id, chunk_id=chunk_id)


@router.delete(
    "/{run_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    operation_id="resetPlanRun",
    summary="Reset and discard a plan run",
    responses={404: ERROR_RESPONSES[404]},
)
async def reset_plan_run(
    run_id: str,
    registry: PlanRunRegistry = Depends(get_run_registry),
) -> None:
    if not registry.discard(run_id):
        _require_run(registry, run_id)
