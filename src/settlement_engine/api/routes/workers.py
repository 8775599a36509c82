"""Worker status and manual trigger endpoints."""

from fastapi import APIRouter, HTTPException, status

from settlement_engine.api.dependencies import Runtime
from settlement_engine.api.schemas import (
    ErrorResponse,
    RunResultResponse,
    WorkerListResponse,
    WorkerStatusResponse,
)
from settlement_engine.recon.types import SettlementKind

router = APIRouter(prefix="/workers", tags=["workers"])


@router.get("", response_model=WorkerListResponse)
async def list_workers(runtime: Runtime) -> WorkerListResponse:
    """List workers with their guard state and last run."""
    return WorkerListResponse(
        items=[WorkerStatusResponse.model_validate(s) for s in runtime.scheduler.status()],
        scheduler_running=runtime.scheduler.scheduler.running,
    )


@router.post(
    "/{kind}/run",
    response_model=RunResultResponse,
    responses={409: {"model": ErrorResponse}},
)
async def trigger_worker(kind: SettlementKind, runtime: Runtime) -> RunResultResponse:
    """Run a worker now.

    Goes through the same run guard as the scheduler, so a trigger while
    the worker is running is refused rather than queued.
    """
    result = await runtime.run_once(kind)
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"{kind.value} worker is already running",
        )
    return RunResultResponse.model_validate(result.to_dict())
