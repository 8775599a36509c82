"""Pydantic schemas for API request/response models."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


# ============================================================================
# Run schemas
# ============================================================================


class RunErrorResponse(BaseModel):
    """One error collected during a run."""

    code: str
    message: str
    transaction_id: str | None = None


class RunResultResponse(BaseModel):
    """Summary of a single reconciliation run."""

    worker: str
    started_at: datetime
    finished_at: datetime | None = None
    candidates: int = 0
    created: int = 0
    retried: int = 0
    synced: int = 0
    deferred: int = 0
    in_flight: int = 0
    ineligible: int = 0
    failed: int = 0
    invalid: int = 0
    aborted: bool = False
    errors: list[RunErrorResponse] = Field(default_factory=list)


# ============================================================================
# Worker schemas
# ============================================================================


class WorkerStatusResponse(BaseModel):
    """Current state of one worker."""

    worker: str
    state: str
    schedule: str
    runs_started: int
    runs_skipped: int
    next_run_time: datetime | None = None
    last_result: RunResultResponse | None = None


class WorkerListResponse(BaseModel):
    """All workers hosted by this process."""

    items: list[WorkerStatusResponse]
    scheduler_running: bool


class ErrorResponse(BaseModel):
    """Error response schema."""

    detail: str
    code: str | None = None
    context: dict[str, Any] | None = None
