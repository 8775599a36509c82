"""Health check endpoints."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from settlement_engine.api.dependencies import Runtime
from settlement_engine.recon.ledger import SqlLedger

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    ledger: str
    scheduler: str


async def _ledger_status(ledger: object) -> str:
    if not isinstance(ledger, SqlLedger):
        return "external"
    try:
        async with ledger.session_factory() as session:
            await session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Ledger database health check failed")
        return "unhealthy"
    return "healthy"


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
)
async def health_check(runtime: Runtime) -> HealthResponse:
    """Check ledger and scheduler health."""
    ledger_status = await _ledger_status(runtime.ledger)
    scheduler_status = "running" if runtime.scheduler.scheduler.running else "stopped"

    return HealthResponse(
        status="healthy" if ledger_status != "unhealthy" else "degraded",
        timestamp=datetime.now(timezone.utc),
        ledger=ledger_status,
        scheduler=scheduler_status,
    )


@router.get("/ready", status_code=status.HTTP_200_OK)
async def readiness_check() -> dict[str, str]:
    """Readiness check for container orchestration."""
    return {"status": "ready"}


@router.get("/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> dict[str, str]:
    """Liveness check for container orchestration."""
    return {"status": "alive"}
