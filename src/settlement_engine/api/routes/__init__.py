"""API routes."""

from settlement_engine.api.routes.health import router as health_router
from settlement_engine.api.routes.workers import router as workers_router

__all__ = ["health_router", "workers_router"]
