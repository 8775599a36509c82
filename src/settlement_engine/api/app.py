"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from settlement_engine.api.routes import health_router, workers_router
from settlement_engine.config import Settings, get_settings
from settlement_engine.recon.runtime import ReconciliationRuntime, build_runtime

logger = logging.getLogger(__name__)


def create_app(
    runtime: ReconciliationRuntime | None = None,
    *,
    settings: Settings | None = None,
    start_scheduler: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        runtime: Pre-built runtime. If None, one is built from settings
            at startup and closed at shutdown.
        settings: Settings used when no runtime is given.
        start_scheduler: Start the cron scheduler with the app.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        owned = runtime is None
        app.state.runtime = runtime or build_runtime(settings or get_settings())
        if start_scheduler:
            app.state.runtime.scheduler.start()
        try:
            yield
        finally:
            if owned:
                await app.state.runtime.aclose()
            else:
                app.state.runtime.scheduler.shutdown()

    app = FastAPI(
        title="Settlement Reconciliation API",
        description="Payout and refund reconciliation workers",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Exception handlers
    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(workers_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
