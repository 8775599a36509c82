"""Entry point: run the reconciliation scheduler, with or without the ops API."""

from __future__ import annotations

import asyncio
import logging

import uvicorn

from settlement_engine.config import Settings, get_settings
from settlement_engine.recon.cli import configure_logging
from settlement_engine.recon.runtime import build_runtime

logger = logging.getLogger(__name__)


async def _run_scheduler(settings: Settings) -> None:
    runtime = build_runtime(settings)
    runtime.scheduler.start()
    logger.info("Reconciliation scheduler started")
    try:
        # Runs until cancelled (Ctrl+C or SIGTERM via asyncio.run)
        await asyncio.Event().wait()
    finally:
        await runtime.aclose()
        logger.info("Reconciliation scheduler stopped")


def serve(settings: Settings, *, enable_api: bool = True) -> None:
    """Run the workers until interrupted."""
    if enable_api:
        from settlement_engine.api.app import create_app

        uvicorn.run(
            create_app(settings=settings),
            host=settings.host,
            port=settings.port,
            log_level="debug" if settings.debug else settings.log_level.lower(),
        )
        return

    try:
        asyncio.run(_run_scheduler(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")


def main() -> None:
    """Run the application."""
    settings = get_settings()
    configure_logging(settings.log_level)
    serve(settings, enable_api=settings.enable_api)


if __name__ == "__main__":
    main()
