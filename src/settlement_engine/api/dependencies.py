"""FastAPI dependencies for dependency injection."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from settlement_engine.recon.runtime import ReconciliationRuntime


def get_runtime(request: Request) -> ReconciliationRuntime:
    """Get the reconciliation runtime attached at startup."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Reconciliation runtime is not initialised",
        )
    return runtime


# Type aliases for cleaner dependency injection
Runtime = Annotated[ReconciliationRuntime, Depends(get_runtime)]
