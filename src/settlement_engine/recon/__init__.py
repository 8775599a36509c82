"""Settlement reconciliation workers.

This package contains:
- Candidate listing over the marketplace ledger
- Eligibility and balance gating
- Transfer and refund actuation against the payment provider
- Projection of outcomes back into ledger metadata
- Scheduling with a per-worker run guard
"""

from settlement_engine.recon.config import (
    BalanceGateConfig,
    ProviderConfig,
    ReconciliationConfig,
    WorkerConfig,
    payout_worker_config,
    refund_worker_config,
    validate_production_config,
)
from settlement_engine.recon.errors import (
    CandidateTimeoutError,
    InvalidTransitionError,
    LedgerWriteError,
    PreconditionError,
    ProviderAuthError,
    ProviderError,
    QueryError,
    ReconciliationError,
)
from settlement_engine.recon.scheduler import RunGuard, RunState, WorkerRunner, WorkerScheduler
from settlement_engine.recon.services import Outcome, Reconciler, RunResult
from settlement_engine.recon.types import (
    ActuationMode,
    Candidate,
    Money,
    SettlementKind,
    SettlementRecord,
    settlement_reference,
)

__all__ = [
    # Configuration
    "BalanceGateConfig",
    "ProviderConfig",
    "ReconciliationConfig",
    "WorkerConfig",
    "payout_worker_config",
    "refund_worker_config",
    "validate_production_config",
    # Errors
    "CandidateTimeoutError",
    "InvalidTransitionError",
    "LedgerWriteError",
    "PreconditionError",
    "ProviderAuthError",
    "ProviderError",
    "QueryError",
    "ReconciliationError",
    # Scheduling
    "RunGuard",
    "RunState",
    "WorkerRunner",
    "WorkerScheduler",
    # Run
    "Outcome",
    "Reconciler",
    "RunResult",
    # Types
    "ActuationMode",
    "Candidate",
    "Money",
    "SettlementKind",
    "SettlementRecord",
    "settlement_reference",
]
