"""Reconciliation pipeline services."""

from settlement_engine.recon.services.actuator import SettlementActuator
from settlement_engine.recon.services.balance_gate import BalanceGate, GateResult
from settlement_engine.recon.services.candidates import (
    CandidateLister,
    CandidateSet,
    ReconciliationCursor,
)
from settlement_engine.recon.services.eligibility import (
    Decision,
    PayoutEligibilityFilter,
    RefundEligibilityFilter,
    Verdict,
)
from settlement_engine.recon.services.projector import LedgerProjector
from settlement_engine.recon.services.reconciler import Outcome, Reconciler, RunResult

__all__ = [
    # Listing
    "CandidateLister",
    "CandidateSet",
    "ReconciliationCursor",
    # Eligibility
    "Decision",
    "PayoutEligibilityFilter",
    "RefundEligibilityFilter",
    "Verdict",
    # Balance gate
    "BalanceGate",
    "GateResult",
    # Actuation and projection
    "SettlementActuator",
    "LedgerProjector",
    # Run
    "Outcome",
    "Reconciler",
    "RunResult",
]
