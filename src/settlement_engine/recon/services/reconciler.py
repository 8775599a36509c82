"""Reconciler - one run of a payout or refund worker.

Pipeline per run:
    CandidateLister -> EligibilityFilter -> [BalanceGate] -> SettlementActuator
    -> LedgerProjector

Candidates are processed one at a time, oldest first. The balance gate
must observe the previous transfer's deduction before the next candidate
is checked, so there is no fan-out.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from settlement_engine.recon.config import WorkerConfig
from settlement_engine.recon.errors import (
    RUN_FATAL_ERRORS,
    CandidateTimeoutError,
    PreconditionError,
    ProviderAuthError,
    ProviderError,
)
from settlement_engine.recon.ledger.base import LedgerClient
from settlement_engine.recon.providers.base import PaymentProvider
from settlement_engine.recon.services.actuator import SettlementActuator
from settlement_engine.recon.services.balance_gate import BalanceGate
from settlement_engine.recon.services.candidates import CandidateLister
from settlement_engine.recon.services.eligibility import (
    PayoutEligibilityFilter,
    RefundEligibilityFilter,
    Verdict,
)
from settlement_engine.recon.services.projector import LedgerProjector
from settlement_engine.recon.types import (
    LOCAL_FAILED,
    ActuationMode,
    ActuationResult,
    Candidate,
    SettlementKind,
    SettlementRecord,
    is_resolved_status,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Outcome(str, Enum):
    """Per-candidate outcome of a run."""

    CREATED = "created"
    RETRIED = "retried"
    SYNCED = "synced"
    DEFERRED = "deferred"  # insufficient balance
    IN_FLIGHT = "in_flight"
    INELIGIBLE = "ineligible"
    FAILED = "failed"


@dataclass
class RunResult:
    """Result of a reconciliation run."""

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
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Whether the run completed without errors."""
        return not self.aborted and self.failed == 0 and not self.errors

    def count(self, outcome: Outcome) -> None:
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "worker": self.worker,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "candidates": self.candidates,
            "created": self.created,
            "retried": self.retried,
            "synced": self.synced,
            "deferred": self.deferred,
            "in_flight": self.in_flight,
            "ineligible": self.ineligible,
            "failed": self.failed,
            "invalid": self.invalid,
            "aborted": self.aborted,
            "errors": list(self.errors),
        }


class Reconciler:
    """Runs the reconciliation pipeline for one worker kind."""

    def __init__(
        self,
        *,
        config: WorkerConfig,
        ledger: LedgerClient,
        provider: PaymentProvider,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.config = config
        self.kind = config.kind
        self.clock = clock
        self.lister = CandidateLister(
            ledger,
            kind=config.kind,
            states=config.states,
            created_at_start=config.created_at_start,
            page_size=config.page_size,
            unresolved_only=config.unresolved_only,
        )
        self.projector = LedgerProjector(
            ledger,
            kind=config.kind,
            max_error_log_entries=config.max_error_log_entries,
            clock=clock,
        )
        if config.kind is SettlementKind.PAYOUT:
            self.eligibility = PayoutEligibilityFilter(provider, self.projector)
        else:
            self.eligibility = RefundEligibilityFilter()
        self.balance_gate = BalanceGate(provider, config.balance_gate)
        self.actuator = SettlementActuator(
            provider,
            kind=config.kind,
            callback_url=config.callback_url,
        )

    @property
    def name(self) -> str:
        return self.config.name

    async def run(self) -> RunResult:
        """Reconcile every candidate once.

        Raises:
            QueryError: If the candidate listing fails. Nothing is written.
            ProviderAuthError: If the provider rejects our credentials.
        """
        result = RunResult(worker=self.name, started_at=self.clock())
        logger.info("%s: checking for transactions needing %s", self.name, self.kind.value)

        candidates = await self.lister.list_candidates()
        result.candidates = len(candidates)
        result.invalid = len(candidates.invalid)

        if not candidates.records:
            logger.info("%s: no pending %ss found", self.name, self.kind.value)
        else:
            logger.info("%s: found %d transactions to check", self.name, len(candidates))

        for record in candidates:
            outcome = await self._process(record, result)
            result.count(outcome)

        result.finished_at = self.clock()
        logger.info(
            "%s: finished. created=%d retried=%d synced=%d deferred=%d failed=%d",
            self.name,
            result.created,
            result.retried,
            result.synced,
            result.deferred,
            result.failed,
        )
        return result

    async def _process(self, record: SettlementRecord, result: RunResult) -> Outcome:
        """Settle one record; failures stay inside this boundary."""
        timeout = self.config.candidate_timeout_seconds
        try:
            try:
                return await asyncio.wait_for(self._settle(record), timeout=timeout)
            except asyncio.TimeoutError as e:
                raise CandidateTimeoutError(
                    f"Processing {record.id} exceeded {timeout} seconds"
                ) from e
        except RUN_FATAL_ERRORS:
            raise
        except Exception as e:
            logger.exception("%s: failed to process %s for %s", self.name, self.kind.value, record.id)
            result.errors.append({
                "code": "PRECONDITION" if isinstance(e, PreconditionError) else "ACTUATION_ERROR",
                "transaction_id": record.id,
                "message": str(e) or type(e).__name__,
            })
            await self.projector.record_failure(record, e)
            return Outcome.FAILED

    async def _settle(self, record: SettlementRecord) -> Outcome:
        decision = await self.eligibility.evaluate(record)
        if decision.verdict is Verdict.SYNCED:
            return Outcome.SYNCED
        if decision.verdict is Verdict.IN_FLIGHT:
            return Outcome.IN_FLIGHT
        if decision.verdict is Verdict.INELIGIBLE:
            return Outcome.INELIGIBLE

        candidate = Candidate(record=record, mode=decision.mode or ActuationMode.CREATE)

        # A failed earlier attempt may have reached the provider without
        # its reference being stored.
        if not candidate.is_retry and record.external_status == LOCAL_FAILED:
            existing = await self.actuator.find_existing(record)
            if existing is not None:
                return await self._adopt(candidate, existing)

        if self.config.balance_gate.enabled:
            if record.amount is None:
                raise PreconditionError(f"Transaction has no {self.kind.value} total.")
            gate = await self.balance_gate.check(record.amount.currency, record.amount.major)
            if not gate.passed:
                return Outcome.DEFERRED

        try:
            actuation = await self.actuator.actuate(candidate)
        except ProviderAuthError:
            raise
        except ProviderError:
            if candidate.is_retry:
                raise
            existing = await self.actuator.find_existing(record)
            if existing is None:
                raise
            return await self._adopt(candidate, existing)

        await self.projector.record_success(candidate, actuation)
        return Outcome.RETRIED if candidate.is_retry else Outcome.CREATED

    async def _adopt(self, candidate: Candidate, existing: ActuationResult) -> Outcome:
        """Store a settlement the provider already holds for this record.

        The record then follows the usual path on later runs: synced if
        resolved, retried if failed, otherwise left in flight.
        """
        logger.warning(
            "%s: %s already exists for %s as %s, storing it instead of creating",
            self.name,
            self.kind.value,
            candidate.record.id,
            existing.external_id,
        )
        await self.projector.record_success(candidate, existing)
        if is_resolved_status(self.kind, existing.status):
            return Outcome.SYNCED
        return Outcome.IN_FLIGHT
