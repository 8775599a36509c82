"""Eligibility filters - decide whether a record needs a settlement action.

The payout filter asks the provider for the live status of an existing
transfer. A transfer the provider already reports as SUCCESSFUL or
PENDING is synced to the ledger here and never reaches the actuator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from settlement_engine.recon.providers.base import PaymentProvider
from settlement_engine.recon.services.projector import LedgerProjector
from settlement_engine.recon.types import (
    PAYOUT_RESOLVED_STATUSES,
    REFUND_FAILURE_MARKERS,
    STATUS_FAILED,
    ActuationMode,
    SettlementRecord,
)

logger = logging.getLogger(__name__)


class Verdict(str, Enum):
    """What the reconciler should do with a record."""

    ACTUATE = "actuate"
    SYNCED = "synced"  # resolved externally, ledger now updated
    IN_FLIGHT = "in_flight"  # provider still working on it
    INELIGIBLE = "ineligible"


@dataclass(frozen=True)
class Decision:
    """Filter outcome for one record."""

    verdict: Verdict
    mode: ActuationMode | None = None
    provider_status: str | None = None

    @classmethod
    def actuate(cls, mode: ActuationMode, provider_status: str | None = None) -> Decision:
        return cls(verdict=Verdict.ACTUATE, mode=mode, provider_status=provider_status)


class PayoutEligibilityFilter:
    """Payout eligible iff no transfer exists yet, or the transfer FAILED."""

    def __init__(self, provider: PaymentProvider, projector: LedgerProjector):
        self.provider = provider
        self.projector = projector

    async def evaluate(self, record: SettlementRecord) -> Decision:
        if record.resolved:
            return Decision(verdict=Verdict.INELIGIBLE)

        reference = record.external_reference
        if reference is None:
            return Decision.actuate(ActuationMode.CREATE)

        live = await self.provider.get_transfer(reference)
        if live.status in PAYOUT_RESOLVED_STATUSES:
            logger.info("Transfer %s for %s is already %s", reference, record.id, live.status)
            await self.projector.record_sync(record, live.status)
            return Decision(verdict=Verdict.SYNCED, provider_status=live.status)

        if live.status == STATUS_FAILED:
            return Decision.actuate(ActuationMode.RETRY, provider_status=live.status)

        logger.info("Transfer %s for %s is still %s, leaving it", reference, record.id, live.status)
        return Decision(verdict=Verdict.IN_FLIGHT, provider_status=live.status)


class RefundEligibilityFilter:
    """Refund eligible iff the charge is known, the refund is new or failed,
    and the record is not already resolved."""

    async def evaluate(self, record: SettlementRecord) -> Decision:
        metadata = record.metadata
        if metadata.resolved or not metadata.source_charge_id:
            return Decision(verdict=Verdict.INELIGIBLE)

        if metadata.external_reference is None:
            return Decision.actuate(ActuationMode.CREATE)
        if metadata.external_status in REFUND_FAILURE_MARKERS:
            return Decision.actuate(ActuationMode.RETRY, provider_status=metadata.external_status)
        return Decision(verdict=Verdict.INELIGIBLE)
