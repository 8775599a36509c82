"""Settlement actuator - perform the external create or retry call.

Create requests carry a reference derived only from the record id, so a
resubmission after a crash is deduplicated by the provider, and the
settlement it already holds can be found again with ``find_existing``.
Retry calls reuse the stored external reference and never mint a new one.
"""

from __future__ import annotations

import logging

from settlement_engine.recon.errors import PreconditionError
from settlement_engine.recon.providers.base import (
    PaymentProvider,
    ProviderResult,
    RefundRequest,
    TransferRequest,
)
from settlement_engine.recon.types import (
    ActuationMode,
    ActuationResult,
    Candidate,
    SettlementKind,
    SettlementRecord,
    settlement_reference,
)

logger = logging.getLogger(__name__)

MISSING_DESTINATION = "Provider payout details missing or incomplete."


class SettlementActuator:
    """Issues transfers (payout) or refunds (refund) for candidates."""

    def __init__(
        self,
        provider: PaymentProvider,
        *,
        kind: SettlementKind,
        callback_url: str | None = None,
    ):
        self.provider = provider
        self.kind = kind
        self.callback_url = callback_url

    async def actuate(self, candidate: Candidate) -> ActuationResult:
        """Run the candidate's actuation mode against the provider.

        Raises:
            PreconditionError: If the record lacks data the call needs.
            ProviderError: If the provider call fails.
        """
        record = candidate.record
        if candidate.mode is ActuationMode.RETRY:
            response = await self._retry(record)
        elif self.kind is SettlementKind.PAYOUT:
            response = await self._create_transfer(record)
        else:
            response = await self._create_refund(record)

        logger.info(
            "%s %s for %s. External ID: %s, status: %s",
            "Retried" if candidate.is_retry else "Initiated",
            self.kind.value,
            record.id,
            response.id,
            response.status,
        )
        return ActuationResult(
            external_id=response.id,
            status=response.status,
            mode=candidate.mode,
            raw=response.raw,
        )

    async def find_existing(self, record: SettlementRecord) -> ActuationResult | None:
        """Look up a settlement already created for ``record`` at the provider.

        Returns None when the provider has nothing under the record's
        reference.
        """
        reference = settlement_reference(self.kind, record.id)
        if self.kind is SettlementKind.PAYOUT:
            found = await self.provider.find_transfer(reference)
        else:
            charge_id = record.metadata.source_charge_id
            if not charge_id:
                return None
            found = await self.provider.find_refund(reference, charge_id)
        if found is None:
            return None

        logger.info(
            "Found existing %s %s for %s, status: %s",
            self.kind.value,
            found.id,
            record.id,
            found.status,
        )
        return ActuationResult(
            external_id=found.id,
            status=found.status,
            mode=ActuationMode.CREATE,
            raw=found.raw,
        )

    async def _retry(self, record: SettlementRecord) -> ProviderResult:
        reference = record.external_reference
        if reference is None:
            raise PreconditionError(f"Cannot retry {self.kind.value} for {record.id} without an external reference.")
        logger.info("Retrying failed %s %s for %s", self.kind.value, reference, record.id)
        if self.kind is SettlementKind.PAYOUT:
            return await self.provider.retry_transfer(reference)
        return await self.provider.retry_refund(reference)

    async def _create_transfer(self, record: SettlementRecord) -> ProviderResult:
        if record.amount is None:
            raise PreconditionError("Transaction has no payout total.")
        if record.destination is None:
            raise PreconditionError(MISSING_DESTINATION)

        request = TransferRequest(
            destination=record.destination,
            amount=record.amount.major,
            currency=record.amount.currency,
            narration=f"Payout for transaction {record.id}",
            reference=settlement_reference(SettlementKind.PAYOUT, record.id),
            callback_url=self.callback_url,
        )
        return await self.provider.create_transfer(request)

    async def _create_refund(self, record: SettlementRecord) -> ProviderResult:
        if record.amount is None:
            raise PreconditionError("Transaction has no payin total.")
        charge_id = record.metadata.source_charge_id
        if not charge_id:
            raise PreconditionError("Transaction has no source charge to refund.")

        request = RefundRequest(
            source_charge_id=charge_id,
            amount=record.amount.major,
            comment=f"Refund for transaction {record.id}",
            reference=settlement_reference(SettlementKind.REFUND, record.id),
        )
        return await self.provider.create_refund(request)
