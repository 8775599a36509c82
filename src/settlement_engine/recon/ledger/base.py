"""Ledger protocol and wire types.

The ledger is the system of record for marketplace transactions. The
reconciler only lists transactions and merges metadata into them; the
transition call is used by the adjacent payment confirmation path.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field

from settlement_engine.recon.types import (
    Destination,
    Money,
    SettlementKind,
    SettlementMetadata,
    SettlementRecord,
)


# Transitions the confirmation and expiry paths use, and the state each lands in
DEFAULT_TRANSITION_TARGETS: dict[str, str] = {
    "transition/confirm-payment": "state/purchased",
    "transition/confirm-payment-via-webhook": "state/purchased",
    "transition/complete": "state/completed",
    "transition/cancel": "state/canceled",
    "transition/expire-payment": "state/payment-expired",
}


class LedgerMoney(BaseModel):
    """Money as the ledger reports it (minor units)."""

    amount: int
    currency: str


class LedgerTransaction(BaseModel):
    """A ledger transaction, validated at the read boundary."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    state: str
    created_at: datetime = Field(alias="createdAt")
    last_transitioned_at: datetime = Field(alias="lastTransitionedAt")
    payout_total: LedgerMoney | None = Field(default=None, alias="payoutTotal")
    payin_total: LedgerMoney | None = Field(default=None, alias="payinTotal")
    metadata: dict[str, Any] = Field(default_factory=dict)
    provider_private_data: dict[str, Any] = Field(default_factory=dict, alias="providerPrivateData")


class LedgerPage(BaseModel):
    """One page of a transaction query."""

    transactions: list[LedgerTransaction]
    total_pages: int


class LedgerClient(Protocol):
    """Protocol for ledger backends."""

    async def list_transactions(
        self,
        *,
        states: Sequence[str],
        created_at_start: datetime | None,
        page: int,
        per_page: int,
        metadata_flags: Mapping[str, bool] | None = None,
    ) -> LedgerPage:
        """Fetch one page of transactions in any of ``states``.

        Pages are 1-based. ``total_pages`` reports how many pages the
        full result set spans for the given ``per_page``. A flag in
        ``metadata_flags`` matches when the metadata value equals it, a
        missing key counting as False.
        """
        ...

    async def update_metadata(self, transaction_id: str, metadata: Mapping[str, Any]) -> None:
        """Merge ``metadata`` into the transaction's metadata.

        Keys not present in ``metadata`` are left untouched.
        """
        ...

    async def transition(
        self,
        transaction_id: str,
        transition: str,
        params: Mapping[str, Any] | None = None,
    ) -> LedgerTransaction:
        """Apply a named state transition and return the updated transaction."""
        ...


def _amount_for(kind: SettlementKind, tx: LedgerTransaction) -> Money | None:
    total = tx.payout_total if kind is SettlementKind.PAYOUT else tx.payin_total
    if total is None:
        return None
    return Money(amount=total.amount, currency=total.currency)


def _destination_for(tx: LedgerTransaction) -> Destination | None:
    subaccount = tx.provider_private_data.get("flutterwaveSubaccount") or {}
    bank = subaccount.get("accountBank")
    number = subaccount.get("accountNumber")
    if not bank or not number:
        return None
    return Destination(account_bank=str(bank), account_number=str(number))


def to_settlement_record(kind: SettlementKind, tx: LedgerTransaction) -> SettlementRecord:
    """Build the typed view of ``tx`` for a worker of ``kind``.

    Raises:
        ValueError: If the settlement metadata is malformed.
    """
    return SettlementRecord(
        id=tx.id,
        kind=kind,
        amount=_amount_for(kind, tx),
        last_transitioned_at=tx.last_transitioned_at,
        metadata=SettlementMetadata.from_raw(kind, tx.metadata),
        destination=_destination_for(tx) if kind is SettlementKind.PAYOUT else None,
    )
