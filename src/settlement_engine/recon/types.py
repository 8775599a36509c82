"""Domain types for settlement reconciliation.

A SettlementRecord is a typed view of a ledger transaction. Each kind keeps
its own metadata vocabulary on the ledger so that checkout and webhook
handlers, which write the same keys, stay compatible.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

# Provider-reported transfer statuses
STATUS_SUCCESSFUL = "SUCCESSFUL"
STATUS_PENDING = "PENDING"
STATUS_FAILED = "FAILED"

# Written by us when actuation failed at our layer
LOCAL_FAILED = "failed"

PAYOUT_RESOLVED_STATUSES = frozenset({STATUS_SUCCESSFUL, STATUS_PENDING})
REFUND_FAILURE_MARKERS = frozenset({STATUS_FAILED, LOCAL_FAILED})

SOURCE_CHARGE_KEY = "flutterwaveTransactionId"


class SettlementKind(str, Enum):
    """Kind of settlement action a worker performs."""

    PAYOUT = "payout"
    REFUND = "refund"


class ActuationMode(str, Enum):
    """Decided once by the eligibility filter, passed to the actuator."""

    CREATE = "create"
    RETRY = "retry"


@dataclass(frozen=True)
class MetadataKeys:
    """Ledger metadata keys used by one settlement kind."""

    reference: str
    status: str
    resolved: str
    processed_at: str
    error_log: str


METADATA_KEYS: dict[SettlementKind, MetadataKeys] = {
    SettlementKind.PAYOUT: MetadataKeys(
        reference="transferId",
        status="transferStatus",
        resolved="transferred",
        processed_at="transferProcessedAt",
        error_log="payoutErrorLogs",
    ),
    SettlementKind.REFUND: MetadataKeys(
        reference="refundId",
        status="refundStatus",
        resolved="refunded",
        processed_at="refundProcessedAt",
        error_log="refundErrorLogs",
    ),
}

_REFERENCE_PREFIX = {
    SettlementKind.PAYOUT: "payout",
    SettlementKind.REFUND: "refund",
}


def settlement_reference(kind: SettlementKind, record_id: str) -> str:
    """Deterministic idempotency reference for a Create action.

    Depends on nothing but the kind and the ledger id, so a resubmission
    after a crash carries the same reference and the provider rejects it
    as a duplicate.
    """
    return f"{_REFERENCE_PREFIX[kind]}_{record_id}"


def is_resolved_status(kind: SettlementKind, status: str | None) -> bool:
    """Whether a provider status means no further action is needed."""
    if status is None:
        return False
    if kind is SettlementKind.PAYOUT:
        return status in PAYOUT_RESOLVED_STATUSES
    # Refund statuses come back lower-case: completed/pending/failed
    return status.lower() != LOCAL_FAILED


@dataclass(frozen=True)
class Money:
    """Amount in minor units plus ISO currency code."""

    amount: int
    currency: str

    @property
    def major(self) -> Decimal:
        """Amount in major units, as the provider expects it."""
        return Decimal(self.amount) / 100


@dataclass(frozen=True)
class ErrorLogEntry:
    """One appended failure on a record."""

    date: str
    error: str

    def to_dict(self) -> dict[str, str]:
        return {"date": self.date, "error": self.error}

    @classmethod
    def from_raw(cls, raw: Any) -> ErrorLogEntry:
        if not isinstance(raw, Mapping):
            raise ValueError(f"error log entry must be an object, got {type(raw).__name__}")
        return cls(date=str(raw.get("date", "")), error=str(raw.get("error", "")))


@dataclass(frozen=True)
class SettlementMetadata:
    """Typed settlement fields extracted from open ledger metadata."""

    external_reference: str | None = None
    external_status: str | None = None
    resolved: bool = False
    processed_at: str | None = None
    error_log: tuple[ErrorLogEntry, ...] = ()
    source_charge_id: str | None = None

    @classmethod
    def from_raw(cls, kind: SettlementKind, raw: Mapping[str, Any]) -> SettlementMetadata:
        """Validate and extract the fields for ``kind``.

        Raises:
            ValueError: If a known key holds a value of the wrong shape.
        """
        keys = METADATA_KEYS[kind]

        reference = raw.get(keys.reference)
        status = raw.get(keys.status)
        resolved = raw.get(keys.resolved, False)
        log = raw.get(keys.error_log) or []
        charge = raw.get(SOURCE_CHARGE_KEY)

        if status is not None and not isinstance(status, str):
            raise ValueError(f"{keys.status} must be a string")
        if not isinstance(resolved, bool):
            raise ValueError(f"{keys.resolved} must be a boolean")
        if not isinstance(log, list):
            raise ValueError(f"{keys.error_log} must be a list")

        return cls(
            external_reference=str(reference) if reference else None,
            external_status=status,
            resolved=resolved,
            processed_at=raw.get(keys.processed_at),
            error_log=tuple(ErrorLogEntry.from_raw(entry) for entry in log),
            source_charge_id=str(charge) if charge else None,
        )


@dataclass(frozen=True)
class Destination:
    """Bank account a payout is sent to."""

    account_bank: str
    account_number: str


@dataclass(frozen=True)
class SettlementRecord:
    """A ledger transaction under reconciliation."""

    id: str
    kind: SettlementKind
    amount: Money | None
    last_transitioned_at: datetime
    metadata: SettlementMetadata = field(default_factory=SettlementMetadata)
    destination: Destination | None = None

    @property
    def external_reference(self) -> str | None:
        return self.metadata.external_reference

    @property
    def external_status(self) -> str | None:
        return self.metadata.external_status

    @property
    def resolved(self) -> bool:
        return self.metadata.resolved


@dataclass(frozen=True)
class Candidate:
    """A record selected for actuation, with its actuation mode."""

    record: SettlementRecord
    mode: ActuationMode

    @property
    def is_retry(self) -> bool:
        return self.mode is ActuationMode.RETRY


@dataclass(frozen=True)
class ActuationResult:
    """Normalized provider response to a create/retry call."""

    external_id: str
    status: str
    mode: ActuationMode
    raw: dict[str, Any] = field(default_factory=dict)
