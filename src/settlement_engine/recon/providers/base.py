"""Base protocol and types for payment providers.

All provider adapters must implement PaymentProvider protocol.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol

from settlement_engine.recon.types import Destination


@dataclass(frozen=True)
class TransferRequest:
    """Payout of funds to a destination account."""

    destination: Destination
    amount: Decimal  # major units
    currency: str
    narration: str
    reference: str
    callback_url: str | None = None


@dataclass(frozen=True)
class RefundRequest:
    """Refund of a captured charge back to the payer."""

    source_charge_id: str
    amount: Decimal  # major units
    comment: str
    reference: str


@dataclass(frozen=True)
class ProviderResult:
    """Provider-assigned id and status for a transfer or refund."""

    id: str
    status: str
    raw: dict[str, Any] = field(default_factory=dict)


class PaymentProvider(Protocol):
    """Protocol for payment provider adapters.

    Every call is asynchronous I/O. Failures raise ProviderError, or
    ProviderAuthError when credentials are missing or rejected.
    """

    provider_name: str

    async def get_balance(self, currency: str) -> Decimal:
        """Return live available balance for ``currency`` in major units."""
        ...

    async def create_transfer(self, request: TransferRequest) -> ProviderResult:
        """Create a transfer. The provider deduplicates on ``request.reference``."""
        ...

    async def retry_transfer(self, external_id: str) -> ProviderResult:
        """Retry a failed transfer by its provider id."""
        ...

    async def get_transfer(self, external_id: str) -> ProviderResult:
        """Fetch the current state of a transfer."""
        ...

    async def create_refund(self, request: RefundRequest) -> ProviderResult:
        """Refund a captured charge."""
        ...

    async def retry_refund(self, external_id: str) -> ProviderResult:
        """Retry a failed refund by its provider id."""
        ...

    async def find_transfer(self, reference: str) -> ProviderResult | None:
        """Look up a transfer by the reference it was created with."""
        ...

    async def find_refund(self, reference: str, source_charge_id: str) -> ProviderResult | None:
        """Look up a refund raised for ``source_charge_id``.

        Providers that accept a client reference match on ``reference``;
        others fall back to the refunds recorded against the charge.
        """
        ...
