"""Stub payment provider for local development and testing.

Keeps transfers, refunds and balances in memory. Creating a transfer
debits the balance, so a later balance check in the same run sees the
deduction.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any

from settlement_engine.recon.errors import ProviderError
from settlement_engine.recon.providers.base import (
    ProviderResult,
    RefundRequest,
    TransferRequest,
)


class StubProvider:
    """In-memory PaymentProvider.

    In production this is replaced by a real adapter such as
    FlutterwaveProvider.
    """

    provider_name = "stub"

    def __init__(
        self,
        balances: dict[str, Decimal] | None = None,
        transfer_status: str = "NEW",
        refund_status: str = "completed",
    ):
        """Initialize stub provider.

        Args:
            balances: Available balance per currency, in major units.
            transfer_status: Status reported for newly created transfers.
            refund_status: Status reported for newly created refunds.
        """
        self.balances: dict[str, Decimal] = dict(balances or {})
        self.transfer_status = transfer_status
        self.refund_status = refund_status
        self._transfers: dict[str, dict[str, Any]] = {}
        self._refunds: dict[str, dict[str, Any]] = {}
        self._references: dict[str, str] = {}
        # Ordered log of (operation, argument) for assertions
        self.calls: list[tuple[str, Any]] = []
        # Reference -> error raised when that reference is created
        self.fail_references: dict[str, Exception] = {}

    def count(self, operation: str) -> int:
        """Number of calls made to ``operation``."""
        return sum(1 for op, _ in self.calls if op == operation)

    async def get_balance(self, currency: str) -> Decimal:
        self.calls.append(("get_balance", currency))
        return self.balances.get(currency, Decimal("0"))

    async def create_transfer(self, request: TransferRequest) -> ProviderResult:
        self.calls.append(("create_transfer", request))
        self._raise_if_scripted(request.reference)
        if request.reference in self._references:
            raise ProviderError(f"Transfer with reference {request.reference} already exists")

        transfer_id = str(uuid.uuid4().int)[:9]
        self._transfers[transfer_id] = {
            "request": request,
            "status": self.transfer_status,
        }
        self._references[request.reference] = transfer_id
        self.balances[request.currency] = self.balances.get(request.currency, Decimal("0")) - request.amount
        return ProviderResult(id=transfer_id, status=self.transfer_status)

    async def retry_transfer(self, external_id: str) -> ProviderResult:
        self.calls.append(("retry_transfer", external_id))
        transfer = self._transfers.get(external_id)
        if transfer is None:
            raise ProviderError(f"Transfer {external_id} not found", status_code=404)
        if transfer["status"] != "FAILED":
            raise ProviderError(f"Transfer {external_id} is not in a failed state")
        transfer["status"] = self.transfer_status
        return ProviderResult(id=external_id, status=self.transfer_status)

    async def get_transfer(self, external_id: str) -> ProviderResult:
        self.calls.append(("get_transfer", external_id))
        transfer = self._transfers.get(external_id)
        if transfer is None:
            raise ProviderError(f"Transfer {external_id} not found", status_code=404)
        return ProviderResult(id=external_id, status=transfer["status"])

    async def create_refund(self, request: RefundRequest) -> ProviderResult:
        self.calls.append(("create_refund", request))
        self._raise_if_scripted(request.reference)
        if request.reference in self._references:
            raise ProviderError(f"Refund with reference {request.reference} already exists")

        refund_id = str(uuid.uuid4().int)[:9]
        self._refunds[refund_id] = {"request": request, "status": self.refund_status}
        self._references[request.reference] = refund_id
        return ProviderResult(id=refund_id, status=self.refund_status)

    async def retry_refund(self, external_id: str) -> ProviderResult:
        self.calls.append(("retry_refund", external_id))
        refund = self._refunds.get(external_id)
        if refund is None:
            raise ProviderError(f"Refund {external_id} not found", status_code=404)
        refund["status"] = self.refund_status
        return ProviderResult(id=external_id, status=self.refund_status)

    async def find_transfer(self, reference: str) -> ProviderResult | None:
        self.calls.append(("find_transfer", reference))
        transfer_id = self._references.get(reference)
        if transfer_id is None or transfer_id not in self._transfers:
            return None
        return ProviderResult(id=transfer_id, status=self._transfers[transfer_id]["status"])

    async def find_refund(self, reference: str, source_charge_id: str) -> ProviderResult | None:
        self.calls.append(("find_refund", reference))
        refund_id = self._references.get(reference)
        if refund_id is None or refund_id not in self._refunds:
            return None
        return ProviderResult(id=refund_id, status=self._refunds[refund_id]["status"])

    def _raise_if_scripted(self, reference: str) -> None:
        error = self.fail_references.get(reference)
        if error is not None:
            raise error

    def seed_transfer(self, transfer_id: str, status: str, reference: str | None = None) -> None:
        """Register a transfer created outside this process (for testing)."""
        self._transfers[transfer_id] = {"request": None, "status": status}
        if reference:
            self._references[reference] = transfer_id

    def seed_refund(self, refund_id: str, status: str, reference: str | None = None) -> None:
        """Register a refund created outside this process (for testing)."""
        self._refunds[refund_id] = {"request": None, "status": status}
        if reference:
            self._references[reference] = refund_id

    def simulate_transfer_status(self, transfer_id: str, status: str) -> None:
        """Move a transfer to ``status`` (e.g. SUCCESSFUL, FAILED)."""
        if transfer_id in self._transfers:
            self._transfers[transfer_id]["status"] = status

    def id_for_reference(self, reference: str) -> str | None:
        """Transfer or refund id created under ``reference`` (for testing)."""
        return self._references.get(reference)
