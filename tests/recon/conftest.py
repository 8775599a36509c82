"""Reconciliation test fixtures.

Everything here runs against InMemoryLedger and StubProvider, so no
database or network is needed.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import pytest

from settlement_engine.config import Settings
from settlement_engine.recon.config import payout_worker_config, refund_worker_config
from settlement_engine.recon.ledger import InMemoryLedger, LedgerMoney, LedgerTransaction
from settlement_engine.recon.providers import StubProvider
from settlement_engine.recon.services import Reconciler

BASE_TIME = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
FIXED_NOW = datetime(2025, 3, 2, 9, 30, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return FIXED_NOW


class LedgerTestData:
    """Builds ledger transactions with sensible defaults."""

    def __init__(self) -> None:
        self._counter = 0

    def transaction(
        self,
        tx_id: str | None = None,
        *,
        state: str = "state/completed",
        transitioned_minutes: int | None = None,
        created_minutes: int | None = None,
        payout_amount: int | None = 150000,
        payin_amount: int | None = 160000,
        currency: str = "NGN",
        metadata: dict[str, Any] | None = None,
        account_bank: str | None = "044",
        account_number: str | None = "0690000031",
    ) -> LedgerTransaction:
        self._counter += 1
        tx_id = tx_id or f"tx{self._counter}"
        transitioned = BASE_TIME + timedelta(
            minutes=self._counter if transitioned_minutes is None else transitioned_minutes
        )
        created = BASE_TIME - timedelta(days=1) + timedelta(
            minutes=self._counter if created_minutes is None else created_minutes
        )

        private_data: dict[str, Any] = {}
        if account_bank or account_number:
            private_data["flutterwaveSubaccount"] = {
                "accountBank": account_bank,
                "accountNumber": account_number,
            }

        return LedgerTransaction(
            id=tx_id,
            state=state,
            created_at=created,
            last_transitioned_at=transitioned,
            payout_total=LedgerMoney(amount=payout_amount, currency=currency) if payout_amount is not None else None,
            payin_total=LedgerMoney(amount=payin_amount, currency=currency) if payin_amount is not None else None,
            metadata=dict(metadata or {}),
            provider_private_data=private_data,
        )

    def refund_transaction(
        self,
        tx_id: str | None = None,
        *,
        state: str = "state/payment-expired",
        charge_id: str | None = "987654",
        metadata: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> LedgerTransaction:
        merged = dict(metadata or {})
        if charge_id:
            merged.setdefault("flutterwaveTransactionId", charge_id)
        return self.transaction(tx_id, state=state, metadata=merged, **kwargs)


@pytest.fixture
def test_data() -> LedgerTestData:
    """Transaction builder."""
    return LedgerTestData()


@pytest.fixture
def ledger() -> InMemoryLedger:
    """Empty in-memory ledger."""
    return InMemoryLedger()


@pytest.fixture
def provider() -> StubProvider:
    """Stub provider holding 100,000 NGN."""
    return StubProvider(balances={"NGN": Decimal("100000")})


@pytest.fixture
def payout_reconciler(ledger: InMemoryLedger, provider: StubProvider) -> Reconciler:
    """Payout reconciler wired to the in-memory ledger and stub provider."""
    return Reconciler(
        config=payout_worker_config(callback_url="https://market.example/api/payments/payout-webhook"),
        ledger=ledger,
        provider=provider,
        clock=fixed_clock,
    )


@pytest.fixture
def refund_reconciler(ledger: InMemoryLedger, provider: StubProvider) -> Reconciler:
    """Refund reconciler wired to the in-memory ledger and stub provider."""
    return Reconciler(
        config=refund_worker_config(),
        ledger=ledger,
        provider=provider,
        clock=fixed_clock,
    )


@pytest.fixture
def now() -> datetime:
    """The instant the fixed clock reports."""
    return FIXED_NOW


BASE_SETTINGS = Settings(
    database_url="sqlite+aiosqlite:///:memory:",
    ledger_backend="sql",
    ledger_api_base_url="https://flex-integ-api.example.com",
    ledger_client_id=None,
    ledger_client_secret=None,
    provider_name="stub",
    flutterwave_secret_key=None,
    flutterwave_base_url="https://api.flutterwave.com/v3",
    marketplace_root_url="https://market.example",
    payout_schedule="0 * * * *",
    refund_schedule="30 * * * *",
    run_on_startup=False,
    settlement_start_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
    candidate_timeout_seconds=60,
    log_level="INFO",
    enable_api=True,
    host="127.0.0.1",
    port=8000,
    debug=False,
)


@pytest.fixture
def make_settings():
    """Build Settings from test defaults with overrides."""

    def _make(**overrides: Any) -> Settings:
        return replace(BASE_SETTINGS, **overrides)

    return _make
