"""API test fixtures.

The app runs in-process over httpx's ASGI transport with an in-memory
ledger and a stub provider; the scheduler is not started.
"""

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from settlement_engine.api.app import create_app
from settlement_engine.recon.config import (
    ProviderConfig,
    ReconciliationConfig,
    payout_worker_config,
    refund_worker_config,
)
from settlement_engine.recon.ledger import InMemoryLedger, LedgerMoney, LedgerTransaction
from settlement_engine.recon.providers import StubProvider
from settlement_engine.recon.runtime import ReconciliationRuntime, build_runtime

BASE_TIME = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def completed_transaction(tx_id: str, minutes: int = 0) -> LedgerTransaction:
    return LedgerTransaction(
        id=tx_id,
        state="state/completed",
        created_at=BASE_TIME,
        last_transitioned_at=BASE_TIME + timedelta(minutes=minutes),
        payout_total=LedgerMoney(amount=150000, currency="NGN"),
        payin_total=LedgerMoney(amount=160000, currency="NGN"),
        provider_private_data={
            "flutterwaveSubaccount": {"accountBank": "044", "accountNumber": "0690000031"}
        },
    )


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger([completed_transaction("tx1", 0), completed_transaction("tx2", 5)])


@pytest.fixture
def provider() -> StubProvider:
    return StubProvider(balances={"NGN": Decimal("2000")})


@pytest.fixture
def runtime(ledger: InMemoryLedger, provider: StubProvider) -> ReconciliationRuntime:
    config = ReconciliationConfig(
        payout=payout_worker_config(callback_url="https://market.example/api/payments/payout-webhook"),
        refund=refund_worker_config(),
        provider=ProviderConfig(name="stub"),
    )
    return build_runtime(config=config, ledger=ledger, provider=provider)


@pytest_asyncio.fixture
async def app(runtime: ReconciliationRuntime) -> AsyncGenerator[FastAPI, None]:
    """App with its lifespan entered."""
    application = create_app(runtime, start_scheduler=False)
    async with application.router.lifespan_context(application):
        yield application


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
