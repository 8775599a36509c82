"""Tests for SqlLedger against a SQLite database.

Tests verify:
1. Pagination reports total pages and serves pages in creation order
2. State, creation-time and metadata flag filters
3. Metadata merges keep unrelated keys
4. Writes to unknown transactions raise LedgerWriteError
5. Named transitions move the transaction to their target state, in SQL and in memory
6. A full payout run over the SQL ledger
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio

from settlement_engine.database import create_schema, get_engine, make_session_factory
from settlement_engine.recon.config import payout_worker_config
from settlement_engine.recon.errors import LedgerWriteError
from settlement_engine.recon.ledger import SqlLedger
from settlement_engine.recon.providers import StubProvider
from settlement_engine.recon.services import Reconciler


@pytest_asyncio.fixture
async def sql_ledger(tmp_path) -> AsyncGenerator[SqlLedger, None]:
    """SqlLedger over a fresh SQLite file."""
    engine = get_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await create_schema(engine)
    yield SqlLedger(make_session_factory(engine))
    await engine.dispose()


class TestSqlListing:
    """Test paged queries."""

    @pytest.mark.asyncio
    async def test_pages_and_totals(self, sql_ledger, test_data):
        """Seven rows at three per page span three pages."""
        for _ in range(7):
            await sql_ledger.add(test_data.transaction())

        first = await sql_ledger.list_transactions(
            states=["state/completed"], created_at_start=None, page=1, per_page=3
        )
        last = await sql_ledger.list_transactions(
            states=["state/completed"], created_at_start=None, page=3, per_page=3
        )

        assert first.total_pages == 3
        assert [tx.id for tx in first.transactions] == ["tx1", "tx2", "tx3"]
        assert [tx.id for tx in last.transactions] == ["tx7"]

    @pytest.mark.asyncio
    async def test_empty_result(self, sql_ledger):
        """No rows means zero pages."""
        page = await sql_ledger.list_transactions(
            states=["state/completed"], created_at_start=None, page=1, per_page=100
        )

        assert page.transactions == []
        assert page.total_pages == 0

    @pytest.mark.asyncio
    async def test_filters(self, sql_ledger, test_data):
        """Only matching states created on or after the bound are listed."""
        old = test_data.transaction("old", created_minutes=0)
        await sql_ledger.add(old)
        await sql_ledger.add(test_data.transaction("new", created_minutes=120))
        await sql_ledger.add(test_data.transaction("other", state="state/purchased", created_minutes=130))

        page = await sql_ledger.list_transactions(
            states=["state/completed"],
            created_at_start=old.created_at + timedelta(minutes=60),
            page=1,
            per_page=100,
        )

        assert [tx.id for tx in page.transactions] == ["new"]

    @pytest.mark.asyncio
    async def test_metadata_flag_filter(self, sql_ledger, test_data):
        """A False flag matches records where the key is false or missing."""
        await sql_ledger.add(test_data.transaction("open"))
        await sql_ledger.add(test_data.transaction("retrying", metadata={"transferred": False}))
        await sql_ledger.add(test_data.transaction("paid", metadata={"transferred": True}))

        unresolved = await sql_ledger.list_transactions(
            states=["state/completed"],
            created_at_start=None,
            page=1,
            per_page=100,
            metadata_flags={"transferred": False},
        )
        resolved = await sql_ledger.list_transactions(
            states=["state/completed"],
            created_at_start=None,
            page=1,
            per_page=100,
            metadata_flags={"transferred": True},
        )

        assert [tx.id for tx in unresolved.transactions] == ["open", "retrying"]
        assert unresolved.total_pages == 1
        assert [tx.id for tx in resolved.transactions] == ["paid"]

    @pytest.mark.asyncio
    async def test_round_trip_fields(self, sql_ledger, test_data):
        """Amounts, metadata and provider data survive storage."""
        tx = test_data.transaction("tx1", metadata={"transferId": "5001"})
        await sql_ledger.add(tx)

        page = await sql_ledger.list_transactions(
            states=["state/completed"], created_at_start=None, page=1, per_page=10
        )
        stored = page.transactions[0]

        assert stored.payout_total.amount == 150000
        assert stored.metadata == {"transferId": "5001"}
        assert stored.provider_private_data["flutterwaveSubaccount"]["accountBank"] == "044"
        assert stored.last_transitioned_at == tx.last_transitioned_at
        assert stored.last_transitioned_at.tzinfo is not None


class TestSqlWrites:
    """Test metadata merges and transitions."""

    @pytest.mark.asyncio
    async def test_metadata_merge(self, sql_ledger, test_data):
        """New keys are merged over existing ones."""
        await sql_ledger.add(test_data.transaction("tx1", metadata={"flutterwaveTransactionId": "777"}))

        await sql_ledger.update_metadata("tx1", {"transferId": "5001", "transferStatus": "NEW"})

        page = await sql_ledger.list_transactions(
            states=["state/completed"], created_at_start=None, page=1, per_page=10
        )
        assert page.transactions[0].metadata == {
            "flutterwaveTransactionId": "777",
            "transferId": "5001",
            "transferStatus": "NEW",
        }

    @pytest.mark.asyncio
    async def test_update_unknown_transaction(self, sql_ledger):
        """Writing to a missing transaction fails."""
        with pytest.raises(LedgerWriteError, match="not found"):
            await sql_ledger.update_metadata("missing", {"transferId": "1"})

    @pytest.mark.asyncio
    async def test_transition(self, sql_ledger, test_data):
        """transition/complete lands in state/completed."""
        await sql_ledger.add(test_data.transaction("tx1", state="state/purchased"))

        updated = await sql_ledger.transition("tx1", "transition/complete")

        assert updated.state == "state/completed"

    @pytest.mark.asyncio
    async def test_unknown_transition(self, sql_ledger, test_data):
        """An unmapped transition name is refused."""
        await sql_ledger.add(test_data.transaction("tx1"))

        with pytest.raises(LedgerWriteError, match="Unknown transition"):
            await sql_ledger.transition("tx1", "transition/teleport")

    @pytest.mark.asyncio
    async def test_in_memory_transition_matches(self, ledger, test_data):
        """The in-memory ledger maps transitions to the same states."""
        ledger.add(test_data.transaction("tx1", state="state/purchased"))

        updated = await ledger.transition("tx1", "transition/expire-payment")

        assert updated.state == "state/payment-expired"
        assert ledger.transitions == [("tx1", "transition/expire-payment")]


class TestSqlReconciliation:
    """Test a run over the SQL ledger."""

    @pytest.mark.asyncio
    async def test_payout_run(self, sql_ledger, test_data):
        """A completed transaction is paid out and its reference stored."""
        await sql_ledger.add(test_data.transaction("tx1"))
        provider = StubProvider(balances={"NGN": Decimal("5000")})
        fixed = datetime(2025, 3, 2, tzinfo=timezone.utc)
        reconciler = Reconciler(
            config=payout_worker_config(),
            ledger=sql_ledger,
            provider=provider,
            clock=lambda: fixed,
        )

        result = await reconciler.run()

        assert result.created == 1
        page = await sql_ledger.list_transactions(
            states=["state/completed"], created_at_start=None, page=1, per_page=10
        )
        metadata = page.transactions[0].metadata
        assert metadata["transferStatus"] == "NEW"
        assert metadata["transferProcessedAt"] == fixed.isoformat()
        assert metadata["transferId"]
