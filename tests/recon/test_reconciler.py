"""End-to-end tests for Reconciler runs.

Tests verify:
1. A completed transaction is paid out once, with the ledger updated
2. Balance is re-read per candidate and shortfalls defer, oldest first
3. One candidate failing does not stop the others
4. Repeated runs never create a second transfer for a record, even when
   the first success write was lost
5. Ledger query and provider auth failures abort the whole run
6. Per-candidate timeouts are recorded like any other failure
7. Refund runs create, retry and then leave resolved records alone
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from settlement_engine.recon.config import payout_worker_config, refund_worker_config
from settlement_engine.recon.errors import (
    LedgerWriteError,
    ProviderAuthError,
    ProviderError,
    QueryError,
)
from settlement_engine.recon.ledger import InMemoryLedger
from settlement_engine.recon.providers import StubProvider
from settlement_engine.recon.services import Outcome, Reconciler
from settlement_engine.recon.services.actuator import MISSING_DESTINATION


class SlowStubProvider(StubProvider):
    """Provider whose transfer creation hangs."""

    async def create_transfer(self, request):
        await asyncio.sleep(5)
        return await super().create_transfer(request)


class UnreachableLedger(InMemoryLedger):
    """Ledger that cannot be listed."""

    async def list_transactions(self, **kwargs):
        raise QueryError("Ledger query failed: 503", page=1)


class ReadOnlyLedger(InMemoryLedger):
    """Ledger that lists fine but rejects every write."""

    async def update_metadata(self, transaction_id, metadata):
        raise LedgerWriteError(f"write rejected for {transaction_id}")


class FirstWriteRejectingLedger(InMemoryLedger):
    """Ledger that rejects the first write carrying ``key``."""

    def __init__(self, key, transactions=()):
        super().__init__(transactions)
        self.key = key
        self.rejected = False

    async def update_metadata(self, transaction_id, metadata):
        if self.key in metadata and not self.rejected:
            self.rejected = True
            raise LedgerWriteError(f"write rejected for {transaction_id}")
        await super().update_metadata(transaction_id, metadata)


class TestPayoutRun:
    """Test a payout run over the in-memory ledger."""

    @pytest.mark.asyncio
    async def test_single_payout(self, payout_reconciler, ledger, provider, test_data, now):
        """150000 NGN minor units is paid out as 1500 and recorded."""
        ledger.add(test_data.transaction("tx1", payout_amount=150000))

        result = await payout_reconciler.run()

        assert result.created == 1
        assert result.success is True
        request = provider.calls[-1][1]
        assert request.amount == Decimal("1500")
        assert request.reference == "payout_tx1"

        metadata = ledger.get("tx1").metadata
        assert metadata["transferId"] in provider._transfers
        assert metadata["transferStatus"] == "NEW"
        assert metadata["transferProcessedAt"] == now.isoformat()
        assert provider.balances["NGN"] == Decimal("98500")

    @pytest.mark.asyncio
    async def test_empty_run(self, payout_reconciler, provider):
        """No candidates means no provider traffic."""
        result = await payout_reconciler.run()

        assert result.candidates == 0
        assert result.success is True
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_balance_deferral_in_transition_order(self, ledger, test_data):
        """With room for one payout, the oldest transition wins."""
        provider = StubProvider(balances={"NGN": Decimal("2000")})
        ledger.add(test_data.transaction("newer", transitioned_minutes=20, created_minutes=1))
        ledger.add(test_data.transaction("older", transitioned_minutes=10, created_minutes=2))
        reconciler = Reconciler(config=payout_worker_config(), ledger=ledger, provider=provider)

        result = await reconciler.run()

        assert result.created == 1
        assert result.deferred == 1
        assert "transferId" in ledger.get("older").metadata
        assert ledger.get("newer").metadata == {}
        # One balance read per candidate, the second after the first debit
        assert provider.count("get_balance") == 2

    @pytest.mark.asyncio
    async def test_deferral_is_not_an_error(self, ledger, test_data):
        """A deferred candidate gets no error log entry."""
        provider = StubProvider(balances={"NGN": Decimal("40")})
        ledger.add(test_data.transaction("tx1", payout_amount=5000))
        reconciler = Reconciler(config=payout_worker_config(), ledger=ledger, provider=provider)

        result = await reconciler.run()

        assert result.deferred == 1
        assert result.errors == []
        assert ledger.metadata_updates == []
        assert provider.count("create_transfer") == 0

    @pytest.mark.asyncio
    async def test_failure_isolation(self, payout_reconciler, ledger, provider, test_data, now):
        """The middle of three candidates fails; the other two are paid."""
        for tx_id in ("a", "b", "c"):
            ledger.add(test_data.transaction(tx_id))
        provider.fail_references["payout_b"] = ProviderError("Insufficient funds in subaccount", 400)

        result = await payout_reconciler.run()

        assert result.created == 2
        assert result.failed == 1
        assert result.errors == [{
            "code": "ACTUATION_ERROR",
            "transaction_id": "b",
            "message": "Insufficient funds in subaccount",
        }]
        assert "transferId" in ledger.get("a").metadata
        assert "transferId" in ledger.get("c").metadata
        assert ledger.get("b").metadata["payoutErrorLogs"] == [
            {"date": now.isoformat(), "error": "Insufficient funds in subaccount"}
        ]
        assert ledger.get("b").metadata["transferStatus"] == "failed"

    @pytest.mark.asyncio
    async def test_precondition_failure(self, payout_reconciler, ledger, provider, test_data):
        """Missing bank details are logged with a distinguishable message."""
        ledger.add(test_data.transaction("tx1", account_bank=None, account_number=None))

        result = await payout_reconciler.run()

        assert result.failed == 1
        assert result.errors[0]["code"] == "PRECONDITION"
        assert ledger.get("tx1").metadata["payoutErrorLogs"][0]["error"] == MISSING_DESTINATION
        assert provider.count("create_transfer") == 0

    @pytest.mark.asyncio
    async def test_provider_already_settled_is_synced(self, payout_reconciler, ledger, provider, test_data):
        """A transfer that succeeded since the last run is synced, not re-sent."""
        provider.seed_transfer("5001", "SUCCESSFUL")
        ledger.add(test_data.transaction("tx1", metadata={"transferId": "5001", "transferStatus": "NEW"}))

        result = await payout_reconciler.run()

        assert result.synced == 1
        assert ledger.get("tx1").metadata["transferred"] is True
        assert provider.count("create_transfer") == 0
        assert provider.count("retry_transfer") == 0

    @pytest.mark.asyncio
    async def test_success_write_failure_is_per_candidate(self, provider, test_data, caplog):
        """A rejected success write fails that candidate; the error-log
        write also fails and is only logged."""
        ledger = ReadOnlyLedger([test_data.transaction("a"), test_data.transaction("b")])
        reconciler = Reconciler(config=payout_worker_config(), ledger=ledger, provider=provider)

        result = await reconciler.run()

        assert result.failed == 2
        assert provider.count("create_transfer") == 2
        assert "Failed to update error metadata for a" in caplog.text


class TestNoDuplicateCreation:
    """Test that a record is created at most once across runs."""

    @pytest.mark.asyncio
    async def test_second_run_does_not_create(self, payout_reconciler, ledger, provider, test_data):
        """After a Create the record is in flight, then retried on failure."""
        ledger.add(test_data.transaction("tx1"))

        first = await payout_reconciler.run()
        second = await payout_reconciler.run()

        assert first.created == 1
        assert second.in_flight == 1
        assert provider.count("create_transfer") == 1

        transfer_id = ledger.get("tx1").metadata["transferId"]
        provider.simulate_transfer_status(transfer_id, "FAILED")
        third = await payout_reconciler.run()

        assert third.retried == 1
        assert provider.count("create_transfer") == 1
        assert ("retry_transfer", transfer_id) in provider.calls
        assert ledger.get("tx1").metadata["transferId"] == transfer_id

    @pytest.mark.asyncio
    async def test_unstored_transfer_is_found_on_duplicate(
        self, payout_reconciler, ledger, provider, test_data, now
    ):
        """If the reference was sent but never stored, the provider's refusal
        leads to the existing transfer being stored instead."""
        provider.seed_transfer("5001", "NEW", reference="payout_tx1")
        ledger.add(test_data.transaction("tx1"))

        result = await payout_reconciler.run()

        assert result.in_flight == 1
        assert result.success is True
        assert provider.count("create_transfer") == 1
        assert len(provider._transfers) == 1
        metadata = ledger.get("tx1").metadata
        assert metadata["transferId"] == "5001"
        assert metadata["transferStatus"] == "NEW"
        assert "payoutErrorLogs" not in metadata

    @pytest.mark.asyncio
    async def test_lost_success_write_converges(self, provider, test_data):
        """A transfer whose id write was rejected is stored once and then settled."""
        ledger = FirstWriteRejectingLedger("transferId", [test_data.transaction("tx1")])
        reconciler = Reconciler(config=payout_worker_config(), ledger=ledger, provider=provider)

        first = await reconciler.run()
        transfer_id = provider.id_for_reference("payout_tx1")
        provider.simulate_transfer_status(transfer_id, "SUCCESSFUL")
        later = [await reconciler.run() for _ in range(3)]

        assert first.failed == 1
        assert later[0].synced == 1
        assert all(run.created == 0 and run.failed == 0 for run in later[1:])
        assert provider.count("create_transfer") == 1
        metadata = ledger.get("tx1").metadata
        assert metadata["transferId"] == transfer_id
        assert metadata["transferred"] is True
        assert len(metadata["payoutErrorLogs"]) == 1

    @pytest.mark.asyncio
    async def test_lookup_skips_balance_gate(self, test_data):
        """Recovering an existing transfer does not need balance for a new one."""
        provider = StubProvider(balances={"NGN": Decimal("0")})
        provider.seed_transfer("5001", "PENDING", reference="payout_tx1")
        ledger = InMemoryLedger([test_data.transaction("tx1", metadata={"transferStatus": "failed"})])
        reconciler = Reconciler(config=payout_worker_config(), ledger=ledger, provider=provider)

        result = await reconciler.run()

        assert result.synced == 1
        assert provider.count("get_balance") == 0
        assert provider.count("create_transfer") == 0
        assert ledger.get("tx1").metadata["transferred"] is True

    @pytest.mark.asyncio
    async def test_failed_record_without_transfer_is_created(self, payout_reconciler, ledger, provider, test_data):
        """A record that failed before reaching the provider is created normally."""
        ledger.add(test_data.transaction("tx1", metadata={"transferStatus": "failed"}))

        result = await payout_reconciler.run()

        assert result.created == 1
        assert provider.count("find_transfer") == 1
        assert provider.count("create_transfer") == 1

    @pytest.mark.asyncio
    async def test_lost_refund_write_converges(self, test_data):
        """A refund whose id write was rejected is not refunded twice."""
        provider = StubProvider()
        ledger = FirstWriteRejectingLedger("refundId", [test_data.refund_transaction("r1")])
        reconciler = Reconciler(config=refund_worker_config(), ledger=ledger, provider=provider)

        first = await reconciler.run()
        second = await reconciler.run()
        third = await reconciler.run()

        assert first.failed == 1
        assert second.synced == 1
        assert third.candidates == 0
        assert provider.count("create_refund") == 1
        metadata = ledger.get("r1").metadata
        assert metadata["refundId"] == provider.id_for_reference("refund_r1")
        assert metadata["refunded"] is True


class TestRunFatalErrors:
    """Test errors that abort the whole run."""

    @pytest.mark.asyncio
    async def test_query_error_aborts_before_writes(self, provider):
        """A failed listing raises and nothing is written or sent."""
        ledger = UnreachableLedger()
        reconciler = Reconciler(config=payout_worker_config(), ledger=ledger, provider=provider)

        with pytest.raises(QueryError):
            await reconciler.run()

        assert ledger.metadata_updates == []
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_auth_error_stops_remaining_candidates(self, payout_reconciler, ledger, provider, test_data):
        """Rejected credentials abort the run at the first candidate."""
        ledger.add(test_data.transaction("tx1", transitioned_minutes=1))
        ledger.add(test_data.transaction("tx2", transitioned_minutes=2))
        provider.fail_references["payout_tx1"] = ProviderAuthError("Invalid authorization key", 401)

        with pytest.raises(ProviderAuthError):
            await payout_reconciler.run()

        assert provider.count("create_transfer") == 1
        assert ledger.metadata_updates == []


class TestCandidateTimeout:
    """Test the per-candidate time budget."""

    @pytest.mark.asyncio
    async def test_timeout_recorded_and_run_continues(self, ledger, test_data):
        """A hung create is abandoned, logged, and counted as failed."""
        provider = SlowStubProvider(balances={"NGN": Decimal("100000")})
        ledger.add(test_data.transaction("tx1"))
        reconciler = Reconciler(
            config=payout_worker_config(candidate_timeout_seconds=0.05),
            ledger=ledger,
            provider=provider,
        )

        result = await reconciler.run()

        assert result.failed == 1
        assert "exceeded" in ledger.get("tx1").metadata["payoutErrorLogs"][0]["error"]


class TestRefundRun:
    """Test a refund run."""

    @pytest.mark.asyncio
    async def test_refund_then_resolved(self, refund_reconciler, ledger, provider, test_data):
        """A completed refund is marked refunded and skipped next run."""
        ledger.add(test_data.refund_transaction("r1", payin_amount=160000))

        first = await refund_reconciler.run()
        second = await refund_reconciler.run()

        assert first.created == 1
        assert second.candidates == 0
        assert provider.count("create_refund") == 1
        metadata = ledger.get("r1").metadata
        assert metadata["refunded"] is True
        assert metadata["refundStatus"] == "completed"

    @pytest.mark.asyncio
    async def test_refund_has_no_balance_gate(self, ledger, test_data):
        """Refunds do not read the balance."""
        provider = StubProvider()
        ledger.add(test_data.refund_transaction("r1"))
        reconciler = Reconciler(
            config=refund_worker_config(),
            ledger=ledger,
            provider=provider,
        )

        result = await reconciler.run()

        assert result.created == 1
        assert provider.count("get_balance") == 0

    @pytest.mark.asyncio
    async def test_failed_refund_is_retried(self, refund_reconciler, ledger, provider, test_data):
        """A failed refund is re-submitted under its existing id."""
        provider.seed_refund("rf-9", "failed")
        ledger.add(test_data.refund_transaction(
            "r1", metadata={"refundId": "rf-9", "refundStatus": "failed"}
        ))

        result = await refund_reconciler.run()

        assert result.retried == 1
        assert provider.calls == [("retry_refund", "rf-9")]
        metadata = ledger.get("r1").metadata
        assert metadata["refundId"] == "rf-9"
        assert metadata["refunded"] is True

    @pytest.mark.asyncio
    async def test_outcome_counts_are_consistent(self, refund_reconciler, ledger, test_data):
        """Every listed candidate lands in exactly one outcome."""
        ledger.add(test_data.refund_transaction("new"))
        ledger.add(test_data.refund_transaction("nocharge", charge_id=None))
        ledger.add(test_data.refund_transaction(
            "pending", metadata={"refundId": "rf-1", "refundStatus": "pending"}
        ))

        result = await refund_reconciler.run()

        total = sum(getattr(result, outcome.value) for outcome in Outcome)
        assert total == result.candidates == 3
