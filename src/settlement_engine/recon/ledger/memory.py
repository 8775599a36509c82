"""In-memory ledger for local development and testing."""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

from settlement_engine.recon.errors import LedgerWriteError
from settlement_engine.recon.ledger.base import (
    DEFAULT_TRANSITION_TARGETS,
    LedgerPage,
    LedgerTransaction,
)


class InMemoryLedger:
    """Dict-backed ledger implementing LedgerClient.

    Pages are served in creation order, which is generally not the
    ``lastTransitionedAt`` order the reconciler processes in.
    """

    def __init__(
        self,
        transactions: Sequence[LedgerTransaction] = (),
        transition_targets: Mapping[str, str] | None = None,
    ):
        self._transactions: dict[str, LedgerTransaction] = {}
        self._transition_targets = dict(transition_targets or DEFAULT_TRANSITION_TARGETS)
        # Every merge applied, in order
        self.metadata_updates: list[tuple[str, dict[str, Any]]] = []
        self.transitions: list[tuple[str, str]] = []
        for tx in transactions:
            self.add(tx)

    def add(self, tx: LedgerTransaction) -> None:
        self._transactions[tx.id] = tx

    def get(self, transaction_id: str) -> LedgerTransaction:
        return self._transactions[transaction_id]

    async def list_transactions(
        self,
        *,
        states: Sequence[str],
        created_at_start: datetime | None,
        page: int,
        per_page: int,
        metadata_flags: Mapping[str, bool] | None = None,
    ) -> LedgerPage:
        matching = [
            tx
            for tx in self._transactions.values()
            if tx.state in states
            and (created_at_start is None or tx.created_at >= created_at_start)
            and all(
                bool(tx.metadata.get(key, False)) == value
                for key, value in (metadata_flags or {}).items()
            )
        ]
        matching.sort(key=lambda tx: tx.created_at)

        total_pages = math.ceil(len(matching) / per_page) if matching else 0
        start = (page - 1) * per_page
        return LedgerPage(
            transactions=matching[start : start + per_page],
            total_pages=total_pages,
        )

    async def update_metadata(self, transaction_id: str, metadata: Mapping[str, Any]) -> None:
        tx = self._transactions.get(transaction_id)
        if tx is None:
            raise LedgerWriteError(f"Transaction {transaction_id} not found")

        merged = {**tx.metadata, **metadata}
        self._transactions[transaction_id] = tx.model_copy(update={"metadata": merged})
        self.metadata_updates.append((transaction_id, dict(metadata)))

    async def transition(
        self,
        transaction_id: str,
        transition: str,
        params: Mapping[str, Any] | None = None,
    ) -> LedgerTransaction:
        tx = self._transactions.get(transaction_id)
        if tx is None:
            raise LedgerWriteError(f"Transaction {transaction_id} not found")

        target = self._transition_targets.get(transition)
        if target is None:
            raise LedgerWriteError(f"Unknown transition {transition} for {transaction_id}")
        updated = tx.model_copy(
            update={"state": target, "last_transitioned_at": datetime.now(timezone.utc)}
        )
        self._transactions[transaction_id] = updated
        self.transitions.append((transaction_id, transition))
        return updated
