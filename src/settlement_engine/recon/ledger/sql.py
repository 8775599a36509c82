"""SQL-backed ledger using SQLAlchemy async sessions."""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from settlement_engine.models import LedgerTransactionRow
from settlement_engine.recon.errors import LedgerWriteError, QueryError
from settlement_engine.recon.ledger.base import (
    DEFAULT_TRANSITION_TARGETS,
    LedgerMoney,
    LedgerPage,
    LedgerTransaction,
)


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo; everything is stored as UTC
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _to_transaction(row: LedgerTransactionRow) -> LedgerTransaction:
    payout = None
    if row.payout_amount is not None and row.payout_currency:
        payout = LedgerMoney(amount=row.payout_amount, currency=row.payout_currency)
    payin = None
    if row.payin_amount is not None and row.payin_currency:
        payin = LedgerMoney(amount=row.payin_amount, currency=row.payin_currency)

    return LedgerTransaction(
        id=row.transaction_id,
        state=row.state,
        created_at=_aware(row.created_at),
        last_transitioned_at=_aware(row.last_transitioned_at),
        payout_total=payout,
        payin_total=payin,
        metadata=dict(row.metadata_json or {}),
        provider_private_data=dict(row.provider_private_data or {}),
    )


class SqlLedger:
    """LedgerClient over the ``ledger_transaction`` table.

    Metadata merges happen inside a single transaction per call, so a
    failed write leaves the stored metadata unchanged.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        transition_targets: Mapping[str, str] | None = None,
    ):
        self.session_factory = session_factory
        self.transition_targets = dict(transition_targets or DEFAULT_TRANSITION_TARGETS)

    async def list_transactions(
        self,
        *,
        states: Sequence[str],
        created_at_start: datetime | None,
        page: int,
        per_page: int,
        metadata_flags: Mapping[str, bool] | None = None,
    ) -> LedgerPage:
        conditions = [LedgerTransactionRow.state.in_(list(states))]
        if created_at_start is not None:
            conditions.append(LedgerTransactionRow.created_at >= created_at_start)
        for key, value in (metadata_flags or {}).items():
            flag = func.coalesce(LedgerTransactionRow.metadata_json[key].as_boolean(), False)
            conditions.append(flag == value)

        try:
            async with self.session_factory() as session:
                total = await session.scalar(
                    select(func.count()).select_from(LedgerTransactionRow).where(*conditions)
                )
                rows = await session.scalars(
                    select(LedgerTransactionRow)
                    .where(*conditions)
                    .order_by(LedgerTransactionRow.created_at, LedgerTransactionRow.transaction_id)
                    .offset((page - 1) * per_page)
                    .limit(per_page)
                )
                transactions = [_to_transaction(row) for row in rows]
        except SQLAlchemyError as e:
            raise QueryError(f"Ledger query failed: {e}", page=page) from e

        return LedgerPage(
            transactions=transactions,
            total_pages=math.ceil((total or 0) / per_page),
        )

    async def update_metadata(self, transaction_id: str, metadata: Mapping[str, Any]) -> None:
        try:
            async with self.session_factory() as session, session.begin():
                row = await session.get(LedgerTransactionRow, transaction_id, with_for_update=True)
                if row is None:
                    raise LedgerWriteError(f"Transaction {transaction_id} not found")
                # Reassign so the JSON column is flagged dirty
                row.metadata_json = {**(row.metadata_json or {}), **metadata}
        except SQLAlchemyError as e:
            raise LedgerWriteError(f"Metadata update failed for {transaction_id}: {e}") from e

    async def transition(
        self,
        transaction_id: str,
        transition: str,
        params: Mapping[str, Any] | None = None,
    ) -> LedgerTransaction:
        target = self.transition_targets.get(transition)
        if target is None:
            raise LedgerWriteError(f"Unknown transition {transition} for {transaction_id}")

        try:
            async with self.session_factory() as session, session.begin():
                row = await session.get(LedgerTransactionRow, transaction_id, with_for_update=True)
                if row is None:
                    raise LedgerWriteError(f"Transaction {transaction_id} not found")
                row.state = target
                row.last_transitioned_at = datetime.now(timezone.utc)
                if params and params.get("metadata"):
                    row.metadata_json = {**(row.metadata_json or {}), **params["metadata"]}
                result = _to_transaction(row)
        except SQLAlchemyError as e:
            raise LedgerWriteError(f"Transition failed for {transaction_id}: {e}") from e

        return result

    async def add(self, tx: LedgerTransaction) -> None:
        """Insert a transaction (used by seeding and tests)."""
        row = LedgerTransactionRow(
            transaction_id=tx.id,
            state=tx.state,
            created_at=tx.created_at,
            last_transitioned_at=tx.last_transitioned_at,
            payout_amount=tx.payout_total.amount if tx.payout_total else None,
            payout_currency=tx.payout_total.currency if tx.payout_total else None,
            payin_amount=tx.payin_total.amount if tx.payin_total else None,
            payin_currency=tx.payin_total.currency if tx.payin_total else None,
            metadata_json=dict(tx.metadata),
            provider_private_data=dict(tx.provider_private_data),
        )
        async with self.session_factory() as session, session.begin():
            session.add(row)
