"""Ledger transaction model for the SQL-backed ledger."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import CheckConstraint, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from settlement_engine.models.base import Base


class LedgerTransactionRow(Base):
    """Marketplace transaction as stored in the local ledger."""

    __tablename__ = "ledger_transaction"

    transaction_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    state: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    last_transitioned_at: Mapped[datetime] = mapped_column(nullable=False)
    payout_amount: Mapped[int | None] = mapped_column(nullable=True)
    payout_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    payin_amount: Mapped[int | None] = mapped_column(nullable=True)
    payin_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    # "metadata" is reserved on declarative classes
    metadata_json: Mapped[dict[str, Any]] = mapped_column("metadata", nullable=False, default=dict)
    provider_private_data: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)

    __table_args__ = (
        CheckConstraint("payout_amount IS NULL OR payout_amount >= 0", name="ledger_payout_amount_check"),
        CheckConstraint("payin_amount IS NULL OR payin_amount >= 0", name="ledger_payin_amount_check"),
        Index("ix_ledger_transaction_state_created", "state", "created_at"),
    )
