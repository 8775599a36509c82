"""SQLAlchemy ORM models."""

from settlement_engine.models.base import Base
from settlement_engine.models.ledger import LedgerTransactionRow

__all__ = [
    "Base",
    "LedgerTransactionRow",
]
