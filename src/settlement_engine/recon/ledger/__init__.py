"""Ledger backends the reconciler reads from and writes to."""

from settlement_engine.recon.ledger.base import (
    LedgerClient,
    LedgerMoney,
    LedgerPage,
    LedgerTransaction,
    to_settlement_record,
)
from settlement_engine.recon.ledger.integration_api import IntegrationApiLedger
from settlement_engine.recon.ledger.memory import InMemoryLedger
from settlement_engine.recon.ledger.sql import SqlLedger

__all__ = [
    "LedgerClient",
    "LedgerMoney",
    "LedgerPage",
    "LedgerTransaction",
    "to_settlement_record",
    "IntegrationApiLedger",
    "InMemoryLedger",
    "SqlLedger",
]
