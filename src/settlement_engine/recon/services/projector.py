"""Ledger projector - write reconciliation outcomes back to the ledger."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from settlement_engine.recon.ledger.base import LedgerClient
from settlement_engine.recon.types import (
    LOCAL_FAILED,
    METADATA_KEYS,
    ActuationResult,
    Candidate,
    ErrorLogEntry,
    SettlementKind,
    SettlementRecord,
    is_resolved_status,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _error_message(error: BaseException | str) -> str:
    if isinstance(error, str):
        return error
    return str(error) or type(error).__name__


class LedgerProjector:
    """Projects success, sync and failure outcomes into ledger metadata.

    The external reference is written only for a Create. Error log
    entries are appended to the log read at the start of the run.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        *,
        kind: SettlementKind,
        max_error_log_entries: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.ledger = ledger
        self.kind = kind
        self.keys = METADATA_KEYS[kind]
        self.max_error_log_entries = max_error_log_entries
        self.clock = clock

    async def record_success(self, candidate: Candidate, result: ActuationResult) -> dict[str, Any]:
        """Write provider status and, for a Create, the external reference.

        Raises:
            LedgerWriteError: If the ledger rejects the update.
        """
        update: dict[str, Any] = {
            self.keys.status: result.status,
            self.keys.processed_at: self.clock().isoformat(),
        }
        if not candidate.is_retry:
            update[self.keys.reference] = result.external_id
        if is_resolved_status(self.kind, result.status):
            update[self.keys.resolved] = True

        await self.ledger.update_metadata(candidate.record.id, update)
        return update

    async def record_sync(self, record: SettlementRecord, status: str) -> dict[str, Any]:
        """Mark a record resolved because the provider already settled it."""
        update = {self.keys.status: status, self.keys.resolved: True}
        await self.ledger.update_metadata(record.id, update)
        return update

    async def record_failure(self, record: SettlementRecord, error: BaseException | str) -> bool:
        """Append an error log entry and flag the record as failed locally.

        Never raises. Returns False if the write itself failed.
        """
        entry = ErrorLogEntry(date=self.clock().isoformat(), error=_error_message(error))
        entries = [*record.metadata.error_log, entry]
        if self.max_error_log_entries is not None:
            entries = entries[-self.max_error_log_entries :]

        update = {
            self.keys.error_log: [e.to_dict() for e in entries],
            self.keys.status: LOCAL_FAILED,
        }
        try:
            await self.ledger.update_metadata(record.id, update)
        except Exception:
            logger.exception("Failed to update error metadata for %s", record.id)
            return False
        return True
