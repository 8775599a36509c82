"""Candidate listing - paginate the ledger for records in a state filter."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

from settlement_engine.recon.errors import QueryError
from settlement_engine.recon.ledger.base import LedgerClient, to_settlement_record
from settlement_engine.recon.types import METADATA_KEYS, SettlementKind, SettlementRecord

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationCursor:
    """Pagination state for one listing. Never persisted across runs."""

    per_page: int
    page: int = 1
    total_pages: int = 1

    @property
    def exhausted(self) -> bool:
        return self.page > self.total_pages

    def advance(self, total_pages: int) -> None:
        self.total_pages = total_pages
        self.page += 1


@dataclass
class CandidateSet:
    """All matching records, oldest transition first."""

    records: list[SettlementRecord] = field(default_factory=list)
    invalid: list[str] = field(default_factory=list)
    pages_fetched: int = 0

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self):
        return iter(self.records)


class CandidateLister:
    """Fetches every ledger record matching the worker's state filter.

    Any page failure aborts the listing with QueryError; a partial set
    would let later records jump the balance queue.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        *,
        kind: SettlementKind,
        states: Sequence[str],
        created_at_start: datetime | None = None,
        page_size: int = 100,
        unresolved_only: bool = False,
    ):
        self.ledger = ledger
        self.kind = kind
        self.states = tuple(states)
        self.created_at_start = created_at_start
        self.page_size = page_size
        # Resolved records are filtered by the ledger, not paged through
        self.metadata_flags = {METADATA_KEYS[kind].resolved: False} if unresolved_only else None

    async def list_candidates(self) -> CandidateSet:
        """Fetch all pages and return records sorted by last transition.

        Raises:
            QueryError: If any page fetch fails.
        """
        result = CandidateSet()
        seen: set[str] = set()
        cursor = ReconciliationCursor(per_page=self.page_size)

        while not cursor.exhausted:
            try:
                page = await self.ledger.list_transactions(
                    states=self.states,
                    created_at_start=self.created_at_start,
                    page=cursor.page,
                    per_page=cursor.per_page,
                    metadata_flags=self.metadata_flags,
                )
            except QueryError:
                raise
            except Exception as e:
                raise QueryError(f"Ledger query failed: {e}", page=cursor.page) from e

            result.pages_fetched += 1
            for tx in page.transactions:
                if tx.id in seen:
                    continue
                seen.add(tx.id)
                try:
                    result.records.append(to_settlement_record(self.kind, tx))
                except ValueError as e:
                    logger.error("Skipping transaction %s with malformed metadata: %s", tx.id, e)
                    result.invalid.append(tx.id)

            cursor.advance(page.total_pages)

        result.records.sort(key=lambda record: record.last_transitioned_at)
        logger.debug(
            "Listed %d %s candidates over %d pages",
            len(result.records),
            self.kind.value,
            result.pages_fetched,
        )
        return result
