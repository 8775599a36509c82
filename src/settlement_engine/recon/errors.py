"""Exception taxonomy for the reconciliation workers.

Run-level (abort the run, release the guard):
    QueryError, ProviderAuthError

Per-candidate (logged into the record's error log, run continues):
    ProviderError, PreconditionError, LedgerWriteError, CandidateTimeoutError
"""

from __future__ import annotations


class ReconciliationError(Exception):
    """Base class for reconciliation failures."""


class QueryError(ReconciliationError):
    """A ledger query failed; the candidate set is incomplete."""

    def __init__(self, message: str, page: int | None = None):
        self.page = page
        if page is not None:
            message = f"{message} (page {page})"
        super().__init__(message)


class ProviderError(ReconciliationError):
    """A payment provider call failed."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class ProviderAuthError(ProviderError):
    """Provider rejected our credentials, or none are configured."""


class PreconditionError(ReconciliationError):
    """Candidate is missing data required to actuate."""


class LedgerWriteError(ReconciliationError):
    """Writing metadata back to the ledger failed."""


class CandidateTimeoutError(ReconciliationError):
    """Processing a single candidate exceeded its time budget."""


class InvalidTransitionError(ReconciliationError):
    """Raised when an invalid run state transition is attempted."""

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition from '{from_state}' to '{to_state}'")


# Only these cross the candidate boundary
RUN_FATAL_ERRORS: tuple[type[Exception], ...] = (QueryError, ProviderAuthError)
