"""Reconciliation configuration objects.

Pattern:
    config = ReconciliationConfig(
        payout=payout_worker_config(callback_url=...),
        refund=refund_worker_config(),
        provider=ProviderConfig(name="flutterwave", secret_key=...),
    )

Rules:
    1. Worker behaviour is explicit; process settings only feed the builders.
    2. Immutable after creation (frozen dataclasses).
    3. Invalid values fail at construction, not mid-run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from apscheduler.triggers.cron import CronTrigger

from settlement_engine.recon.types import SettlementKind

if TYPE_CHECKING:
    from settlement_engine.config import Settings

PAYOUT_STATES: tuple[str, ...] = ("state/completed",)
REFUND_STATES: tuple[str, ...] = ("state/payment-expired", "state/canceled")

MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class BalanceGateConfig:
    """
    Balance gate configuration.

    Attributes:
        enabled: If True, query live provider balance before each
            actuation and defer candidates that cannot be covered.
    """

    enabled: bool = True


@dataclass(frozen=True)
class WorkerConfig:
    """
    Configuration for one reconciliation worker.

    Attributes:
        kind: Which settlement the worker performs.
        states: Ledger states whose transactions are candidates.
        schedule: Five-field cron expression for the scheduler.
        created_at_start: Ignore ledger transactions created before this.
        page_size: Ledger page size. Between 1 and 100.
        balance_gate: Balance gate settings. Payout only.
        callback_url: Notification target sent with new transfers.
        candidate_timeout_seconds: Budget per candidate. None disables.
        max_error_log_entries: Keep at most this many error log entries,
            dropping the oldest. None keeps every entry.
        run_on_startup: If True, run once as soon as the scheduler starts.
        unresolved_only: If True, ask the ledger only for records not yet
            marked resolved.
    """

    kind: SettlementKind
    states: tuple[str, ...]
    schedule: str
    created_at_start: datetime | None = None
    page_size: int = MAX_PAGE_SIZE
    balance_gate: BalanceGateConfig = field(default_factory=lambda: BalanceGateConfig(enabled=False))
    callback_url: str | None = None
    candidate_timeout_seconds: float | None = 60
    max_error_log_entries: int | None = None
    run_on_startup: bool = False
    unresolved_only: bool = False

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not self.states:
            raise ValueError("states must not be empty")
        if not 1 <= self.page_size <= MAX_PAGE_SIZE:
            raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
        if self.candidate_timeout_seconds is not None and self.candidate_timeout_seconds <= 0:
            raise ValueError("candidate_timeout_seconds must be positive or None")
        if self.max_error_log_entries is not None and self.max_error_log_entries < 1:
            raise ValueError("max_error_log_entries must be at least 1 or None")
        if self.balance_gate.enabled and self.kind is not SettlementKind.PAYOUT:
            raise ValueError("balance gate only applies to payouts")
        # Raises ValueError on a malformed expression
        CronTrigger.from_crontab(self.schedule)

    @property
    def name(self) -> str:
        return f"{self.kind.value}_reconciliation"


@dataclass(frozen=True)
class ProviderConfig:
    """
    Payment provider configuration.

    Attributes:
        name: "flutterwave" or "stub".
        secret_key: API secret. Required for real providers.
        base_url: API root.
        sandbox: If True, the provider points at a test environment.
        timeout_seconds: HTTP timeout per request.
    """

    name: str
    secret_key: str | None = None
    base_url: str = "https://api.flutterwave.com/v3"
    sandbox: bool = False
    timeout_seconds: float = 30

    def __post_init__(self) -> None:
        """Validate configuration."""
        valid_names = {"flutterwave", "stub"}
        if self.name not in valid_names:
            raise ValueError(f"provider name must be one of {valid_names}")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")


@dataclass(frozen=True)
class ReconciliationConfig:
    """Complete configuration for both workers and their provider."""

    payout: WorkerConfig
    refund: WorkerConfig
    provider: ProviderConfig

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.payout.kind is not SettlementKind.PAYOUT:
            raise ValueError("payout worker must have kind PAYOUT")
        if self.refund.kind is not SettlementKind.REFUND:
            raise ValueError("refund worker must have kind REFUND")

    def worker(self, kind: SettlementKind) -> WorkerConfig:
        return self.payout if kind is SettlementKind.PAYOUT else self.refund


# =============================================================================
# Configuration Builders
# =============================================================================


def payout_worker_config(
    *,
    schedule: str = "0 * * * *",
    created_at_start: datetime | None = None,
    callback_url: str | None = None,
    balance_gate: BalanceGateConfig | None = None,
    unresolved_only: bool = True,
    **overrides,
) -> WorkerConfig:
    """Payout worker over completed, not yet transferred transactions, balance-gated."""
    return WorkerConfig(
        kind=SettlementKind.PAYOUT,
        states=PAYOUT_STATES,
        schedule=schedule,
        created_at_start=created_at_start,
        balance_gate=balance_gate or BalanceGateConfig(enabled=True),
        callback_url=callback_url,
        unresolved_only=unresolved_only,
        **overrides,
    )


def refund_worker_config(
    *,
    schedule: str = "30 * * * *",
    created_at_start: datetime | None = None,
    unresolved_only: bool = True,
    **overrides,
) -> WorkerConfig:
    """Refund worker over expired and canceled, not yet refunded transactions."""
    return WorkerConfig(
        kind=SettlementKind.REFUND,
        states=REFUND_STATES,
        schedule=schedule,
        created_at_start=created_at_start,
        unresolved_only=unresolved_only,
        **overrides,
    )


def config_from_settings(settings: Settings) -> ReconciliationConfig:
    """Build the reconciliation config from process settings."""
    callback_url = None
    if settings.marketplace_root_url:
        callback_url = f"{settings.marketplace_root_url.rstrip('/')}/api/payments/payout-webhook"

    return ReconciliationConfig(
        payout=payout_worker_config(
            schedule=settings.payout_schedule,
            created_at_start=settings.settlement_start_at,
            callback_url=callback_url,
            run_on_startup=settings.run_on_startup,
            candidate_timeout_seconds=settings.candidate_timeout_seconds,
        ),
        refund=refund_worker_config(
            schedule=settings.refund_schedule,
            created_at_start=settings.settlement_start_at,
            run_on_startup=settings.run_on_startup,
            candidate_timeout_seconds=settings.candidate_timeout_seconds,
        ),
        provider=ProviderConfig(
            name=settings.provider_name,
            secret_key=settings.flutterwave_secret_key,
            base_url=settings.flutterwave_base_url,
            sandbox="sandbox" in settings.flutterwave_base_url or settings.provider_name == "stub",
        ),
    )


def validate_production_config(config: ReconciliationConfig) -> list[str]:
    """
    Validate that a configuration is safe for production.

    Returns a list of warnings/errors. Empty list = safe.
    """
    issues: list[str] = []

    if config.provider.name == "stub":
        issues.append("CRITICAL: stub provider configured. No money will move.")
    elif not config.provider.secret_key:
        issues.append("CRITICAL: provider secret key is not configured.")

    if config.provider.sandbox and config.provider.name != "stub":
        issues.append(f"WARNING: provider '{config.provider.name}' points at a sandbox")

    if not config.payout.balance_gate.enabled:
        issues.append("CRITICAL: payout balance gate is disabled.")

    if not config.payout.callback_url:
        issues.append("WARNING: payout callback_url is not set; transfer webhooks will not arrive")

    if config.payout.schedule == config.refund.schedule:
        issues.append("WARNING: payout and refund workers share a schedule and will contend for provider rate limits")

    if config.payout.created_at_start is None or config.refund.created_at_start is None:
        issues.append("WARNING: no created_at_start; every historical transaction is scanned each run")

    return issues
