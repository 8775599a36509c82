"""Wire ledger, provider and workers together from process settings.

Usage:
    runtime = build_runtime(get_settings())
    result = await runtime.run_once(SettlementKind.PAYOUT)
    await runtime.aclose()
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from settlement_engine.config import Settings
from settlement_engine.database import get_engine, make_session_factory
from settlement_engine.recon.config import (
    ProviderConfig,
    ReconciliationConfig,
    config_from_settings,
)
from settlement_engine.recon.ledger import IntegrationApiLedger, LedgerClient, SqlLedger
from settlement_engine.recon.providers import FlutterwaveProvider, PaymentProvider, StubProvider
from settlement_engine.recon.scheduler import RunGuard, WorkerRunner, WorkerScheduler
from settlement_engine.recon.services.reconciler import Reconciler, RunResult
from settlement_engine.recon.types import SettlementKind

logger = logging.getLogger(__name__)

Closer = Callable[[], Awaitable[None]]


def build_ledger(settings: Settings) -> tuple[LedgerClient, Closer]:
    """Create the configured ledger backend and its close hook."""
    if settings.ledger_backend == "sql":
        engine = get_engine(settings.database_url)
        return SqlLedger(make_session_factory(engine)), engine.dispose

    if settings.ledger_backend == "integration_api":
        if not settings.ledger_client_id or not settings.ledger_client_secret:
            raise ValueError("LEDGER_CLIENT_ID and LEDGER_CLIENT_SECRET are required for the integration_api ledger")
        ledger = IntegrationApiLedger(
            base_url=settings.ledger_api_base_url,
            client_id=settings.ledger_client_id,
            client_secret=settings.ledger_client_secret,
        )
        return ledger, ledger.aclose

    raise ValueError(f"Unknown ledger backend: {settings.ledger_backend!r}")


async def _noop() -> None:
    return None


def build_provider(config: ProviderConfig) -> tuple[PaymentProvider, Closer]:
    """Create the configured payment provider and its close hook."""
    if config.name == "flutterwave":
        if not config.secret_key:
            logger.error("Flutterwave secret key is not configured; every run will abort")
        provider = FlutterwaveProvider(
            secret_key=config.secret_key,
            base_url=config.base_url,
            timeout_seconds=config.timeout_seconds,
        )
        return provider, provider.aclose

    logger.warning("Using stub payment provider. No money will move.")
    return StubProvider(), _noop


@dataclass
class ReconciliationRuntime:
    """Both workers sharing one ledger, one provider and one scheduler."""

    config: ReconciliationConfig
    ledger: LedgerClient
    provider: PaymentProvider
    runners: dict[SettlementKind, WorkerRunner]
    scheduler: WorkerScheduler
    closers: list[Closer] = field(default_factory=list)

    def runner(self, kind: SettlementKind) -> WorkerRunner:
        return self.runners[kind]

    async def run_once(self, kind: SettlementKind) -> RunResult | None:
        """Trigger one run through the worker's guard."""
        return await self.runners[kind].trigger()

    async def aclose(self) -> None:
        self.scheduler.shutdown()
        for close in self.closers:
            await close()
        self.closers.clear()


def build_runtime(
    settings: Settings | None = None,
    *,
    config: ReconciliationConfig | None = None,
    ledger: LedgerClient | None = None,
    provider: PaymentProvider | None = None,
) -> ReconciliationRuntime:
    """Assemble a runtime.

    Explicit ``config``, ``ledger`` and ``provider`` take precedence over
    anything derived from ``settings``.
    """
    closers: list[Closer] = []
    if config is None:
        if settings is None:
            raise ValueError("settings or config is required")
        config = config_from_settings(settings)

    if ledger is None:
        if settings is None:
            raise ValueError("settings or ledger is required")
        ledger, close_ledger = build_ledger(settings)
        closers.append(close_ledger)

    if provider is None:
        provider, close_provider = build_provider(config.provider)
        closers.append(close_provider)

    runners: dict[SettlementKind, WorkerRunner] = {}
    for kind in SettlementKind:
        reconciler = Reconciler(config=config.worker(kind), ledger=ledger, provider=provider)
        runners[kind] = WorkerRunner(reconciler, RunGuard(reconciler.name))

    return ReconciliationRuntime(
        config=config,
        ledger=ledger,
        provider=provider,
        runners=runners,
        scheduler=WorkerScheduler(runners),
        closers=closers,
    )
