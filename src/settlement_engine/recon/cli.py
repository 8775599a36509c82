"""Reconciliation Command Line Interface.

Provides operational tools for:
- One-shot worker runs
- Running the scheduler service
- Configuration checks
- Ledger schema setup

Usage:
    python -m settlement_engine.recon.cli run payout
    python -m settlement_engine.recon.cli run refund --json
    python -m settlement_engine.recon.cli serve --no-api
    python -m settlement_engine.recon.cli check-config
    python -m settlement_engine.recon.cli init-db
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Callable

from settlement_engine.config import Settings, get_settings
from settlement_engine.database import create_schema, get_engine
from settlement_engine.recon.config import config_from_settings, validate_production_config
from settlement_engine.recon.runtime import build_runtime
from settlement_engine.recon.services.reconciler import RunResult
from settlement_engine.recon.types import SettlementKind


def configure_logging(level: str) -> None:
    """Configure root logging for command line and service use."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


class ReconCli:
    """Reconciliation Command Line Interface."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings
        self.parser = self._build_parser()

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m settlement_engine.recon.cli",
            description="Settlement reconciliation tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # run command
        run = subparsers.add_parser(
            "run",
            help="Run one reconciliation pass for a worker",
        )
        run.add_argument(
            "worker",
            choices=[kind.value for kind in SettlementKind],
            help="Worker to run (payout or refund)",
        )
        run.add_argument(
            "--json",
            action="store_true",
            help="Print the run result as JSON",
        )

        # serve command
        serve = subparsers.add_parser(
            "serve",
            help="Start the scheduler and the ops API",
        )
        serve.add_argument(
            "--no-api",
            action="store_true",
            help="Run the scheduler without the HTTP ops API",
        )

        # check-config command
        check = subparsers.add_parser(
            "check-config",
            help="Report configuration issues that are unsafe for production",
        )
        check.add_argument(
            "--strict",
            action="store_true",
            help="Fail on warnings as well as critical issues",
        )

        # init-db command
        subparsers.add_parser(
            "init-db",
            help="Create the SQL ledger tables if they do not exist",
        )

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        handlers: dict[str, Callable[..., int]] = {
            "run": self._cmd_run,
            "serve": self._cmd_serve,
            "check-config": self._cmd_check_config,
            "init-db": self._cmd_init_db,
        }

        handler = handlers.get(parsed.command)
        if handler:
            return handler(parsed)

        print(f"Unknown command: {parsed.command}", file=sys.stderr)
        return 1

    async def _run_once(self, kind: SettlementKind) -> RunResult | None:
        runtime = build_runtime(self.settings)
        try:
            return await runtime.run_once(kind)
        finally:
            await runtime.aclose()

    def _cmd_run(self, args: argparse.Namespace) -> int:
        """Run one pass of a worker."""
        configure_logging(self.settings.log_level)
        kind = SettlementKind(args.worker)
        result = asyncio.run(self._run_once(kind))
        if result is None:
            print(f"{kind.value} worker is already running")
            return 1

        if args.json:
            print(json.dumps(result.to_dict(), indent=2))
        else:
            print(f"Worker: {result.worker}")
            print(f"  Candidates: {result.candidates}")
            print(f"  Created:    {result.created}")
            print(f"  Retried:    {result.retried}")
            print(f"  Synced:     {result.synced}")
            print(f"  Deferred:   {result.deferred}")
            print(f"  In flight:  {result.in_flight}")
            print(f"  Failed:     {result.failed}")
            print(f"  Invalid:    {result.invalid}")
            if result.aborted:
                print("  Run aborted:")
            for error in result.errors:
                print(f"    - [{error['code']}] {error.get('transaction_id', '-')}: {error['message']}")

        return 0 if result.success else 1

    def _cmd_serve(self, args: argparse.Namespace) -> int:
        """Start the long-running service."""
        from settlement_engine.__main__ import serve

        serve(self.settings, enable_api=self.settings.enable_api and not args.no_api)
        return 0

    def _cmd_check_config(self, args: argparse.Namespace) -> int:
        """Check configuration for production safety."""
        try:
            config = config_from_settings(self.settings)
        except ValueError as e:
            print(f"Invalid configuration: {e}", file=sys.stderr)
            return 1

        issues = validate_production_config(config)
        print("Configuration Check")
        print("=" * 40)
        print(f"  Provider:        {config.provider.name}")
        print(f"  Ledger backend:  {self.settings.ledger_backend}")
        print(f"  Payout schedule: {config.payout.schedule}")
        print(f"  Refund schedule: {config.refund.schedule}")

        if not issues:
            print("\nNo issues found.")
            return 0

        print("\nIssues:")
        for issue in issues:
            print(f"  - {issue}")

        critical = any(issue.startswith("CRITICAL") for issue in issues)
        if critical or args.strict:
            return 1
        return 0

    async def _init_db(self) -> None:
        engine = get_engine(self.settings.database_url)
        try:
            await create_schema(engine)
        finally:
            await engine.dispose()

    def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create the SQL ledger schema."""
        if self.settings.ledger_backend != "sql":
            print(f"Ledger backend is {self.settings.ledger_backend!r}; nothing to create", file=sys.stderr)
            return 1
        asyncio.run(self._init_db())
        print("Ledger schema ready.")
        return 0


def main() -> None:
    """CLI entry point."""
    cli = ReconCli()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()
