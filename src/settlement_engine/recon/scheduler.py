"""Run guard and scheduler for the reconciliation workers.

Each worker owns a RunGuard with two states:
    idle -> running -> idle

A trigger that finds its guard running is skipped, never queued, and
never cancels the run in flight. Errors escaping a run are logged and
the guard is released; the hosting process keeps going.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from settlement_engine.recon.errors import InvalidTransitionError
from settlement_engine.recon.services.reconciler import Reconciler, RunResult
from settlement_engine.recon.types import SettlementKind

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    """Run guard states."""

    IDLE = "idle"
    RUNNING = "running"


class RunGuard:
    """Process-local non-overlap guard for one worker.

    Allowed transitions:
    - idle -> running (try_acquire)
    - running -> idle (release)
    """

    VALID_TRANSITIONS: dict[RunState, list[RunState]] = {
        RunState.IDLE: [RunState.RUNNING],
        RunState.RUNNING: [RunState.IDLE],
    }

    def __init__(self, name: str):
        self.name = name
        self._state = RunState.IDLE

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is RunState.RUNNING

    def _transition(self, to_state: RunState) -> None:
        if to_state not in self.VALID_TRANSITIONS[self._state]:
            raise InvalidTransitionError(self._state.value, to_state.value)
        self._state = to_state

    def try_acquire(self) -> bool:
        """Enter running if idle. Returns False if a run is in progress."""
        # No await between check and set, so this is atomic on the event loop
        if self.is_running:
            return False
        self._transition(RunState.RUNNING)
        return True

    def release(self) -> None:
        """Return to idle. Raises InvalidTransitionError if not running."""
        self._transition(RunState.IDLE)


class WorkerRunner:
    """Wraps a Reconciler with its guard and last-run bookkeeping."""

    def __init__(self, reconciler: Reconciler, guard: RunGuard | None = None):
        self.reconciler = reconciler
        self.guard = guard or RunGuard(reconciler.name)
        self.last_result: RunResult | None = None
        self.runs_started = 0
        self.runs_skipped = 0

    @property
    def name(self) -> str:
        return self.reconciler.name

    async def trigger(self) -> RunResult | None:
        """Run once unless a run is already in progress.

        Returns the run's result, or None if the trigger was skipped.
        """
        if not self.guard.try_acquire():
            self.runs_skipped += 1
            logger.info("%s: job is already running. Skipping this run.", self.name)
            return None

        self.runs_started += 1
        started_at = datetime.now(timezone.utc)
        try:
            result = await self.reconciler.run()
        except Exception as e:
            logger.exception("%s: critical error, run aborted", self.name)
            result = RunResult(
                worker=self.name,
                started_at=started_at,
                finished_at=datetime.now(timezone.utc),
                aborted=True,
                errors=[{"code": "RUN_ABORTED", "message": str(e) or type(e).__name__}],
            )
        finally:
            self.guard.release()

        self.last_result = result
        return result

    def status(self) -> dict[str, Any]:
        return {
            "worker": self.name,
            "state": self.guard.state.value,
            "schedule": self.reconciler.config.schedule,
            "runs_started": self.runs_started,
            "runs_skipped": self.runs_skipped,
            "last_result": self.last_result.to_dict() if self.last_result else None,
        }


class WorkerScheduler:
    """Fires each worker on its own cron schedule via APScheduler."""

    def __init__(
        self,
        runners: Mapping[SettlementKind, WorkerRunner],
        scheduler: AsyncIOScheduler | None = None,
    ):
        self.runners = dict(runners)
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)

    def runner(self, kind: SettlementKind) -> WorkerRunner:
        return self.runners[kind]

    def start(self) -> None:
        """Register jobs and start the scheduler. Requires a running loop."""
        for runner in self.runners.values():
            config = runner.reconciler.config
            logger.info("%s: starting worker (schedule: %s)", runner.name, config.schedule)
            job_options: dict[str, Any] = {}
            if config.run_on_startup:
                job_options["next_run_time"] = datetime.now(timezone.utc)
            self.scheduler.add_job(
                runner.trigger,
                CronTrigger.from_crontab(config.schedule, timezone=timezone.utc),
                id=runner.name,
                name=runner.name,
                replace_existing=True,
                coalesce=True,
                # Overlap is decided by the RunGuard, not APScheduler
                max_instances=2,
                **job_options,
            )
        self.scheduler.start()

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def status(self) -> list[dict[str, Any]]:
        statuses = []
        for runner in self.runners.values():
            status = runner.status()
            job = self.scheduler.get_job(runner.name) if self.scheduler.running else None
            next_run = getattr(job, "next_run_time", None) if job else None
            status["next_run_time"] = next_run.isoformat() if next_run else None
            statuses.append(status)
        return statuses
