"""Refresh coordination: single-flight collector runs feeding the snapshot store."""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .collector import CollectorResult, CollectorRunner
from .snapshot_store import SnapshotStore


logger = structlog.get_logger(__name__)

REFRESH_JOB_ID = "status_refresh"


class RefreshOutcome(str, Enum):
    UNKNOWN = "unknown"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class RefreshState:
    in_progress: bool = False
    last_attempt_result: RefreshOutcome = RefreshOutcome.UNKNOWN
    last_attempt_at: datetime | None = None
    last_error: str | None = None
    attempts: int = 0
    successes: int = 0
    failures: int = 0
    skipped: int = 0


class RefreshCoordinator:
    """Owns the single-flight guard and the periodic refresh trigger.

    At most one collector invocation is outstanding at any time. A trigger
    that arrives while one is running is dropped, never queued. The store is
    only written after a successful run that left a non-empty artifact, so a
    failed attempt keeps the last-known-good snapshot.
    """

    def __init__(
        self,
        store: SnapshotStore,
        runner: CollectorRunner,
        artifact_path: str | Path,
        *,
        interval_seconds: float,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self.store = store
        self.runner = runner
        self.artifact_path = Path(artifact_path)
        self.interval_seconds = float(interval_seconds)
        self.scheduler = scheduler or AsyncIOScheduler()

        self._lock = threading.Lock()
        self._state = RefreshState()
        self._task: asyncio.Task | None = None

    @property
    def in_progress(self) -> bool:
        with self._lock:
            return self._state.in_progress

    def refresh_state(self) -> RefreshState:
        """Return a copy of the current refresh bookkeeping."""
        with self._lock:
            return replace(self._state)

    def trigger_refresh(self) -> bool:
        """Start a collector run unless one is already in flight.

        Must be called from the running event loop. Returns True when a new
        run was started and False when the call was skipped.
        """
        with self._lock:
            if self._state.in_progress:
                self._state.skipped += 1
                started = False
            else:
                self._state.in_progress = True
                self._state.attempts += 1
                self._state.last_attempt_at = datetime.now(timezone.utc)
                started = True

        if not started:
            logger.info("Refresh already in progress, skipping")
            return False

        logger.info("Starting data refresh", command=" ".join(self.runner.command))
        try:
            self._task = asyncio.get_running_loop().create_task(self._refresh())
        except RuntimeError:
            self._finish(RefreshOutcome.FAILURE, "no running event loop")
            raise
        return True

    async def wait_idle(self) -> None:
        """Wait for the in-flight refresh, if any, to finish."""
        task = self._task
        if task is not None and not task.done():
            await task

    def schedule_periodic(self, interval_seconds: float | None = None) -> None:
        """Refresh now, then on a fixed wall-clock cadence."""
        if interval_seconds is not None:
            self.interval_seconds = float(interval_seconds)
        if self.interval_seconds <= 0:
            raise ValueError(f"Invalid refresh interval: {self.interval_seconds}")

        self.scheduler.add_job(
            func=self._tick,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=REFRESH_JOB_ID,
            name="Refresh status snapshot",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        if not self.scheduler.running:
            self.scheduler.start()

        logger.info("Scheduled periodic refresh", interval_seconds=self.interval_seconds)
        self.trigger_refresh()

    async def stop(self) -> None:
        """Stop the periodic trigger and abandon any in-flight refresh."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            # Newer 3.x releases queue the stop on the loop; let it run.
            await asyncio.sleep(0)

        task = self._task
        if task is not None and not task.done():
            logger.info("Abandoning in-flight refresh")
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            # A task cancelled before its first step never reaches _refresh.
            if self.in_progress:
                self._finish(RefreshOutcome.FAILURE, "refresh cancelled")

    async def _tick(self) -> None:
        self.trigger_refresh()

    async def _refresh(self) -> None:
        try:
            result = await self.runner.run()
        except asyncio.CancelledError:
            self._finish(RefreshOutcome.FAILURE, "refresh cancelled")
            raise
        except Exception as exc:
            logger.exception("Collector runner raised unexpectedly")
            result = CollectorResult(exit_code=None, error=f"{type(exc).__name__}: {exc}")
        self._handle_completion(result)

    def _handle_completion(self, result: CollectorResult) -> RefreshOutcome:
        """Route one collector result; always releases the single-flight guard."""
        outcome = RefreshOutcome.FAILURE
        error: str | None = None
        try:
            outcome, error = self._apply_result(result)
        except Exception as exc:
            logger.exception("Unexpected error while completing refresh")
            error = f"{type(exc).__name__}: {exc}"
        finally:
            self._finish(outcome, error)
        return outcome

    def _apply_result(self, result: CollectorResult) -> tuple[RefreshOutcome, str | None]:
        if result.timed_out:
            logger.error("Collector timed out", error=result.error)
            return RefreshOutcome.FAILURE, result.error

        if result.error is not None:
            logger.error("Failed to spawn collector", error=result.error)
            return RefreshOutcome.FAILURE, result.error

        if result.exit_code != 0:
            logger.error(
                "Collector exited with non-zero code",
                exit_code=result.exit_code,
                stderr=result.stderr_excerpt() or None,
            )
            return RefreshOutcome.FAILURE, f"exit code {result.exit_code}"

        logger.info("Collector completed successfully")

        try:
            content = self._read_artifact()
        except (OSError, UnicodeDecodeError) as exc:
            logger.error("Error reading status file", path=str(self.artifact_path), error=str(exc))
            return RefreshOutcome.FAILURE, f"artifact unreadable: {exc}"

        if content is None:
            logger.warning("Status file not found or empty after collector run", path=str(self.artifact_path))
            return RefreshOutcome.FAILURE, "artifact missing or empty"

        snapshot = self.store.publish(content)
        logger.info("Data refreshed successfully", produced_at=snapshot.produced_at.isoformat(), size=len(content))
        return RefreshOutcome.SUCCESS, None

    def _read_artifact(self) -> str | None:
        try:
            content = self.artifact_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        if not content.strip():
            return None
        return content

    def _finish(self, outcome: RefreshOutcome, error: str | None) -> None:
        with self._lock:
            self._state.in_progress = False
            self._state.last_attempt_result = outcome
            self._state.last_error = error
            if outcome is RefreshOutcome.SUCCESS:
                self._state.successes += 1
            else:
                self._state.failures += 1
