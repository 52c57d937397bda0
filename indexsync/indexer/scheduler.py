"""
Calendar-based crawl scheduler.

Runs the registered reconcilers sequentially on an asyncio background task,
computes the next fire time from the schedule, and clears the index on
start or every N passes when configured.
"""

import asyncio
import calendar
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from .reconciler import Reconciler
from ..models.config import ScheduleMode, ScheduleSpec
from ..storage.connector import IndexConnector
from ..storage.mappings import MappingLoader

logger = logging.getLogger(__name__)


class SchedulerState(Enum):
    """State of the crawl scheduler."""
    IDLE = "idle"
    RUNNING = "running"
    WAITING = "waiting"
    STOPPED = "stopped"


def _add_month(moment: datetime) -> datetime:
    year, month = (moment.year + 1, 1) if moment.month == 12 else (moment.year, moment.month + 1)
    return moment.replace(year=year, month=month, day=1)


def _clamped_day(moment: datetime, day: int) -> datetime:
    last_day = calendar.monthrange(moment.year, moment.month)[1]
    return moment.replace(day=min(day, last_day))


def compute_next_run(spec: ScheduleSpec, base: datetime) -> Optional[datetime]:
    """
    Compute the next fire time of a schedule.

    The base time (last pass completion, or now) is truncated to the full
    hour before comparing, so a pass that finishes within the configured
    hour does not fire again the same day.

    Args:
        spec: Schedule to evaluate
        base: Reference time

    Returns:
        Next fire time, or None for one-shot schedules
    """
    if spec.mode == ScheduleMode.ONCE:
        return None

    base = base.replace(minute=0, second=0, microsecond=0)

    if spec.mode == ScheduleMode.DAILY:
        if base.hour >= spec.hour:
            base += timedelta(days=1)
        return base.replace(hour=spec.hour)

    if spec.mode == ScheduleMode.WEEKLY:
        weekday = base.weekday()
        if weekday > spec.day or (weekday == spec.day and base.hour >= spec.hour):
            base += timedelta(days=7)
        base += timedelta(days=spec.day - base.weekday())
        return base.replace(hour=spec.hour)

    # Monthly; short months fire on their last day
    candidate = _clamped_day(base, spec.day).replace(hour=spec.hour)
    if candidate <= base:
        candidate = _clamped_day(_add_month(base), spec.day).replace(hour=spec.hour)
    return candidate


@dataclass
class SchedulerMetrics:
    """Metrics of crawl passes."""
    total_passes: int = 0
    successful_passes: int = 0
    failed_passes: int = 0
    index_clears: int = 0
    last_pass_time: Optional[datetime] = None
    last_pass_duration_seconds: float = 0.0
    total_pass_time_seconds: float = 0.0

    def update(self, execution_time: float, success: bool, finished_at: datetime) -> None:
        """Record a finished pass."""
        self.total_passes += 1
        if success:
            self.successful_passes += 1
        else:
            self.failed_passes += 1
        self.last_pass_time = finished_at
        self.last_pass_duration_seconds = execution_time
        self.total_pass_time_seconds += execution_time

    @property
    def average_pass_time_seconds(self) -> float:
        if self.total_passes == 0:
            return 0.0
        return self.total_pass_time_seconds / self.total_passes

    def to_dict(self) -> Dict[str, Any]:
        """Convert metrics to dictionary."""
        return {
            "total_passes": self.total_passes,
            "successful_passes": self.successful_passes,
            "failed_passes": self.failed_passes,
            "index_clears": self.index_clears,
            "last_pass_time": self.last_pass_time.isoformat() if self.last_pass_time else None,
            "last_pass_duration_seconds": self.last_pass_duration_seconds,
            "average_pass_time_seconds": self.average_pass_time_seconds
        }


class CrawlScheduler:
    """
    Asyncio-based scheduler driving full reconciliation passes.

    Passes never overlap: the background loop and immediate triggers share
    one pass lock. Waiting for the next fire time is a cancellable wait on
    the stop event, so stop() returns without sleeping out the interval.
    """

    def __init__(
        self,
        reconcilers: Sequence[Reconciler],
        connector: IndexConnector,
        index: str,
        spec: ScheduleSpec,
        mapping_loader: Optional[MappingLoader] = None,
        clock: Callable[[], datetime] = datetime.now,
        stop_timeout: float = 30.0
    ):
        """
        Initialize the scheduler.

        Args:
            reconcilers: Reconcilers run in this order every pass
            connector: Connector used to clear the index
            index: Index cleared on start / every N passes
            spec: Schedule configuration
            mapping_loader: Reapplies mappings after each clear
            clock: Source of the current local time
            stop_timeout: Seconds stop() waits for a running pass before cancelling it
        """
        self.reconcilers = list(reconcilers)
        self.connector = connector
        self.index = index
        self.spec = spec
        self.mapping_loader = mapping_loader
        self._clock = clock
        self.stop_timeout = stop_timeout

        # Crawl cadence state
        self.state = SchedulerState.IDLE
        self.pass_count = 0
        self.next_run: Optional[datetime] = None
        self._last_pass_end: Optional[datetime] = None
        self._last_error: Optional[str] = None

        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._lifecycle_lock = asyncio.Lock()
        self._pass_lock = asyncio.Lock()

        self.metrics = SchedulerMetrics()

        logger.info(
            f"Initialized crawl scheduler for '{index}' "
            f"(mode: {spec.mode.value}, hour: {spec.hour}, day: {spec.day}, "
            f"clear every: {spec.clear_every_n_passes})"
        )

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> bool:
        """
        Start the background crawl loop.

        Returns:
            True if started, False if disabled or already running
        """
        async with self._lifecycle_lock:
            if not self.spec.enabled:
                logger.info("Full crawl disabled, scheduler not started")
                return False
            if self.is_active:
                logger.warning(f"Crawl scheduler is already {self.state.value}")
                return False

            self._stop_event.clear()
            self.state = SchedulerState.IDLE
            self._task = asyncio.create_task(self._run())
            logger.info(f"Started crawl scheduler for '{self.index}'")
            return True

    async def stop(self) -> None:
        """Stop the crawl loop; idempotent."""
        async with self._lifecycle_lock:
            self._stop_event.set()
            if self.state == SchedulerState.STOPPED and not self.is_active:
                logger.debug("Crawl scheduler is already stopped")
                return

            logger.info("Stopping crawl scheduler...")
            self.state = SchedulerState.STOPPED
            self.next_run = None

            if self._task and not self._task.done():
                try:
                    await asyncio.wait_for(asyncio.shield(self._task), timeout=self.stop_timeout)
                except asyncio.TimeoutError:
                    logger.warning(f"Running pass did not finish within {self.stop_timeout}s, cancelling")
                    self._task.cancel()
                    try:
                        await self._task
                    except asyncio.CancelledError:
                        logger.debug("Crawl task cancelled during shutdown")

            self._task = None
            logger.info("Crawl scheduler stopped")

    async def wait_closed(self) -> None:
        """Wait until the background loop ends (one-shot schedule or stop)."""
        if self._task is not None:
            await asyncio.shield(self._task)

    async def clear_index(self) -> bool:
        """
        Delete and recreate the index, then reapply mappings.

        Returns:
            True if the index was cleared
        """
        try:
            await self.connector.clear_index(self.index)
            if self.mapping_loader is not None:
                await self.mapping_loader.load()
            self.metrics.index_clears += 1
            logger.info(f"Cleared index '{self.index}'")
            return True
        except Exception as e:
            self._last_error = f"Clearing index '{self.index}' failed: {e}"
            logger.error(self._last_error)
            return False

    async def run_pass(self) -> Dict[str, Any]:
        """
        Run every reconciler once, clearing the index first when due.

        Returns:
            Dictionary with per-kind results
        """
        async with self._pass_lock:
            if self.state != SchedulerState.STOPPED:
                self.state = SchedulerState.RUNNING
            start_time = time.perf_counter()

            self.pass_count += 1
            cleared = False
            every = self.spec.clear_every_n_passes
            if every > 0 and self.pass_count % every == 0:
                logger.info(f"Pass {self.pass_count}: clearing index before crawling")
                cleared = await self.clear_index()

            results = []
            for reconciler in self.reconcilers:
                try:
                    result = await reconciler.reconcile()
                    results.append(result.to_dict())
                except Exception as e:
                    error_msg = f"Reconciling {reconciler.name} failed: {e}"
                    logger.error(error_msg)
                    results.append({"kind": reconciler.name, "success": False, "errors": [error_msg]})

            execution_time = time.perf_counter() - start_time
            success = all(r.get("success", False) for r in results)
            self._last_pass_end = self._clock()
            self.metrics.update(execution_time, success, self._last_pass_end)
            if not success:
                self._last_error = "; ".join(e for r in results for e in r.get("errors", []))

            if self.state == SchedulerState.RUNNING:
                self.state = SchedulerState.WAITING if self.is_active else SchedulerState.IDLE

            logger.info(f"Crawl pass {self.pass_count} finished in {execution_time:.2f}s")
            return {
                "success": success,
                "pass_number": self.pass_count,
                "cleared": cleared,
                "execution_time_seconds": execution_time,
                "results": results
            }

    async def trigger_immediate_run(self) -> Dict[str, Any]:
        """Run a pass outside the regular schedule."""
        if self.state == SchedulerState.STOPPED:
            return {"success": False, "error": "Scheduler is stopped"}
        logger.info("Triggering immediate crawl pass...")
        return await self.run_pass()

    def _seconds_until(self, moment: datetime) -> float:
        return (moment - self._clock()).total_seconds()

    async def _run(self) -> None:
        """Main background loop."""
        try:
            if self.spec.clear_on_start:
                await self.clear_index()

            # One-shot schedules always run their single pass
            crawl = self.spec.crawl_on_start or self.spec.mode == ScheduleMode.ONCE

            while not self._stop_event.is_set():
                if crawl:
                    await self.run_pass()
                    if self._stop_event.is_set():
                        break

                self.next_run = compute_next_run(self.spec, self._last_pass_end or self._clock())
                if self.next_run is None:
                    logger.info("One-shot crawl finished, scheduler deactivated")
                    break

                delay = self._seconds_until(self.next_run)
                if delay <= 0:
                    logger.warning(f"Next crawl time {self.next_run.isoformat()} already passed, crawling now")
                    delay = 0

                self.state = SchedulerState.WAITING
                logger.info(f"Next crawl pass at {self.next_run.isoformat()} (in {delay:.0f}s)")
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                    break
                except asyncio.TimeoutError:
                    crawl = True

        except asyncio.CancelledError:
            logger.debug("Crawl loop cancelled")
            raise
        except Exception as e:
            self._last_error = f"Unexpected error in crawl loop: {e}"
            logger.error(self._last_error)
        finally:
            self.state = SchedulerState.STOPPED
            self.next_run = None

    def get_status(self) -> Dict[str, Any]:
        """Get current scheduler status and metrics."""
        return {
            "state": self.state.value,
            "index": self.index,
            "pass_count": self.pass_count,
            "next_run_time": self.next_run.isoformat() if self.next_run else None,
            "last_error": self._last_error,
            "reconcilers": [r.name for r in self.reconcilers],
            "schedule": self.spec.model_dump(mode='json'),
            "metrics": self.metrics.to_dict()
        }
