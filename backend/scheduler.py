"""
Background Scheduler for Oraculum

Handles automatic tasks:
- Oracle check: one watcher tick over markets awaiting resolution
- Dispute finalization when voting windows close

Uses asyncio for non-blocking background tasks. A job never overlaps
itself: the next run is scheduled only after the previous one returns.
"""

import asyncio
import logging
import traceback
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

logger = logging.getLogger("Oraculum-Scheduler")


@dataclass
class JobStats:
    interval_seconds: int
    runs: int = 0
    failures: int = 0
    last_run: Optional[str] = None
    last_error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "interval_seconds": self.interval_seconds,
            "runs": self.runs,
            "failures": self.failures,
            "last_run": self.last_run,
            "last_error": self.last_error,
        }


class BackgroundScheduler:
    """
    Background job runner for the oracle and dispute loops.
    Runs periodic jobs without blocking the main API.
    """

    def __init__(self):
        self.tasks: Dict[str, asyncio.Task] = {}
        self.stats: Dict[str, JobStats] = {}
        self.running = False
        self._stop_event: Optional[asyncio.Event] = None

    async def start(self):
        if self.running:
            logger.warning("Scheduler already running")
            return

        self.running = True
        self._stop_event = asyncio.Event()
        logger.info("Background scheduler started")

    async def stop(self):
        """Stop all scheduled jobs and wait for them to unwind."""
        self.running = False
        if self._stop_event:
            self._stop_event.set()

        for task in self.tasks.values():
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self.tasks.clear()
        logger.info("Background scheduler stopped")

    async def _wait_interval(self, interval_seconds: int) -> bool:
        """Sleep for one interval. Returns False once the scheduler is stopping."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=interval_seconds)
            return False
        except asyncio.TimeoutError:
            return self.running

    async def _run_job(self, name: str, job: Callable) -> None:
        stats = self.stats[name]
        stats.runs += 1
        stats.last_run = datetime.now(timezone.utc).isoformat()
        try:
            await job()
            stats.last_error = None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            stats.failures += 1
            stats.last_error = str(e)
            logger.error(f"Error in scheduled job '{name}': {e}")
            logger.debug(traceback.format_exc())

    def schedule_periodic(
        self,
        name: str,
        job: Callable,
        interval_seconds: int,
        run_immediately: bool = False
    ):
        """
        Schedule a coroutine function to run periodically.

        Args:
            name: Unique job name; rescheduling a name replaces the old job
            job: Async function taking no arguments
            interval_seconds: Seconds between the end of one run and the next
            run_immediately: Run once right away instead of after the first interval
        """
        if not self.running:
            raise RuntimeError("Scheduler must be started before scheduling jobs")
        if name in self.tasks:
            self.tasks[name].cancel()

        self.stats[name] = JobStats(interval_seconds=interval_seconds)

        async def loop():
            if not run_immediately and not await self._wait_interval(interval_seconds):
                return
            while self.running:
                await self._run_job(name, job)
                if not await self._wait_interval(interval_seconds):
                    return

        self.tasks[name] = asyncio.create_task(loop())
        logger.info(f"Scheduled job '{name}' every {interval_seconds}s")

    def unschedule(self, name: str):
        task = self.tasks.pop(name, None)
        if task is not None:
            task.cancel()
            logger.info(f"Unscheduled job '{name}'")

    def status(self) -> dict:
        return {
            "running": self.running,
            "jobs": {
                name: {**stats.to_dict(), "active": name in self.tasks and not self.tasks[name].done()}
                for name, stats in self.stats.items()
            },
        }


# Global scheduler instance
_scheduler: Optional[BackgroundScheduler] = None


def get_scheduler() -> BackgroundScheduler:
    """Get or create the global scheduler instance."""
    global _scheduler
    if _scheduler is None:
        _scheduler = BackgroundScheduler()
    return _scheduler


# ==================== Scheduled Jobs ====================

async def oracle_check(watcher) -> None:
    """Run one watcher tick over markets in Resolving."""
    result = await watcher.check_pending_resolutions()
    if result.processed or result.errors:
        logger.info(f"Oracle check: {result.to_dict()}")


async def finalize_disputes(manager) -> None:
    """Finalize disputes whose voting window has closed."""
    settlements = await asyncio.to_thread(manager.finalize_expired_disputes)
    for settlement in settlements:
        outcome = settlement.outcome.name if settlement.outcome else "unresolved"
        logger.info(f"  Dispute on market {settlement.market_id}: {settlement.status.value} ({outcome})")


# ==================== Setup ====================

async def setup_scheduler(services, settings) -> BackgroundScheduler:
    """
    Start the scheduler with the oracle and dispute jobs.
    Called from the API lifespan when the scheduler is enabled.
    """
    scheduler = get_scheduler()
    await scheduler.start()

    scheduler.schedule_periodic(
        name="oracle_check",
        job=lambda: oracle_check(services.watcher),
        interval_seconds=settings.oracle_check_interval,
        run_immediately=True
    )
    scheduler.schedule_periodic(
        name="finalize_disputes",
        job=lambda: finalize_disputes(services.disputes),
        interval_seconds=settings.dispute_check_interval,
    )

    logger.info("All background jobs scheduled")
    return scheduler


async def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    await get_scheduler().stop()
