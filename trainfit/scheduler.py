"""In-process cron scheduler for billing housekeeping.

Each job runs in its own asyncio task that sleeps until the next cron fire
time (in the configured timezone), awaits the run, then computes the
following fire time. A run therefore never overlaps with the previous run of
the same job.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from zoneinfo import ZoneInfo

from croniter import croniter

from trainfit.billing.reminders import run_payment_reminders
from trainfit.config import settings
from trainfit.database import async_session_factory
from trainfit.services.email_service import ResendEmailSender
from trainfit.services.notification_service import cleanup_old_notifications

logger = logging.getLogger(__name__)


class CronJob:
    """A named coroutine function fired on a cron expression."""

    def __init__(self, name: str, expression: str, func: Callable[[], Awaitable[object]]) -> None:
        if not croniter.is_valid(expression):
            raise ValueError(f"Invalid cron expression for {name}: {expression!r}")
        self.name = name
        self.expression = expression
        self.func = func

    def next_run(self, after: datetime) -> datetime:
        return croniter(self.expression, after).get_next(datetime)


class Scheduler:
    """Runs ``CronJob``s until stopped."""

    def __init__(self, jobs: list[CronJob], timezone_name: str = "UTC") -> None:
        self.jobs = jobs
        self.tz = ZoneInfo(timezone_name)
        self._stop_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    def start(self) -> None:
        """Start one background loop per job."""
        if any(not task.done() for task in self._tasks):
            return
        self._stop_event.clear()
        self._tasks = [
            asyncio.create_task(self._run_loop(job), name=f"cron:{job.name}") for job in self.jobs
        ]
        logger.info("Scheduler started with jobs: %s", ", ".join(job.name for job in self.jobs))

    async def stop(self) -> None:
        """Stop the loops, letting an in-flight run finish."""
        self._stop_event.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Scheduler stopped")

    async def run_job(self, job: CronJob) -> None:
        """Run a job once; failures are logged so the loop keeps going."""
        logger.info("Running scheduled job %s", job.name)
        try:
            await job.func()
        except Exception:
            logger.exception("Scheduled job %s failed", job.name)

    async def _run_loop(self, job: CronJob) -> None:
        while not self._stop_event.is_set():
            now = datetime.now(self.tz)
            next_run = job.next_run(now)
            delay = (next_run - now).total_seconds()
            logger.debug("Job %s next run at %s", job.name, next_run.isoformat())
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                return
            except asyncio.TimeoutError:
                pass
            await self.run_job(job)


async def payment_reminders_job() -> None:
    async with async_session_factory() as db:
        await run_payment_reminders(db, ResendEmailSender())
        await db.commit()


async def notification_cleanup_job() -> None:
    async with async_session_factory() as db:
        await cleanup_old_notifications(db, settings.notification_retention_days)
        await db.commit()


def create_scheduler() -> Scheduler:
    return Scheduler(
        jobs=[
            CronJob("payment_reminders", settings.payment_reminder_cron, payment_reminders_job),
            CronJob(
                "notification_cleanup",
                settings.notification_cleanup_cron,
                notification_cleanup_job,
            ),
        ],
        timezone_name=settings.scheduler_timezone,
    )
