"""Tests for the cron scheduler."""

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from trainfit.config import settings
from trainfit.scheduler import CronJob, Scheduler, create_scheduler


class TestCronJob:
    def test_invalid_expression_rejected(self):
        with pytest.raises(ValueError):
            CronJob("bad", "not a cron", AsyncMock())

    def test_next_run_daily_at_nine(self):
        job = CronJob("daily", "0 9 * * *", AsyncMock())

        assert job.next_run(datetime(2026, 3, 10, 8, 30)) == datetime(2026, 3, 10, 9, 0)
        assert job.next_run(datetime(2026, 3, 10, 9, 0)) == datetime(2026, 3, 11, 9, 0)

    def test_weekly_cleanup_on_sunday(self):
        job = CronJob("weekly", settings.notification_cleanup_cron, AsyncMock())

        # 2026-03-10 is a Tuesday
        assert job.next_run(datetime(2026, 3, 10, 12, 0)) == datetime(2026, 3, 15, 2, 0)


class TestScheduler:
    @pytest.mark.asyncio
    async def test_run_job_swallows_and_logs_failures(self, caplog):
        job = CronJob("boom", "* * * * *", AsyncMock(side_effect=RuntimeError("db down")))

        await Scheduler([job]).run_job(job)

        assert "Scheduled job boom failed" in caplog.text

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        func = AsyncMock()
        scheduler = Scheduler([CronJob("idle", "0 0 1 1 *", func)])

        scheduler.start()
        await asyncio.sleep(0)
        await scheduler.stop()

        func.assert_not_awaited()

    def test_create_scheduler_registers_jobs(self):
        scheduler = create_scheduler()

        assert [job.name for job in scheduler.jobs] == ["payment_reminders", "notification_cleanup"]
