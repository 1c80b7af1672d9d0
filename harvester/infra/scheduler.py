"""
Scheduler infrastructure for running periodic scrape runs.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from croniter import croniter


logger = logging.getLogger(__name__)


def validate_cron_expression(cron_expression: str) -> bool:
    """Five-field cron expression accepted by croniter."""
    if len(cron_expression.split()) != 5:
        return False
    return croniter.is_valid(cron_expression)


class Scheduler:
    """Async task scheduler wrapper around APScheduler.

    Jobs live in memory: a restarted service simply rebuilds its schedule
    from the environment.
    """

    def __init__(self, timezone: str = "UTC"):
        job_defaults = {
            # A scrape run must never overlap with the previous one
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": 60,  # seconds
        }
        self._scheduler = AsyncIOScheduler(job_defaults=job_defaults, timezone=timezone)
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Start the scheduler."""
        if not self._started:
            self._scheduler.start()
            self._started = True
            logger.info("Scheduler started")

    async def stop(self) -> None:
        """Stop the scheduler."""
        if self._started:
            self._scheduler.shutdown(wait=False)
            self._started = False
            logger.info("Scheduler stopped")

    def add_interval_job(
        self,
        func: Callable,
        seconds: Optional[float] = None,
        minutes: Optional[int] = None,
        hours: Optional[int] = None,
        job_id: Optional[str] = None,
        run_now: bool = False,
        **kwargs,
    ) -> None:
        """Add a job that runs at regular intervals, first at once if ``run_now``."""
        trigger_kwargs = {}
        if seconds is not None:
            trigger_kwargs["seconds"] = seconds
        if minutes is not None:
            trigger_kwargs["minutes"] = minutes
        if hours is not None:
            trigger_kwargs["hours"] = hours

        if not trigger_kwargs:
            raise ValueError("At least one of seconds, minutes, or hours must be specified")

        self._scheduler.add_job(
            func,
            trigger=IntervalTrigger(**trigger_kwargs),
            id=job_id,
            replace_existing=True,
            **self._first_run(run_now),
            **kwargs,
        )
        logger.info("Added interval job: %s", job_id or func.__name__)

    def add_cron_job(
        self,
        func: Callable,
        cron_expression: str,
        job_id: Optional[str] = None,
        run_now: bool = False,
        **kwargs,
    ) -> None:
        """Add a job that runs on a standard five-field cron schedule.

        With ``run_now`` the first run starts immediately; it still counts
        against ``max_instances`` so a tick never overlaps it.
        """
        if not validate_cron_expression(cron_expression):
            raise ValueError(
                f"Invalid cron expression {cron_expression!r}; expected 'minute hour day month day_of_week'"
            )

        self._scheduler.add_job(
            func,
            trigger=CronTrigger.from_crontab(cron_expression, timezone=self._scheduler.timezone),
            id=job_id,
            replace_existing=True,
            **self._first_run(run_now),
            **kwargs,
        )
        logger.info("Added cron job: %s (%s)", job_id or func.__name__, cron_expression)

    def _first_run(self, run_now: bool) -> Dict[str, Any]:
        if not run_now:
            return {}
        return {"next_run_time": datetime.now(self._scheduler.timezone)}

    def list_jobs(self) -> Dict[str, Any]:
        """List all scheduled jobs."""
        jobs = {}
        for job in self._scheduler.get_jobs():
            jobs[job.id] = {
                "name": job.name,
                "next_run": getattr(job, "next_run_time", None),
                "trigger": str(job.trigger),
            }
        return jobs
