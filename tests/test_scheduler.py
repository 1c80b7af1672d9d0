from datetime import datetime, timezone

import pytest

from harvester.infra.scheduler import Scheduler, validate_cron_expression


async def job():
    return None


@pytest.mark.parametrize("expr", ["0 0 * * *", "*/15 * * * *", "30 6 * * 1-5"])
def test_valid_cron_expressions(expr):
    assert validate_cron_expression(expr)


@pytest.mark.parametrize("expr", ["", "every day", "0 0 * *", "61 0 * * *", "0 0 * * * *"])
def test_invalid_cron_expressions(expr):
    assert not validate_cron_expression(expr)


def test_cron_job_is_registered():
    scheduler = Scheduler()
    scheduler.add_cron_job(job, "0 0 * * *", job_id="scrape-run")

    jobs = scheduler.list_jobs()

    assert list(jobs) == ["scrape-run"]
    assert "cron" in jobs["scrape-run"]["trigger"]


def test_bad_cron_expression_is_rejected():
    with pytest.raises(ValueError, match="Invalid cron expression"):
        Scheduler().add_cron_job(job, "whenever", job_id="scrape-run")


def test_interval_job_needs_a_period():
    scheduler = Scheduler()
    with pytest.raises(ValueError):
        scheduler.add_interval_job(job, job_id="sync")
    scheduler.add_interval_job(job, seconds=60, job_id="sync")
    assert "sync" in scheduler.list_jobs()


def test_run_now_schedules_the_first_run_immediately():
    scheduler = Scheduler()
    scheduler.add_cron_job(job, "0 0 * * *", job_id="scrape-run", run_now=True)
    scheduler.add_interval_job(job, seconds=60, job_id="sync-queue")

    jobs = scheduler.list_jobs()

    assert jobs["scrape-run"]["next_run"] <= datetime.now(timezone.utc)
    assert jobs["sync-queue"]["next_run"] is None
