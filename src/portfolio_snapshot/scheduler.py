"""Daemon mode: trigger the daily valuation run with APScheduler."""
from __future__ import annotations

import logging
from typing import Callable
from zoneinfo import ZoneInfo

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from .config import Settings
from .db import create_db_engine
from .runner import run_daily_record

LOGGER = logging.getLogger(__name__)

JOB_ID = "daily-valuation"


def make_job(settings: Settings, run: Callable[..., object] = run_daily_record) -> Callable[[], None]:
    """Wrap the valuation run so a failed run never stops the scheduler."""

    engine = create_db_engine(settings.database_url)

    def _valuation_job() -> None:
        LOGGER.info("Running scheduled valuation job")
        try:
            summary = run(settings, engine=engine)
        except Exception:  # pragma: no cover - defensive logging
            LOGGER.exception("Scheduled valuation run failed")
            return
        if getattr(summary, "succeeded", True):
            LOGGER.info("Scheduled valuation job completed successfully")
        else:
            LOGGER.error("Scheduled valuation job completed with failed users: %s", summary.users_failed)

    return _valuation_job


def build_scheduler(settings: Settings, job: Callable[[], None] | None = None) -> BlockingScheduler:
    """Create a scheduler with the valuation job installed at the configured time."""

    scheduler = BlockingScheduler(timezone=ZoneInfo(settings.timezone))
    trigger = CronTrigger(
        hour=settings.schedule_hour,
        minute=settings.schedule_minute,
        timezone=ZoneInfo(settings.timezone),
    )
    scheduler.add_job(job or make_job(settings), trigger=trigger, id=JOB_ID, replace_existing=True)
    LOGGER.info(
        "Scheduled daily valuation job for %02d:%02d %s",
        settings.schedule_hour,
        settings.schedule_minute,
        settings.timezone,
    )
    return scheduler


def run_scheduler(settings: Settings) -> None:
    scheduler = build_scheduler(settings)
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        LOGGER.info("Scheduler shut down")


__all__ = ["JOB_ID", "build_scheduler", "make_job", "run_scheduler"]
