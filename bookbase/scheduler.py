import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler

from bookbase.config import settings
from bookbase.notifications import run_due_soon_job, run_overdue_job

logger = logging.getLogger(__name__)

_scheduler: Optional[BackgroundScheduler] = None


def _due_soon():
    try:
        run_due_soon_job()
    except Exception:
        logger.exception("Due soon reminder job failed")


def _overdue():
    try:
        run_overdue_job()
    except Exception:
        logger.exception("Overdue report job failed")


def create_scheduler() -> BackgroundScheduler:
    """Daily reminder jobs, both in UTC."""
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(_due_soon, "cron", hour=settings.due_soon_hour, minute=0, id="due_soon_reminders")
    scheduler.add_job(_overdue, "cron", hour=settings.overdue_hour, minute=0, id="overdue_report")
    return scheduler


def start_scheduler() -> BackgroundScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = create_scheduler()
        _scheduler.start()
        logger.info(
            "Scheduler started: due soon at %02d:00 UTC, overdue report at %02d:00 UTC",
            settings.due_soon_hour, settings.overdue_hour,
        )
    return _scheduler


def shutdown_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Scheduler stopped")
