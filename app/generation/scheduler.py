import logging
from datetime import timedelta
from typing import Callable

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from app.billing.timeutils import now_utc

logger = logging.getLogger(__name__)


class JobScheduler:
    """
    In-process deferred execution for generation jobs.

    Each submitted job gets a one-shot date trigger keyed by its id, so
    scheduling the same job twice replaces rather than duplicates the task.
    Anything lost on restart is picked up by the orchestrator's recovery pass.
    """

    def __init__(self, delay_seconds: int = 0, max_workers: int = 4):
        self.delay_seconds = delay_seconds
        self.scheduler = BackgroundScheduler(
            timezone="UTC",  # ensure UTC schedule
            executors={"default": ThreadPoolExecutor(max_workers)},
            job_defaults={"coalesce": True, "misfire_grace_time": None, "max_instances": 1},
        )

    def start(self):
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Job scheduler started")

    def shutdown(self, wait: bool = False):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("Job scheduler stopped")

    def schedule(self, func: Callable[[int], None], job_id: int, delay_seconds: int = None):
        delay = self.delay_seconds if delay_seconds is None else delay_seconds
        run_date = now_utc() + timedelta(seconds=delay)
        self.scheduler.add_job(
            func,
            DateTrigger(run_date=run_date, timezone="UTC"),
            args=[job_id],
            id=f"generate-{job_id}",
            replace_existing=True,
        )
        logger.info(f"Scheduled generation job {job_id} at {run_date.isoformat()}")

    def every(self, func: Callable[[], object], minutes: int, name: str):
        self.scheduler.add_job(
            func,
            IntervalTrigger(minutes=minutes, timezone="UTC"),
            id=name,
            replace_existing=True,
        )
