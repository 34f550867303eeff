import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError

from balance_cache import BalanceCache
from database import session_scope
from errors import UpstreamFetchError
from recurrence import local_today
from services import ScheduledExecutionService


logger = logging.getLogger(__name__)

DAILY_JOB_ID = "scheduled_transactions_daily"
HOURLY_JOB_ID = "scheduled_transactions_hourly"


class SchedulerManager:
    """Posts due scheduled transactions in a background thread.

    The daily run fires at 00:01 UTC; the hourly run only catches what a
    missed or failed daily run left behind, since posting is idempotent.
    """

    def __init__(self, cache: BalanceCache) -> None:
        self.cache = cache
        self.scheduler = BackgroundScheduler(timezone="UTC")

    def run_once(self, source: str = "manual") -> Optional[dict[str, int]]:
        today = local_today()
        logger.info(f"scheduler_run: source={source} today={today}")
        try:
            with session_scope() as session:
                counts = ScheduledExecutionService(session, self.cache).execute_due(today)
        except (SQLAlchemyError, UpstreamFetchError):
            # the next trigger retries
            logger.exception(f"scheduler_run_failed: source={source}")
            return None
        logger.info(
            f"scheduler_run: source={source} processed={counts['processed']} "
            f"skipped={counts['skipped']} errors={counts['errors']}"
        )
        return counts

    def start(self) -> None:
        if self.scheduler.running:
            return
        self.run_once("startup")

        job_defaults = {"replace_existing": True, "coalesce": True, "max_instances": 1}
        self.scheduler.add_job(
            self.run_once,
            CronTrigger(hour=0, minute=1),
            args=["daily_00:01"],
            id=DAILY_JOB_ID,
            misfire_grace_time=3600,
            **job_defaults,
        )
        self.scheduler.add_job(
            self.run_once,
            IntervalTrigger(hours=1),
            args=["hourly_safety_net"],
            id=HOURLY_JOB_ID,
            misfire_grace_time=300,
            **job_defaults,
        )

        self.scheduler.start()
        logger.info("Scheduler started with daily 00:01 UTC and hourly safety net")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
