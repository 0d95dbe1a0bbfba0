import logging
from datetime import date
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from context import OwnerContext
from errors import PersistenceFailure
from gateway import PersistenceGateway, SQLAlchemyGateway
from models import Collection
from services import RecurrenceExpander

logger = logging.getLogger(__name__)


def expand_all_owners(gateway: PersistenceGateway, today: Optional[date] = None) -> int:
    """Run recurrence expansion for every owner that has templates."""
    posted = 0
    for owner_id in gateway.owner_ids(Collection.recurring.value):
        try:
            result = RecurrenceExpander(gateway, OwnerContext(owner_id)).run(today)
        except PersistenceFailure:
            logger.exception(f"scheduler_owner_failed: owner_id={owner_id}")
            continue
        posted += len(result.generated)
    return posted


class SchedulerManager:
    def __init__(self, gateway: Optional[PersistenceGateway] = None) -> None:
        settings = get_settings()
        self.gateway = gateway or SQLAlchemyGateway()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"scheduler_run: source={source}")
        try:
            count = expand_all_owners(self.gateway)
        except PersistenceFailure:
            logger.exception(f"scheduler_run_failed: source={source}")
            return
        logger.info(f"scheduler_run: source={source} occurrences_posted={count}")

    def start(self) -> None:
        self._run_job("startup")

        trigger = CronTrigger(hour=3, minute=15)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["daily_03:15"],
            id="recurring_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = IntervalTrigger(hours=1)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["hourly_safety_net"],
            id="recurring_hourly_safety",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info("Scheduler started with daily 03:15 and hourly safety net")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
