import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from recurrence import RecurringEngine
from store import TransactionStore


logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


def run_recurring_tick(source: str = "manual") -> int:
    logger.info(f"scheduler_run: source={source}")
    with session_scope() as session:
        count = RecurringEngine(TransactionStore(session)).post_due_templates()
    logger.info(f"scheduler_run: source={source} templates_posted={count}")
    return count


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.enabled = settings.scheduler_enabled
        self.interval_hours = settings.scheduler_interval_hours
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        run_recurring_tick(source)

    def start(self) -> None:
        if not self.enabled:
            logger.info("Scheduler disabled")
            return

        self._run_job("startup")

        trigger = IntervalTrigger(hours=self.interval_hours)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=[f"every_{self.interval_hours:g}h"],
            id="recurring_catch_up",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info(f"Scheduler started, running every {self.interval_hours:g}h")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
