import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from rate_limit import ai_chat_rate_limiter


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        removed = ai_chat_rate_limiter.cleanup()
        if removed:
            logger.info(f"rate_limit_cleanup: source={source} expired_windows={removed}")

    def start(self) -> None:
        trigger = IntervalTrigger(seconds=60)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["interval_60s"],
            id="rate_limit_cleanup",
            replace_existing=True,
            misfire_grace_time=30,
        )

        self.scheduler.start()
        logger.info("Scheduler started with rate limit cleanup every 60s")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
