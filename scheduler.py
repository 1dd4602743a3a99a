import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from services import (
    AlertService,
    active_user_ids,
    purge_expired_alerts,
    purge_stale_alerts,
)


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.refresh_minutes = settings.alert_refresh_minutes
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _refresh_alerts(self, source: str = "manual") -> None:
        logger.info(f"scheduler_run: source={source}")
        with session_scope() as session:
            user_ids = active_user_ids(session)
        refreshed = 0
        for user_id in user_ids:
            try:
                with session_scope() as session:
                    AlertService(session, user_id).regenerate_all()
            except Exception:
                # One user's failure must not skip the rest of the run.
                logger.exception(
                    f"scheduler_run: source={source} user_id={user_id} failed"
                )
                continue
            refreshed += 1
        logger.info(
            f"scheduler_run: source={source} users_refreshed={refreshed} "
            f"users_failed={len(user_ids) - refreshed}"
        )

    def _purge_alerts(self, source: str = "manual") -> None:
        with session_scope() as session:
            expired = purge_expired_alerts(session)
            stale = purge_stale_alerts(session)
        logger.info(
            f"scheduler_run: source={source} expired_deleted={expired} "
            f"stale_deleted={stale}"
        )

    def start(self) -> None:
        self._purge_alerts("startup")
        self._refresh_alerts("startup")

        trigger = IntervalTrigger(minutes=self.refresh_minutes)
        self.scheduler.add_job(
            self._refresh_alerts,
            trigger,
            args=[f"every_{self.refresh_minutes}m"],
            id="alerts_refresh",
            replace_existing=True,
            misfire_grace_time=300,
        )

        trigger = CronTrigger(hour=3, minute=15)
        self.scheduler.add_job(
            self._purge_alerts,
            trigger,
            args=["daily_03:15"],
            id="alerts_purge_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info(
            f"Scheduler started with {self.refresh_minutes}m alert refresh "
            "and daily 03:15 purge"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
