from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from lieutime.services.notification_service import NotificationService
from lieutime.database import SessionLocal
from lieutime.config import get_settings
from lieutime.utils.logging_config import cleanup_old_logs
from lieutime.utils.timezone import utc_now
import logging

logger = logging.getLogger(__name__)
settings = get_settings()


class TaskScheduler:
    def __init__(self, session_factory=SessionLocal):
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.session_factory = session_factory

    def start(self):
        # Hourly detector run; the reminder itself is gated by the configured day/hour
        self.scheduler.add_job(
            self.run_notification_checks,
            CronTrigger(minute=settings.notifications_job_minute, timezone="UTC"),
            id='notification_checks',
            replace_existing=True
        )

        self.scheduler.add_job(
            self.cleanup_logs,
            CronTrigger(hour=3, minute=30, timezone="UTC"),
            id='log_cleanup',
            replace_existing=True
        )

        self.scheduler.start()
        logger.info(f"Scheduler started - notification checks hourly at minute {settings.notifications_job_minute} (UTC)")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown()
        logger.info("Scheduler stopped")

    def run_notification_checks(self, now=None):
        """Run the periodic notification checks for every user. Returns created counts per user."""
        logger.info("=== STARTING NOTIFICATION CHECKS ===")
        start_time = utc_now()

        db = self.session_factory()
        try:
            results = NotificationService(db).generate_for_all_users(now or start_time)
            created = sum(results.values())
            execution_time = (utc_now() - start_time).total_seconds()
            logger.info(f"📊 Notification checks: {created} created for {len(results)} users in {execution_time:.2f} seconds")
            return results
        except Exception as e:
            execution_time = (utc_now() - start_time).total_seconds()
            logger.error(f"💥 CRITICAL ERROR in notification checks after {execution_time:.2f} seconds: {str(e)}", exc_info=True)
            raise
        finally:
            db.close()

    def cleanup_logs(self):
        removed = cleanup_old_logs(days_to_keep=30)
        logger.debug(f"Log cleanup removed {len(removed)} files")
