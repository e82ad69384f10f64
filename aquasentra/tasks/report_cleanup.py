"""
Expired report cleanup task
Purges resolved reports whose retention window has passed, with their media files
"""
import logging

from aquasentra.core.config import settings
from aquasentra.core.logging import setup_logging
from aquasentra.domain.services.report_lifecycle import cleanup_expired_reports
from aquasentra.infrastructure.database import Database
from aquasentra.infrastructure.storage import LocalMediaStorage

logger = logging.getLogger(__name__)


def purge_expired_reports(database: Database, storage: LocalMediaStorage) -> dict:
    """
    Delete expired reports.
    Runs once per day (should be called via cron or scheduler)
    """
    db = database.session()
    try:
        purged = cleanup_expired_reports(db, storage=storage)
        logger.info(f"Purged {purged} expired reports")
        return {
            'status': 'success',
            'reports_purged': purged
        }
    except Exception as e:
        logger.error(f"Error purging expired reports: {e}")
        return {
            'status': 'error',
            'error': str(e)
        }
    finally:
        db.close()


def run_daily_tasks():
    """
    Run all daily maintenance tasks
    """
    logger.info("Starting daily report maintenance...")
    database = Database(settings.DATABASE_URL, echo=settings.DATABASE_ECHO).connect()
    try:
        result = purge_expired_reports(database, LocalMediaStorage())
    finally:
        database.dispose()
    logger.info(f"Daily tasks completed: {result}")
    return result


if __name__ == "__main__":
    setup_logging()
    run_daily_tasks()
