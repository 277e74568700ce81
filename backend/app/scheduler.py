"""APScheduler integration for periodic sync jobs."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from app.database import SessionLocal
from app.models.mapping import Mapping
from app.models.schedule import Schedule
from app.services.connection_service import get_connector_instance
from app.services.sync_service import batch_sync

log = logging.getLogger(__name__)

JOB_ID = "periodic_sync_job"

# Global scheduler instance
scheduler = AsyncIOScheduler()

# Guard against overlapping scheduled runs
_sync_running = False


async def scheduled_sync_job():
    """Batch-sync every enabled mapping; skipped while a previous scheduled run is active."""
    global _sync_running

    if _sync_running:
        log.warning("Scheduled sync skipped: previous run still active")
        return

    _sync_running = True
    db = SessionLocal()
    try:
        schedule = db.query(Schedule).first()
        if not schedule or not schedule.enabled:
            log.info("Scheduled sync skipped: scheduler disabled")
            return

        mapping_ids = [
            m.id for m in db.query(Mapping).filter(Mapping.enabled == True).order_by(Mapping.id).all()  # noqa: E712
        ]
        if not mapping_ids:
            log.info("Scheduled sync skipped: no enabled mappings")
            return

        log.info(f"Starting scheduled sync of {len(mapping_ids)} mapping(s)")
        results = await batch_sync(db, mapping_ids, get_connector_instance, trigger_type='scheduled')
        failed = [r.mapping_id for r in results if not r.success]
        if failed:
            log.warning(f"Scheduled sync finished with failures for mappings {failed}")
        else:
            log.info("Scheduled sync finished successfully")

    except Exception as e:
        log.error(f"Scheduled sync failed: {e}", exc_info=True)
    finally:
        _sync_running = False
        db.close()


def reschedule_sync_job(cron: str, timezone: str, enabled: bool):
    """Dynamically reschedule the sync job without restarting the app."""
    if scheduler.get_job(JOB_ID):
        scheduler.remove_job(JOB_ID)
        log.info(f"Removed existing job: {JOB_ID}")

    if not enabled:
        log.info("Scheduled sync job disabled")
        return

    trigger = CronTrigger.from_crontab(cron, timezone=timezone)
    scheduler.add_job(
        scheduled_sync_job,
        trigger=trigger,
        id=JOB_ID,
        replace_existing=True
    )
    log.info(f"Scheduled sync job updated: cron='{cron}' ({timezone})")


def start_scheduler():
    """Start the APScheduler and load initial schedule."""
    db = SessionLocal()
    try:
        schedule = db.query(Schedule).first()
        if schedule and schedule.enabled:
            reschedule_sync_job(schedule.cron, schedule.timezone, True)
            log.info(f"Loaded schedule from database: cron='{schedule.cron}'")
        else:
            log.info("No active schedule found in database")
    except Exception as e:
        log.warning(f"Failed to load initial schedule: {e}")
    finally:
        db.close()

    if not scheduler.running:
        scheduler.start()
        log.info("APScheduler started successfully")


def shutdown_scheduler():
    """Shutdown the APScheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        log.info("APScheduler shut down successfully")
