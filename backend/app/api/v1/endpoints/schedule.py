"""Schedule endpoints for periodic sync configuration."""

from datetime import datetime
from typing import List
from zoneinfo import ZoneInfo
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from croniter import croniter

from app.database import get_db
from app.models.schedule import Schedule
from app.schemas.schedule import ScheduleResponse, ScheduleUpdate

log = logging.getLogger(__name__)
router = APIRouter()

DEFAULT_CRON = "0 */6 * * *"


def compute_next_runs(cron: str, timezone: str, count: int = 3) -> List[str]:
    """Compute next N run times from cron expression."""
    try:
        now = datetime.now(ZoneInfo(timezone))
        iter_obj = croniter(cron, now)
        return [iter_obj.get_next(datetime).isoformat() for _ in range(count)]
    except (ValueError, KeyError) as e:
        log.warning(f"Failed to compute next runs: {e}")
        return []


def get_or_create_schedule(db: Session) -> Schedule:
    schedule = db.query(Schedule).first()
    if not schedule:
        schedule = Schedule(cron=DEFAULT_CRON, timezone="UTC", enabled=False)
        db.add(schedule)
        db.commit()
        db.refresh(schedule)
        log.info("Created default schedule configuration")
    return schedule


def _response(schedule: Schedule) -> ScheduleResponse:
    next_runs = compute_next_runs(schedule.cron, schedule.timezone) if schedule.enabled else []
    return ScheduleResponse(
        id=schedule.id,
        cron=schedule.cron,
        timezone=schedule.timezone,
        enabled=schedule.enabled,
        next_runs=next_runs,
    )


@router.get("/", response_model=ScheduleResponse)
async def get_schedule(db: Session = Depends(get_db)):
    """Get current schedule configuration."""
    return _response(get_or_create_schedule(db))


@router.put("/", response_model=ScheduleResponse)
async def update_schedule(update: ScheduleUpdate, db: Session = Depends(get_db)):
    """Update schedule configuration and reschedule job."""
    schedule = get_or_create_schedule(db)

    for field, value in update.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(schedule, field, value)
    db.commit()
    db.refresh(schedule)

    # Import here to avoid circular dependency
    from app.scheduler import reschedule_sync_job
    try:
        reschedule_sync_job(schedule.cron, schedule.timezone, schedule.enabled)
        log.info(f"Schedule updated and rescheduled: cron='{schedule.cron}', enabled={schedule.enabled}")
    except ValueError as e:
        # Schedule is saved; the job picks it up on next start
        log.error(f"Failed to reschedule sync job: {e}")

    return _response(schedule)
