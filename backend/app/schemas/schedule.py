"""Schedule schemas for API requests and responses."""

from typing import Optional, List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter
from pydantic import BaseModel, ConfigDict, Field, field_validator


def _check_cron(v: Optional[str]) -> Optional[str]:
    if v is not None and not croniter.is_valid(v):
        raise ValueError('Invalid cron expression')
    return v


def _check_timezone(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    try:
        ZoneInfo(v)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f'Invalid timezone: {v}')
    return v


class ScheduleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    cron: str
    timezone: str
    enabled: bool
    next_runs: List[str] = Field(default_factory=list, description="Next 3 run times (ISO format)")


class ScheduleUpdate(BaseModel):
    """Schedule update schema - all fields optional."""

    cron: Optional[str] = Field(None, min_length=9, max_length=100)
    timezone: Optional[str] = None
    enabled: Optional[bool] = None

    @field_validator('cron')
    @classmethod
    def validate_cron(cls, v: Optional[str]) -> Optional[str]:
        return _check_cron(v)

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v: Optional[str]) -> Optional[str]:
        return _check_timezone(v)
