# Pydantic schemas

from pydantic import BaseModel, Field, field_validator
from datetime import datetime, timezone
from typing import Any, Optional


def to_naive_utc(v: datetime) -> datetime:
    """Timestamps are stored and compared naive, in UTC"""
    if v.tzinfo is not None:
        v = v.astimezone(timezone.utc).replace(tzinfo=None)
    return v


class EventRecord(BaseModel):
    """Schema for a single row of the event log"""

    user_id: int
    event_name: str = Field(..., min_length=1, max_length=255)
    event_timestamp: datetime
    platform: Optional[str] = Field(default=None, max_length=50)

    @field_validator('event_name')
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError('Field cannot be empty or whitespace')
        return v.strip()

    @field_validator('platform', mode='before')
    @classmethod
    def blank_platform_is_null(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator('event_timestamp')
    @classmethod
    def normalize_timezone(cls, v: datetime) -> datetime:
        return to_naive_utc(v)


class IngestionSummary(BaseModel):
    """Row accounting for one load of the event log"""

    source: str
    total_rows: int = 0
    loaded_rows: int = 0
    skipped_rows: int = 0
    skipped_by_field: dict[str, int] = Field(default_factory=dict)
