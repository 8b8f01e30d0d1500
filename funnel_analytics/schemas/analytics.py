from pydantic import BaseModel
from datetime import datetime
from typing import List, Optional


class FunnelStep(BaseModel):
    """Boundary between two consecutive milestones"""
    from_event: str
    to_event: str
    transition_users: int
    conversion_rate: Optional[float]
    strict_conversion_rate: Optional[float]
    avg_time_seconds: Optional[float]


class FunnelSegment(BaseModel):
    """Funnel for one segment value"""
    segment: Optional[str]
    total_users: int
    milestones: List[str]
    users_at_stage: List[int]
    steps: List[FunnelStep]


class RetentionWindow(BaseModel):
    """Single retention window data"""
    week: int
    retained_users: int
    retention_rate: Optional[float]


class CohortRetention(BaseModel):
    """Weekly cohort retention"""
    cohort_week: int
    cohort_start_date: str
    cohort_size: int
    retention: List[RetentionWindow]


class ActiveUsersResponse(BaseModel):
    """DAU / WAU / MAU at one instant"""
    as_of: datetime
    dau: int
    wau: int
    mau: int
    stickiness_pct: Optional[float]


class DAUResponse(BaseModel):
    """Daily Active Users response"""
    date: str
    unique_users: int


class ActivationTimeStats(BaseModel):
    """Distribution of install-to-activation time"""
    install_event: str
    activation_event: str
    users: int
    mean_seconds: Optional[float]
    median_seconds: Optional[float]
    p75_seconds: Optional[float]
    p90_seconds: Optional[float]
