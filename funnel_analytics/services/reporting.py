"""Flatten analytics results into one-row-per-segment tables."""

from typing import List, Optional

import pandas as pd
from funnel_analytics.schemas.analytics import (
    ActivationTimeStats,
    ActiveUsersResponse,
    CohortRetention,
    FunnelSegment,
)


def funnel_frame(segments: List[FunnelSegment], segment_label: Optional[str] = "platform") -> pd.DataFrame:
    rows = []
    for seg in segments:
        row = {segment_label or "segment": seg.segment, "total_users": seg.total_users}
        for milestone, users in zip(seg.milestones, seg.users_at_stage):
            row[f"{milestone}_users"] = users
        for step in seg.steps:
            name = f"{step.from_event}_to_{step.to_event}"
            row[f"{name}_rate"] = step.conversion_rate
            row[f"{name}_strict_rate"] = step.strict_conversion_rate
            row[f"{name}_users"] = step.transition_users
            row[f"avg_time_{name}_seconds"] = step.avg_time_seconds
        rows.append(row)
    return pd.DataFrame(rows)


def retention_frame(cohorts: List[CohortRetention]) -> pd.DataFrame:
    rows = []
    for cohort in cohorts:
        row = {"cohort_start_date": cohort.cohort_start_date, "cohort_size": cohort.cohort_size}
        for window in cohort.retention:
            row[f"week_{window.week}"] = window.retention_rate
        rows.append(row)
    return pd.DataFrame(rows)


def active_users_frame(summary: ActiveUsersResponse) -> pd.DataFrame:
    return pd.DataFrame([summary.model_dump()])


def activation_frame(stats: ActivationTimeStats) -> pd.DataFrame:
    return pd.DataFrame([stats.model_dump()])
