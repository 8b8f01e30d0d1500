import pytest
import pandas as pd
import structlog
from datetime import datetime

from funnel_analytics.services.analytics import AnalyticsService
from funnel_analytics.services.sample_data import illustrative_events


def frame_of(rows):
    """Build an events frame from (user_id, event_name, timestamp, platform) tuples"""
    return pd.DataFrame(
        [
            {
                "user_id": user_id,
                "event_name": event_name,
                "event_timestamp": datetime.fromisoformat(ts) if isinstance(ts, str) else ts,
                "platform": platform,
            }
            for user_id, event_name, ts, platform in rows
        ],
        columns=["user_id", "event_name", "event_timestamp", "platform"]
    )


@pytest.fixture(autouse=True)
def reset_logging():
    """The CLI configures structlog globally; undo it after every test"""
    yield
    structlog.reset_defaults()


@pytest.fixture
def make_service():
    """Factory fixture; every service it builds is closed on teardown"""
    services = []

    def _make(rows=None, frame=None, **kwargs):
        if frame is None:
            frame = frame_of(rows or [])
        service = AnalyticsService(frame, **kwargs)
        services.append(service)
        return service

    yield _make

    for service in services:
        service.close()


@pytest.fixture
def illustrative_service(make_service):
    return make_service(frame=illustrative_events())
