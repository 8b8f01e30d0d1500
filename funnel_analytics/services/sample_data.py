"""
Event logs for demos, tests and benchmarks.

illustrative_events() is the small two-platform funnel used throughout the
docs: 10 android and 10 ios installs; android 4 views / 2 carts / 1 purchase,
ios 3 views / 2 carts / 2 purchases.
"""

import random
from datetime import datetime, timedelta

import pandas as pd

FUNNEL_START = datetime(2023, 1, 2, 9, 0, 0)

# Seconds after the previous milestone
STEP_DELAYS = {
    "view_item": 60,
    "add_to_cart": 120,
    "purchase": 300,
}


def _user_events(user_id: int, platform: str, start: datetime, depth: int) -> list[dict]:
    events = [{
        "user_id": user_id,
        "event_name": "app_install",
        "event_timestamp": start,
        "platform": platform,
    }]
    ts = start
    for event_name in list(STEP_DELAYS)[:depth]:
        ts = ts + timedelta(seconds=STEP_DELAYS[event_name])
        events.append({
            "user_id": user_id,
            "event_name": event_name,
            "event_timestamp": ts,
            "platform": platform,
        })
    return events


def illustrative_events() -> pd.DataFrame:
    # (platform, first user id, users reaching depth 0..3)
    layout = [
        ("android", 1, [6, 2, 1, 1]),
        ("ios", 11, [7, 1, 0, 2]),
    ]
    rows = []
    for platform, user_id, per_depth in layout:
        for depth, count in enumerate(per_depth):
            for _ in range(count):
                start = FUNNEL_START + timedelta(minutes=user_id)
                rows.extend(_user_events(user_id, platform, start, depth))
                user_id += 1

    return pd.DataFrame(rows, columns=["user_id", "event_name", "event_timestamp", "platform"])


def synthetic_events(n_users: int = 1000, days: int = 35, seed: int = 42) -> pd.DataFrame:
    """Seeded random log: installs, a decaying funnel, and return sessions"""
    rng = random.Random(seed)
    start_date = datetime(2024, 3, 4)
    progression = {"view_item": 0.6, "add_to_cart": 0.45, "purchase": 0.35}

    rows = []
    for user_id in range(1, n_users + 1):
        platform = rng.choice(["android", "ios"])
        installed = start_date + timedelta(seconds=rng.randrange(days * 24 * 3600))

        depth = 0
        for event_name in STEP_DELAYS:
            if rng.random() >= progression[event_name]:
                break
            depth += 1
        rows.extend(_user_events(user_id, platform, installed, depth))

        # Return visits with a retention curve that decays over time
        day = 1
        while day < days and rng.random() < 0.8 ** day + 0.1:
            rows.append({
                "user_id": user_id,
                "event_name": "session_start",
                "event_timestamp": installed + timedelta(days=day, seconds=rng.randrange(3600)),
                "platform": platform,
            })
            day += rng.randint(1, 4)

    return pd.DataFrame(rows, columns=["user_id", "event_name", "event_timestamp", "platform"])
