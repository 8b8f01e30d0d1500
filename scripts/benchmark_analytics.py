#!/usr/bin/env python3
"""
Benchmark Script for Funnel Analytics

Times every analytics query over a synthetic event log

Usage:
    python scripts/benchmark_analytics.py [n_users]
"""

import sys
import time
from datetime import date, datetime
from pathlib import Path
import statistics

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from funnel_analytics.services.analytics import AnalyticsService
from funnel_analytics.services.ingestion import events_from_frame
from funnel_analytics.services.sample_data import synthetic_events


def benchmark_queries(service: AnalyticsService, runs: int = 5):
    """Benchmark analytics queries"""
    print(f"\n{'=' * 60}")
    print(f"BENCHMARK: Query Performance")
    print(f"{'=' * 60}")

    queries = [
        ("Funnel (platform)", lambda: service.get_funnel()),
        ("Funnel (all users)", lambda: service.get_funnel(segment_by=None)),
        ("Retention (4 weeks)", lambda: service.get_retention(4)),
        ("Active users", lambda: service.get_active_users(datetime(2024, 4, 1))),
        ("DAU (30 days)", lambda: service.get_dau(date(2024, 3, 1), date(2024, 3, 30))),
        ("Activation time", lambda: service.get_activation_times()),
    ]

    results = []

    for name, query in queries:
        times = []

        for _ in range(runs):
            start = time.time()
            query()
            times.append((time.time() - start) * 1000)  # Convert to ms

        results.append({
            "name": name,
            "p50": statistics.median(times),
            "avg": statistics.mean(times),
            "min": min(times),
            "max": max(times)
        })

    print(f"\n{'Query':<25} {'P50':>10} {'Avg':>10} {'Min':>10} {'Max':>10}")
    print(f"{'-' * 70}")
    for r in results:
        print(f"{r['name']:<25} {r['p50']:>9.0f}ms {r['avg']:>9.0f}ms "
              f"{r['min']:>9.0f}ms {r['max']:>9.0f}ms")

    print(f"{'=' * 60}\n")

    return results


def main():
    n_users = int(sys.argv[1]) if len(sys.argv) > 1 else 10000

    print("\n" + "=" * 60)
    print("FUNNEL ANALYTICS - BENCHMARK")
    print("=" * 60)

    start = time.time()
    frame, summary = events_from_frame(synthetic_events(n_users=n_users), source="synthetic")
    service = AnalyticsService(frame)
    print(f"Loaded {summary.loaded_rows:,} events for {n_users:,} users "
          f"in {(time.time() - start) * 1000:.0f}ms")

    try:
        benchmark_queries(service)
    finally:
        service.close()

    print("=" * 60)
    print("BENCHMARK COMPLETE")
    print("=" * 60)


if __name__ == "__main__":
    main()
