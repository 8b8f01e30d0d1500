"""Order statistics computed in Python rather than by the query backend."""

import math
from typing import Iterable, Optional


def percentile(values: Iterable[float], q: float, method: str = "linear") -> Optional[float]:
    """
    Percentile of ``values`` by explicit sort.

    Args:
        values: Observations, in any order
        q: Percentile in [0, 100]
        method: "linear" interpolates between closest ranks (numpy's default);
            "nearest_rank" returns the smallest observation with at least q%
            of the data at or below it

    Returns:
        The percentile, or None for an empty input
    """
    if not 0 <= q <= 100:
        raise ValueError(f"Percentile must be within [0, 100], got {q}")

    ordered = sorted(values)
    if not ordered:
        return None

    if method == "linear":
        rank = (len(ordered) - 1) * q / 100
        lower = math.floor(rank)
        upper = math.ceil(rank)
        if lower == upper:
            return float(ordered[lower])
        return ordered[lower] + (ordered[upper] - ordered[lower]) * (rank - lower)

    if method == "nearest_rank":
        if q == 0:
            return float(ordered[0])
        return float(ordered[math.ceil(q / 100 * len(ordered)) - 1])

    raise ValueError(f"Unknown percentile method: {method}")


def mean(values: Iterable[float]) -> Optional[float]:
    values = list(values)
    if not values:
        return None
    return math.fsum(values) / len(values)
