"""
Proximity deduplication.

Points closer than `threshold_m` to any other point are treated as duplicates and
removed. Both members of a close pair are removed (there is no "survivor" per cluster),
so a chain A-B-C where only neighbours are close still loses all three points.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, Sequence

from proxenrich.core.geo import great_circle_distance_m
from proxenrich.domain.models import Point

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD_M = 50.0


@dataclass(frozen=True)
class ClosePair:
    """Indices (i < j) of two points closer than the dedupe threshold."""

    i: int
    j: int
    distance_m: float


@dataclass(frozen=True)
class DedupeReport:
    survivors: list[Point]
    removed_ids: list[str]
    close_pairs: int


def find_close_pairs(points: Sequence[Point], threshold_m: float = DEFAULT_THRESHOLD_M) -> Iterator[ClosePair]:
    """Yield every unordered pair whose great-circle distance is below `threshold_m`."""
    n = len(points)
    for i in range(n):
        a = points[i]
        for j in range(i + 1, n):
            b = points[j]
            d = great_circle_distance_m(a.lat, a.lng, b.lat, b.lng)
            if d < threshold_m:
                yield ClosePair(i=i, j=j, distance_m=d)


def count_close_pairs(points: Sequence[Point], threshold_m: float = DEFAULT_THRESHOLD_M) -> int:
    return sum(1 for _ in find_close_pairs(points, threshold_m))


def dedupe_report(points: Sequence[Point], threshold_m: float = DEFAULT_THRESHOLD_M) -> DedupeReport:
    """Dedupe `points` and report what was removed."""
    if threshold_m <= 0:
        raise ValueError("threshold_m must be > 0")

    removed: set[int] = set()
    pairs = 0
    for pair in find_close_pairs(points, threshold_m):
        removed.add(pair.i)
        removed.add(pair.j)
        pairs += 1

    survivors = [p for idx, p in enumerate(points) if idx not in removed]
    removed_ids = [points[idx].id for idx in sorted(removed)]
    logger.info(
        "Dedupe: %s points, %s close pairs (<%.1fm), %s removed, %s kept",
        len(points),
        pairs,
        threshold_m,
        len(removed_ids),
        len(survivors),
    )
    return DedupeReport(survivors=survivors, removed_ids=removed_ids, close_pairs=pairs)


def dedupe_points(points: Sequence[Point], threshold_m: float = DEFAULT_THRESHOLD_M) -> list[Point]:
    """Return the points with no other point within `threshold_m`, in original order."""
    return dedupe_report(points, threshold_m).survivors
