"""
Candidate pre-filter.

The great-circle distance is a lower bound on any travel distance, so it is used to
decide cheaply which pairs deserve an oracle lookup. Pairs closer than the band are
trivially walkable; pairs beyond it are out of scope for the enrichment.
"""

from __future__ import annotations

from dataclasses import dataclass

from proxenrich.config.settings import EnrichmentSettings
from proxenrich.core.geo import great_circle_distance_km
from proxenrich.domain.models import Point


@dataclass(frozen=True)
class CandidateBand:
    """Open interval (min_km, max_km) of great-circle distances worth a lookup."""

    min_km: float = 0.2
    max_km: float = 3.0

    def __post_init__(self) -> None:
        if self.min_km < 0 or self.max_km <= 0:
            raise ValueError("candidate band bounds must be non-negative")
        if self.min_km >= self.max_km:
            raise ValueError("candidate band min_km must be below max_km")

    @classmethod
    def from_settings(cls, settings: EnrichmentSettings) -> "CandidateBand":
        return cls(min_km=float(settings.candidate_min_km), max_km=float(settings.candidate_max_km))

    def accepts(self, distance_km: float) -> bool:
        return self.min_km < distance_km < self.max_km


def pair_distance_km(point: Point, partner: Point) -> float:
    return great_circle_distance_km(point.lat, point.lng, partner.lat, partner.lng)


def is_candidate(point: Point, partner: Point, band: CandidateBand) -> bool:
    """True if the pair's great-circle distance lies strictly inside `band`."""
    return band.accepts(pair_distance_km(point, partner))
