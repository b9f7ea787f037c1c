"""
Budgeted enrichment pipeline.

Given deduplicated points, look up oracle travel distances for pairs that pass the
great-circle candidate band, under a hard per-run ceiling on oracle calls.

Per-point state machine (one run):
- PENDING: not scanned yet (also the final state of points after the budget ran out).
- SCANNING: visiting partners j > i in list order.
- COMPLETE: every later partner was evaluated; `processed` becomes True.
- INTERRUPTED: the budget ran out (or the run was aborted) mid-scan; `processed` stays False.

Points that arrive with `processed=True` are carried as COMPLETE without scanning, which
is what makes re-runs resume instead of starting over.

All mutable state (call counter, states, results) lives on `EnrichmentRun`, so runs
are independent of each other.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Sequence

from proxenrich.config.settings import EnrichmentSettings
from proxenrich.core.rate_limit import RequestSpacer
from proxenrich.domain.models import DistanceEdge, EnrichmentResult, Point
from proxenrich.enrichment.candidates import CandidateBand, pair_distance_km
from proxenrich.ingestion.oracle_client import DistanceOracle, OracleError

logger = logging.getLogger(__name__)


class PointState(str, Enum):
    PENDING = "pending"
    SCANNING = "scanning"
    COMPLETE = "complete"
    INTERRUPTED = "interrupted"


@dataclass(frozen=True)
class EnrichmentPolicy:
    """Knobs for one run; build from settings with `from_settings`."""

    band: CandidateBand = field(default_factory=CandidateBand)
    acceptance_km: float = 5.0
    call_budget: int = 500
    inter_call_delay_ms: float = 1000
    mirror_edges: bool = False

    def __post_init__(self) -> None:
        if self.acceptance_km <= 0:
            raise ValueError("acceptance_km must be > 0")
        if self.call_budget < 0:
            raise ValueError("call_budget must be >= 0")
        if self.inter_call_delay_ms < 0:
            raise ValueError("inter_call_delay_ms must be >= 0")

    @classmethod
    def from_settings(cls, settings: EnrichmentSettings) -> "EnrichmentPolicy":
        return cls(
            band=CandidateBand.from_settings(settings),
            acceptance_km=float(settings.acceptance_km),
            call_budget=int(settings.call_budget),
            inter_call_delay_ms=float(settings.inter_call_delay_ms),
            mirror_edges=bool(settings.mirror_edges),
        )


@dataclass
class CallBudget:
    """Run-scoped oracle call counter with a hard ceiling."""

    limit: int
    used: int = 0

    @property
    def exhausted(self) -> bool:
        return self.used >= self.limit

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    def consume(self) -> None:
        if self.exhausted:
            raise RuntimeError("Call budget exhausted.")
        self.used += 1


@dataclass(frozen=True)
class OracleFailure:
    from_id: str
    to_id: str
    error: str


@dataclass
class EnrichmentRun:
    """State and output of a single enrichment run."""

    points: list[Point]
    budget: CallBudget
    states: dict[str, PointState] = field(default_factory=dict)
    results: list[EnrichmentResult] = field(default_factory=list)
    failures: list[OracleFailure] = field(default_factory=list)
    aborted: bool = False
    _by_id: dict[str, EnrichmentResult] = field(default_factory=dict, init=False, repr=False)

    @property
    def budget_exhausted(self) -> bool:
        return self.budget.exhausted

    def result_for(self, point: Point) -> EnrichmentResult:
        """Return (creating on first use) the result rooted at `point`.

        A new result carries the point's current completion, so a mirrored partner
        that finished in an earlier run keeps `processed=True`.
        """
        result = self._by_id.get(point.id)
        if result is None:
            done = self.states.get(point.id) is PointState.COMPLETE
            result = EnrichmentResult(point=point.with_processed(done))
            self._by_id[point.id] = result
            self.results.append(result)
        return result

    def mark(self, point: Point, state: PointState) -> None:
        self.states[point.id] = state
        if state is PointState.COMPLETE and point.id in self._by_id:
            result = self._by_id[point.id]
            result.point = result.point.with_processed(True)

    def updated_points(self) -> list[Point]:
        """Input points (in order) with `processed` reflecting the end of this run."""
        return [
            p.with_processed(self.states.get(p.id) is PointState.COMPLETE)
            for p in self.points
        ]

    def count(self, state: PointState) -> int:
        return sum(1 for s in self.states.values() if s is state)

    @property
    def newly_completed(self) -> int:
        """Points that arrived unprocessed and finished in this run."""
        return sum(
            1 for p in self.points if not p.processed and self.states.get(p.id) is PointState.COMPLETE
        )

    def summary(self) -> dict[str, Any]:
        return {
            "points": len(self.points),
            "calls_made": self.budget.used,
            "call_budget": self.budget.limit,
            "budget_exhausted": self.budget_exhausted,
            "aborted": self.aborted,
            "edges_recorded": sum(len(r.distances) for r in self.results),
            "oracle_failures": len(self.failures),
            "complete": self.count(PointState.COMPLETE),
            "newly_completed": self.newly_completed,
            "interrupted": self.count(PointState.INTERRUPTED),
            "pending": self.count(PointState.PENDING),
        }


def _scan_point(
    run: EnrichmentRun,
    index: int,
    oracle: DistanceOracle,
    policy: EnrichmentPolicy,
    spacer: RequestSpacer,
) -> PointState:
    """Scan partners after `index`; return COMPLETE or INTERRUPTED."""
    points = run.points
    point = points[index]
    result = run.result_for(point)

    for partner in points[index + 1 :]:
        if not policy.band.accepts(pair_distance_km(point, partner)):
            continue

        if run.budget.exhausted:
            logger.info(
                "Call budget of %s reached while scanning point %s; stopping run.",
                run.budget.limit,
                point.id,
            )
            return PointState.INTERRUPTED

        spacer.wait()
        run.budget.consume()
        try:
            distance_km = oracle.fetch_travel_distance(point.lat, point.lng, partner.lat, partner.lng)
        except OracleError as exc:
            logger.warning("Oracle lookup %s -> %s failed: %s", point.id, partner.id, exc)
            run.failures.append(OracleFailure(from_id=point.id, to_id=partner.id, error=str(exc)))
            continue

        if distance_km > policy.acceptance_km:
            logger.debug(
                "Pair %s -> %s travel distance %.3fkm above %.3fkm; not recorded.",
                point.id,
                partner.id,
                distance_km,
                policy.acceptance_km,
            )
            continue

        result.distances.append(DistanceEdge(from_id=point.id, to_id=partner.id, distance_km=distance_km))
        if policy.mirror_edges:
            run.result_for(partner).distances.append(
                DistanceEdge(from_id=partner.id, to_id=point.id, distance_km=distance_km)
            )

    return PointState.COMPLETE


def enrich_points(
    points: Sequence[Point],
    oracle: DistanceOracle,
    *,
    policy: EnrichmentPolicy | None = None,
    spacer: RequestSpacer | None = None,
) -> EnrichmentRun:
    """Run one budgeted enrichment pass over `points` (already deduplicated).

    Oracle failures skip the pair. Budget exhaustion stops the run: the point being scanned
    is INTERRUPTED and every later point stays PENDING. A KeyboardInterrupt is treated the
    same way and flags `run.aborted`, so callers can still persist progress.
    """
    policy = policy or EnrichmentPolicy()
    spacer = spacer or RequestSpacer.from_milliseconds(policy.inter_call_delay_ms)

    ids = [p.id for p in points]
    if len(set(ids)) != len(ids):
        raise ValueError("Point ids must be unique within a run.")

    run = EnrichmentRun(points=list(points), budget=CallBudget(limit=policy.call_budget))
    for p in run.points:
        run.states[p.id] = PointState.COMPLETE if p.processed else PointState.PENDING

    for index, point in enumerate(run.points):
        if point.processed:
            continue
        if run.budget.exhausted:
            logger.info("Call budget of %s exhausted; remaining points stay pending.", run.budget.limit)
            break

        run.mark(point, PointState.SCANNING)
        try:
            state = _scan_point(run, index, oracle, policy, spacer)
        except KeyboardInterrupt:
            logger.warning("Run interrupted while scanning point %s; keeping progress so far.", point.id)
            run.mark(point, PointState.INTERRUPTED)
            run.aborted = True
            break

        run.mark(point, state)
        if state is PointState.INTERRUPTED:
            break

    logger.info("Enrichment run finished: %s", run.summary())
    return run
