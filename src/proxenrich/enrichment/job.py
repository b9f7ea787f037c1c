from __future__ import annotations

# This module is the "orchestrator" for one enrichment job.
# It wires together:
# - the JSON store (points in, points + results out)
# - proximity dedupe
# - the budgeted pipeline and its distance oracle
# - repeated passes until every point is processed (`run_until_done`)
#
# Each layer stays focused: the store does I/O, dedupe/pipeline do the work, this file
# decides the order and what gets persisted.

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from proxenrich.config.settings import Settings, get_settings
from proxenrich.dedupe.proximity import DedupeReport, dedupe_report
from proxenrich.domain.models import EnrichmentResult, Point
from proxenrich.enrichment.pipeline import EnrichmentPolicy, EnrichmentRun, enrich_points
from proxenrich.ingestion.oracle_client import DistanceOracle, HttpDistanceOracle
from proxenrich.store.json_store import JsonResultStore, StoreError, save_points

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobOutcome:
    dedupe: DedupeReport | None
    run: EnrichmentRun
    results: list[EnrichmentResult]

    def summary(self) -> dict[str, Any]:
        out = dict(self.run.summary())
        if self.dedupe is not None:
            out["dedupe_removed"] = len(self.dedupe.removed_ids)
        out["results_total"] = len(self.results)
        return out


def build_store(settings: Settings) -> JsonResultStore:
    return JsonResultStore(settings.store.points_path, settings.store.results_path)


def run_dedupe(
    settings: Settings | None = None,
    *,
    store: JsonResultStore | None = None,
    output: str | Path | None = None,
) -> tuple[DedupeReport, Path]:
    """Dedupe the points file (dedupe-only mode); writes in place unless `output` is given."""
    settings = settings or get_settings()
    store = store or build_store(settings)

    points = store.load_points()
    report = dedupe_report(points, settings.dedupe.threshold_m)
    if output is not None:
        return report, save_points(output, report.survivors)
    return report, store.save_points(report.survivors)


def run_enrichment_job(
    settings: Settings | None = None,
    *,
    store: JsonResultStore | None = None,
    oracle: DistanceOracle | None = None,
    dedupe: bool = True,
) -> JobOutcome:
    """Load points, dedupe, run one budgeted pass, then persist points + merged results.

    Raises:
        InputError: If the points or prior results cannot be loaded (nothing is processed).
        StoreError: If saving fails; the run summary is logged first.
    """
    settings = settings or get_settings()
    store = store or build_store(settings)
    oracle = oracle or HttpDistanceOracle(settings)

    points: list[Point] = store.load_points()
    # Fail on an unreadable results file before spending any oracle calls.
    store.load_results()

    report: DedupeReport | None = None
    if dedupe:
        report = dedupe_report(points, settings.dedupe.threshold_m)
        points = report.survivors

    pending = sum(1 for p in points if not p.processed)
    logger.info("Enriching %s points (%s not yet processed).", len(points), pending)

    run = enrich_points(points, oracle, policy=EnrichmentPolicy.from_settings(settings.enrichment))

    try:
        store.save_points(run.updated_points())
        merged = store.save_results(run.results)
    except StoreError:
        logger.error("Failed to persist run output; progress this run: %s", run.summary())
        raise

    return JobOutcome(dedupe=report, run=run, results=merged)


@dataclass(frozen=True)
class PassReport:
    number: int
    outcome: JobOutcome
    processed: int
    total: int


def run_until_done(
    settings: Settings | None = None,
    *,
    store: JsonResultStore | None = None,
    oracle: DistanceOracle | None = None,
    max_runs: int = 10_000,
    max_seconds: float = 3600.0,
    sleep_seconds: float = 60.0,
    on_pass: Callable[[PassReport], None] | None = None,
) -> str:
    """Repeat enrichment passes until every point is processed.

    Dedupe runs on the first pass only. Returns why the loop stopped:
    - "done": every point is processed.
    - "stalled": a pass made no oracle calls and completed no point, so repeating it
      cannot progress (e.g. a zero call budget).
    - "aborted": a pass was interrupted (Ctrl-C); its progress is saved.
    - "limit": `max_runs` or `max_seconds` ran out first.
    """
    settings = settings or get_settings()
    store = store or build_store(settings)
    oracle = oracle or HttpDistanceOracle(settings)
    deadline = time.monotonic() + float(max_seconds)

    number = 0
    while time.monotonic() < deadline and number < int(max_runs):
        number += 1
        outcome = run_enrichment_job(settings, store=store, oracle=oracle, dedupe=number == 1)
        updated = outcome.run.updated_points()
        report = PassReport(
            number=number,
            outcome=outcome,
            processed=sum(1 for p in updated if p.processed),
            total=len(updated),
        )
        if on_pass is not None:
            on_pass(report)

        if report.processed == report.total:
            return "done"
        if outcome.run.aborted:
            return "aborted"
        if outcome.run.budget.used == 0 and outcome.run.newly_completed == 0:
            logger.warning("Pass %s made no progress; stopping.", number)
            return "stalled"

        time.sleep(float(sleep_seconds))

    return "limit"
