"""
JSON point/result store.

Points and enrichment results are plain JSON files (default: `data/points.json` and
`data/results.json`). We validate them into typed Pydantic models on load so the
pipeline can assume a consistent shape, and write them atomically (temp file +
replace) so an interrupted save never leaves a truncated file behind.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Sequence

from pydantic import TypeAdapter, ValidationError

from proxenrich.core.env import resolve_project_path
from proxenrich.core.geo import GeoPoint, parse_coordinate
from proxenrich.domain.models import DistanceEdge, EnrichmentResult, Point

logger = logging.getLogger(__name__)

_POINTS_ADAPTER = TypeAdapter(list[Point])
_RESULTS_ADAPTER = TypeAdapter(list[EnrichmentResult])


class InputError(ValueError):
    """A point or result file could not be read or did not validate."""


class StoreError(RuntimeError):
    """Persisting points or results failed."""


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise InputError(f"Cannot read {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise InputError(f"Invalid JSON in {path}: {exc}") from exc


def _write_json(path: Path, payload: Any) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(path)
    except OSError as exc:
        raise StoreError(f"Cannot write {path}: {exc}") from exc


def load_points(path: str | Path) -> list[Point]:
    """Load and validate a points JSON file (a list of point records)."""
    resolved = resolve_project_path(path)
    payload = _read_json(resolved)
    try:
        points = _POINTS_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        raise InputError(f"Invalid point records in {resolved}: {exc}") from exc

    seen: set[str] = set()
    for p in points:
        if p.id in seen:
            raise InputError(f"Duplicate point id {p.id!r} in {resolved}")
        seen.add(p.id)
    return points


def load_seeds(path: str | Path) -> list[GeoPoint]:
    """Load seed coordinates: a JSON list of `"lat, lng"` strings and/or point-like objects."""
    resolved = resolve_project_path(path)
    payload = _read_json(resolved)
    if not isinstance(payload, list):
        raise InputError(f"Seeds file {resolved} must hold a JSON list.")
    seeds: list[GeoPoint] = []
    for index, entry in enumerate(payload):
        try:
            seeds.append(parse_coordinate(entry))
        except ValueError as exc:
            raise InputError(f"Seed #{index} in {resolved}: {exc}") from exc
    return seeds


def save_points(path: str | Path, points: Sequence[Point]) -> Path:
    resolved = resolve_project_path(path)
    _write_json(resolved, _POINTS_ADAPTER.dump_python(list(points), mode="json"))
    return resolved


def load_results(path: str | Path) -> list[EnrichmentResult]:
    """Load a results file; a missing file means no prior results."""
    resolved = resolve_project_path(path)
    if not resolved.exists():
        return []
    payload = _read_json(resolved)
    try:
        return _RESULTS_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        raise InputError(f"Invalid results in {resolved}: {exc}") from exc


def save_results(path: str | Path, results: Sequence[EnrichmentResult]) -> Path:
    resolved = resolve_project_path(path)
    _write_json(resolved, _RESULTS_ADAPTER.dump_python(list(results), mode="json"))
    return resolved


def _merge_edges(existing: list[DistanceEdge], new_edges: list[DistanceEdge]) -> list[DistanceEdge]:
    by_key: dict[str, DistanceEdge] = {e.to_id: e for e in existing}
    for e in new_edges:
        by_key[e.to_id] = e
    return list(by_key.values())


def merge_results(
    prior: Sequence[EnrichmentResult], new: Sequence[EnrichmentResult]
) -> list[EnrichmentResult]:
    """Merge a run's results onto earlier ones.

    Results are keyed by point id (new point wins, carrying the latest `processed` flag),
    and edges within a result are keyed by `to_id` (new edge wins). Order: prior results
    first, then results for points seen for the first time.
    """
    by_id: dict[str, EnrichmentResult] = {r.point.id: r for r in prior}
    for r in new:
        old = by_id.get(r.point.id)
        if old is None:
            by_id[r.point.id] = r
            continue
        by_id[r.point.id] = EnrichmentResult(
            point=r.point, distances=_merge_edges(old.distances, r.distances)
        )
    return list(by_id.values())


class JsonResultStore:
    """Points + results files for one enrichment job."""

    def __init__(self, points_path: str | Path, results_path: str | Path):
        self._points_path = points_path
        self._results_path = results_path

    @property
    def points_path(self) -> Path:
        return resolve_project_path(self._points_path)

    @property
    def results_path(self) -> Path:
        return resolve_project_path(self._results_path)

    def load_points(self) -> list[Point]:
        return load_points(self._points_path)

    def save_points(self, points: Sequence[Point]) -> Path:
        path = save_points(self._points_path, points)
        logger.info("Saved %s points to %s", len(points), path)
        return path

    def load_results(self) -> list[EnrichmentResult]:
        return load_results(self._results_path)

    def save_results(self, results: Sequence[EnrichmentResult], *, merge: bool = True) -> list[EnrichmentResult]:
        """Persist `results`, merged onto the existing file unless `merge=False`."""
        merged = merge_results(self.load_results(), results) if merge else list(results)
        path = save_results(self._results_path, merged)
        logger.info("Saved %s results to %s", len(merged), path)
        return merged
