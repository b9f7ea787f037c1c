import json
import logging

import pytest

from proxenrich.cli import main
from proxenrich.config.overrides import apply_settings_overrides
from proxenrich.config.settings import get_settings
from proxenrich.core.geo import great_circle_distance_m
from proxenrich.enrichment.job import run_enrichment_job, run_until_done
from proxenrich.enrichment.pipeline import PointState
from proxenrich.store.json_store import JsonResultStore, StoreError

M_PER_DEG_LAT = 6_371_000 * 3.141592653589793 / 180

# Points 1 and 2 are 20m apart; points 3 and 4 are 2km apart and ~10km from 1/2.
RAW_POINTS = [
    {"id": "1", "lat": 10.8, "lng": 106.7},
    {"id": "2", "lat": 10.8 + 20 / M_PER_DEG_LAT, "lng": 106.7},
    {"id": "3", "lat": 10.8 + 10_000 / M_PER_DEG_LAT, "lng": 106.7},
    {"id": "4", "lat": 10.8 + 12_000 / M_PER_DEG_LAT, "lng": 106.7},
]


class FixedOracle:
    def __init__(self, km: float = 4.0):
        self.km = km
        self.calls = 0

    def fetch_travel_distance(self, origin_lat, origin_lng, dest_lat, dest_lng):
        self.calls += 1
        return self.km


def _write_points(tmp_path):
    path = tmp_path / "points.json"
    path.write_text(json.dumps(RAW_POINTS), encoding="utf-8")
    return path


def _settings(tmp_path, **enrichment):
    settings = apply_settings_overrides(get_settings(), {"enrichment": {"inter_call_delay_ms": 0, **enrichment}})
    store = settings.store.model_copy(
        update={"points_path": str(tmp_path / "points.json"), "results_path": str(tmp_path / "results.json")}
    )
    return settings.model_copy(update={"store": store})


def test_dedupe_then_enrich_end_to_end(tmp_path):
    _write_points(tmp_path)
    p = RAW_POINTS
    assert great_circle_distance_m(p[0]["lat"], p[0]["lng"], p[1]["lat"], p[1]["lng"]) < 50

    oracle = FixedOracle(4.0)
    outcome = run_enrichment_job(_settings(tmp_path), oracle=oracle)

    assert outcome.dedupe is not None
    assert [pt.id for pt in outcome.dedupe.survivors] == ["3", "4"]
    assert oracle.calls == 1

    first = outcome.run.results[0]
    assert first.point.id == "3"
    assert first.point.processed is True
    assert [(e.from_id, e.to_id, e.distance_km) for e in first.distances] == [("3", "4", 4.0)]

    stored_points = json.loads((tmp_path / "points.json").read_text(encoding="utf-8"))
    assert [(sp["id"], sp["processed"]) for sp in stored_points] == [("3", True), ("4", True)]

    stored_results = json.loads((tmp_path / "results.json").read_text(encoding="utf-8"))
    assert stored_results[0]["distances"] == [{"from_id": "3", "to_id": "4", "distance_km": 4.0}]


def test_rerun_after_completion_makes_no_calls(tmp_path):
    _write_points(tmp_path)
    settings = _settings(tmp_path)
    run_enrichment_job(settings, oracle=FixedOracle())

    oracle = FixedOracle()
    outcome = run_enrichment_job(settings, oracle=oracle)

    assert oracle.calls == 0
    assert len(outcome.results) == 2
    assert JsonResultStore(tmp_path / "points.json", tmp_path / "results.json").load_results()[0].distances[0].to_id == "4"


def test_budget_exhausted_run_leaves_points_resumable(tmp_path):
    _write_points(tmp_path)

    outcome = run_enrichment_job(_settings(tmp_path, call_budget=0), oracle=FixedOracle())

    assert outcome.run.budget_exhausted is True
    stored_points = json.loads((tmp_path / "points.json").read_text(encoding="utf-8"))
    assert [sp["processed"] for sp in stored_points] == [False, False]


def test_cli_enrich_and_status(monkeypatch, tmp_path, capsys):
    points = _write_points(tmp_path)
    results = tmp_path / "results.json"
    monkeypatch.setattr("proxenrich.enrichment.job.HttpDistanceOracle", lambda _settings: FixedOracle(4.0))

    code = main(["enrich", "--points", str(points), "--results", str(results), "--delay-ms", "0", "--json"])
    assert code == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["calls_made"] == 1
    assert summary["edges_recorded"] == 1
    assert summary["dedupe_removed"] == 2

    code = main(["status", "--points", str(points), "--results", str(results), "--json"])
    assert code == 0
    status = json.loads(capsys.readouterr().out)
    assert status == {"points": 2, "processed": 2, "remaining": 0, "done": True, "results": 2, "edges": 1}


def test_cli_dedupe_and_close_pairs(tmp_path, capsys):
    points = _write_points(tmp_path)
    out = tmp_path / "deduped.json"

    assert main(["close-pairs", "--points", str(points), "--json"]) == 0
    report = json.loads(capsys.readouterr().out)
    assert report["count"] == 1
    assert (report["pairs"][0]["a"], report["pairs"][0]["b"]) == ("1", "2")

    assert main(["dedupe", "--points", str(points), "--output", str(out), "--json"]) == 0
    assert json.loads(capsys.readouterr().out)["kept"] == 2
    assert [p["id"] for p in json.loads(out.read_text(encoding="utf-8"))] == ["3", "4"]


def test_cli_reports_input_errors(tmp_path):
    bad = tmp_path / "points.json"
    bad.write_text("{", encoding="utf-8")

    assert main(["enrich", "--points", str(bad), "--results", str(tmp_path / "r.json")]) == 2


class InterruptingOracle:
    def fetch_travel_distance(self, origin_lat, origin_lng, dest_lat, dest_lng):
        raise KeyboardInterrupt


def _unwritable_results(tmp_path):
    # The parent "directory" is a regular file, so the results file cannot be created.
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    return blocker / "results.json"


def test_save_failure_logs_progress_and_raises(tmp_path, caplog):
    _write_points(tmp_path)
    settings = _settings(tmp_path)
    store = JsonResultStore(tmp_path / "points.json", _unwritable_results(tmp_path))
    caplog.set_level(logging.ERROR, logger="proxenrich.enrichment.job")

    with pytest.raises(StoreError):
        run_enrichment_job(settings, store=store, oracle=FixedOracle())

    messages = [r.getMessage() for r in caplog.records if r.name == "proxenrich.enrichment.job"]
    assert any("Failed to persist run output" in m and "'calls_made': 1" in m for m in messages)


def test_cli_enrich_returns_1_when_results_cannot_be_written(monkeypatch, tmp_path, capsys):
    points = _write_points(tmp_path)
    results = _unwritable_results(tmp_path)
    monkeypatch.setattr("proxenrich.enrichment.job.HttpDistanceOracle", lambda _settings: FixedOracle(4.0))

    code = main(["enrich", "--points", str(points), "--results", str(results), "--delay-ms", "0"])

    assert code == 1
    err = capsys.readouterr().err
    assert "Failed to persist run output" in err
    assert "Output error" in err


def test_interrupted_job_persists_the_point_as_unprocessed(tmp_path):
    _write_points(tmp_path)

    outcome = run_enrichment_job(_settings(tmp_path), oracle=InterruptingOracle())

    assert outcome.run.aborted is True
    assert outcome.run.states["3"] is PointState.INTERRUPTED
    stored_points = json.loads((tmp_path / "points.json").read_text(encoding="utf-8"))
    assert [(sp["id"], sp["processed"]) for sp in stored_points] == [("3", False), ("4", False)]
    stored_results = json.loads((tmp_path / "results.json").read_text(encoding="utf-8"))
    assert [(r["point"]["id"], r["point"]["processed"], r["distances"]) for r in stored_results] == [("3", False, [])]


def test_mirrored_edges_do_not_unmark_a_partner_in_the_store(tmp_path):
    raw = [dict(RAW_POINTS[2]), dict(RAW_POINTS[3], processed=True)]
    (tmp_path / "points.json").write_text(json.dumps(raw), encoding="utf-8")
    settings = _settings(tmp_path, mirror_edges=True)

    run_enrichment_job(settings, oracle=FixedOracle(2.5), dedupe=False)

    store = JsonResultStore(tmp_path / "points.json", tmp_path / "results.json")
    assert [(p.id, p.processed) for p in store.load_points()] == [("3", True), ("4", True)]
    by_id = {r.point.id: r for r in store.load_results()}
    assert by_id["4"].point.processed is True
    assert [(e.from_id, e.to_id, e.distance_km) for e in by_id["4"].distances] == [("4", "3", 2.5)]


def test_run_until_done_stops_when_a_pass_makes_no_progress(monkeypatch, tmp_path):
    _write_points(tmp_path)
    sleeps: list[float] = []
    monkeypatch.setattr("proxenrich.enrichment.job.time.sleep", lambda s: sleeps.append(s))
    passes = []

    reason = run_until_done(
        _settings(tmp_path, call_budget=0), oracle=FixedOracle(), max_runs=50, on_pass=passes.append
    )

    assert reason == "stalled"
    assert [p.number for p in passes] == [1]
    assert sleeps == []


def test_run_until_done_resumes_across_passes(monkeypatch, tmp_path):
    _write_points(tmp_path)
    monkeypatch.setattr("proxenrich.enrichment.job.time.sleep", lambda _s: None)
    oracle = FixedOracle()
    passes = []

    reason = run_until_done(_settings(tmp_path, call_budget=1), oracle=oracle, on_pass=passes.append)

    # Pass 1 spends the only call on 3 -> 4; pass 2 completes 4 with no calls left to make.
    assert reason == "done"
    assert [(p.number, p.processed, p.total) for p in passes] == [(1, 1, 2), (2, 2, 2)]
    assert oracle.calls == 1


def test_run_until_done_surfaces_a_missing_api_key(tmp_path):
    _write_points(tmp_path)
    settings = _settings(tmp_path)
    settings = settings.model_copy(update={"oracle": settings.oracle.model_copy(update={"api_key": None})})

    with pytest.raises(RuntimeError, match="PROXENRICH_ORACLE_API_KEY"):
        run_until_done(settings, max_runs=1)
