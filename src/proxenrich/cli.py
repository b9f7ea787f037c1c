"""
proxenrich CLI entrypoint.

Subcommands:
- `dedupe`: remove near-duplicate points and write the survivors.
- `close-pairs`: report point pairs closer than the dedupe threshold.
- `enrich`: one budgeted, resumable enrichment pass (safe to run repeatedly).
- `status`: show how many points are processed and how many edges are stored.
- `harvest`: collect addressed places around seed coordinates into a points file.

Exit codes: 0 ok, 1 output or places API failure, 2 input/configuration failure.
"""

from __future__ import annotations

import argparse
import json
import logging
import random
from typing import Any

from proxenrich.config.overrides import apply_settings_overrides, parse_override_pairs
from proxenrich.config.settings import Settings, get_settings
from proxenrich.core.logging import configure_logging
from proxenrich.dedupe.proximity import find_close_pairs
from proxenrich.core.geo import parse_coordinate
from proxenrich.enrichment.job import run_dedupe, run_enrichment_job
from proxenrich.ingestion.harvest import HarvestMode, run_harvest
from proxenrich.ingestion.places_client import PlacesError
from proxenrich.store.json_store import InputError, JsonResultStore, StoreError, load_points, load_seeds

logger = logging.getLogger(__name__)


def _settings_from_args(args: argparse.Namespace) -> Settings:
    """Apply CLI flags and `--set` pairs onto the loaded settings."""
    settings = get_settings()

    overrides: dict[str, Any] = parse_override_pairs(list(getattr(args, "set", None) or []))
    threshold_m = getattr(args, "threshold_m", None)
    if threshold_m is not None:
        overrides.setdefault("dedupe", {})["threshold_m"] = float(threshold_m)

    enrichment: dict[str, Any] = {}
    for flag, key in [
        ("band_min_km", "candidate_min_km"),
        ("band_max_km", "candidate_max_km"),
        ("acceptance_km", "acceptance_km"),
        ("budget", "call_budget"),
        ("delay_ms", "inter_call_delay_ms"),
    ]:
        v = getattr(args, flag, None)
        if v is not None:
            enrichment[key] = v
    if getattr(args, "mirror_edges", False):
        enrichment["mirror_edges"] = True
    if enrichment:
        overrides.setdefault("enrichment", {}).update(enrichment)

    places: dict[str, Any] = {}
    for flag, key in [("categories_per_seed", "categories_per_seed"), ("max_per_category", "max_per_category")]:
        v = getattr(args, flag, None)
        if v is not None:
            places[key] = v
    if places:
        overrides.setdefault("places", {}).update(places)

    settings = apply_settings_overrides(settings, overrides)

    store_updates: dict[str, str] = {}
    if getattr(args, "points", None):
        store_updates["points_path"] = str(args.points)
    if getattr(args, "results", None):
        store_updates["results_path"] = str(args.results)
    if store_updates:
        settings = settings.model_copy(update={"store": settings.store.model_copy(update=store_updates)})
    return settings


def _print(payload: dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, ensure_ascii=False, indent=2))
        return
    for key, value in payload.items():
        print(f"{key}: {value}")


def _cmd_dedupe(args: argparse.Namespace) -> int:
    settings = _settings_from_args(args)
    report, out_path = run_dedupe(settings, output=args.output)
    _print(
        {
            "input_points": len(report.survivors) + len(report.removed_ids),
            "close_pairs": report.close_pairs,
            "removed": len(report.removed_ids),
            "kept": len(report.survivors),
            "output": str(out_path),
        },
        args.json,
    )
    return 0


def _cmd_close_pairs(args: argparse.Namespace) -> int:
    settings = _settings_from_args(args)
    points = load_points(settings.store.points_path)
    pairs = list(find_close_pairs(points, settings.dedupe.threshold_m))
    if args.json:
        print(
            json.dumps(
                {
                    "threshold_m": settings.dedupe.threshold_m,
                    "count": len(pairs),
                    "pairs": [
                        {"a": points[p.i].id, "b": points[p.j].id, "distance_m": round(p.distance_m, 2)}
                        for p in pairs
                    ],
                },
                ensure_ascii=False,
                indent=2,
            )
        )
        return 0
    print(f"{len(pairs)} pairs closer than {settings.dedupe.threshold_m:g}m")
    for p in pairs:
        print(f"  {points[p.i].id} <-> {points[p.j].id}: {p.distance_m:.1f}m")
    return 0


def _cmd_enrich(args: argparse.Namespace) -> int:
    settings = _settings_from_args(args)
    outcome = run_enrichment_job(settings, dedupe=not args.no_dedupe)
    _print(outcome.summary(), args.json)
    return 0


def _cmd_status(args: argparse.Namespace) -> int:
    settings = _settings_from_args(args)
    store = JsonResultStore(settings.store.points_path, settings.store.results_path)
    points = store.load_points()
    results = store.load_results()
    processed = sum(1 for p in points if p.processed)
    _print(
        {
            "points": len(points),
            "processed": processed,
            "remaining": len(points) - processed,
            "done": processed == len(points),
            "results": len(results),
            "edges": sum(len(r.distances) for r in results),
        },
        args.json,
    )
    return 0


def _cmd_harvest(args: argparse.Namespace) -> int:
    settings = _settings_from_args(args)
    seeds = load_seeds(args.seeds) if args.seeds else []
    try:
        seeds.extend(parse_coordinate(value) for value in args.seed)
    except ValueError as exc:
        raise InputError(f"--seed: {exc}") from exc
    if not seeds:
        raise InputError("No seed coordinates given; use --seeds FILE or --seed \"LAT, LNG\".")

    rng = random.Random(args.random_seed) if args.random_seed is not None else None
    points, out_path = run_harvest(
        seeds,
        settings,
        mode=HarvestMode(args.mode),
        output=args.output,
        overwrite=args.overwrite,
        rng=rng,
    )
    _print({"seeds": len(seeds), "mode": args.mode, "points": len(points), "output": str(out_path)}, args.json)
    return 0


def _add_store_args(p: argparse.ArgumentParser, *, results: bool) -> None:
    p.add_argument("--points", type=str, default=None, help="Points JSON file (default from settings).")
    if results:
        p.add_argument("--results", type=str, default=None, help="Results JSON file (default from settings).")
    p.add_argument("--set", action="append", default=[], help="Override a setting: dotted.key=VALUE")
    p.add_argument("--json", action="store_true", help="Output machine-readable JSON")


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the proxenrich CLI."""
    parser = argparse.ArgumentParser(prog="proxenrich")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level.")
    sub = parser.add_subparsers(dest="command", required=True)

    ded = sub.add_parser("dedupe", help="Remove points that have another point within the threshold.")
    _add_store_args(ded, results=False)
    ded.add_argument("--threshold-m", type=float, default=None)
    ded.add_argument("--output", type=str, default=None, help="Write survivors here instead of in place.")
    ded.set_defaults(func=_cmd_dedupe)

    cp = sub.add_parser("close-pairs", help="List point pairs closer than the dedupe threshold.")
    _add_store_args(cp, results=False)
    cp.add_argument("--threshold-m", type=float, default=None)
    cp.set_defaults(func=_cmd_close_pairs)

    enr = sub.add_parser(
        "enrich",
        help="Look up travel distances for nearby pairs within a call budget (safe to run repeatedly).",
    )
    _add_store_args(enr, results=True)
    enr.add_argument("--threshold-m", type=float, default=None, help="Dedupe threshold in meters.")
    enr.add_argument("--no-dedupe", action="store_true", help="Skip the dedupe step.")
    enr.add_argument("--band-min-km", type=float, default=None)
    enr.add_argument("--band-max-km", type=float, default=None)
    enr.add_argument("--acceptance-km", type=float, default=None)
    enr.add_argument("--budget", type=int, default=None, help="Maximum oracle calls for this run.")
    enr.add_argument("--delay-ms", type=float, default=None, help="Minimum delay between oracle calls.")
    enr.add_argument("--mirror-edges", action="store_true", help="Also record reverse edges on partners.")
    enr.set_defaults(func=_cmd_enrich)

    st = sub.add_parser("status", help="Show enrichment progress from the stored files.")
    _add_store_args(st, results=True)
    st.set_defaults(func=_cmd_status)

    hv = sub.add_parser("harvest", help="Collect addressed places around seed coordinates into a points file.")
    _add_store_args(hv, results=False)
    hv.add_argument("--seeds", type=str, default=None, help="JSON list of \"lat, lng\" strings or point objects.")
    hv.add_argument(
        "--seed",
        action="append",
        default=[],
        help="One seed as \"LAT, LNG\" (repeatable; use --seed=\"-33.9, 151.2\" for a negative latitude).",
    )
    hv.add_argument("--mode", choices=[m.value for m in HarvestMode], default=HarvestMode.NEARBY.value)
    hv.add_argument("--output", type=str, default=None, help="Write here instead of the points file.")
    hv.add_argument("--overwrite", action="store_true", help="Replace an existing output file.")
    hv.add_argument("--categories-per-seed", type=int, default=None)
    hv.add_argument("--max-per-category", type=int, default=None)
    hv.add_argument("--random-seed", type=int, default=None, help="Seed the category draw (reproducible runs).")
    hv.set_defaults(func=_cmd_harvest)
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint callable used by `python -m proxenrich.cli`."""
    parser = build_parser()
    args = parser.parse_args(argv)
    func: Any = getattr(args, "func")
    try:
        configure_logging(level="DEBUG" if args.verbose else None)
        return int(func(args))
    except InputError as exc:
        logger.error("Input error: %s", exc)
        return 2
    except StoreError as exc:
        logger.error("Output error: %s", exc)
        return 1
    except PlacesError as exc:
        logger.error("Places lookup failed: %s", exc)
        return 1
    except (ValueError, RuntimeError) as exc:
        logger.error("Configuration error: %s", exc)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
