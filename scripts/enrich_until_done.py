from __future__ import annotations

import argparse

from proxenrich.config.overrides import apply_settings_overrides
from proxenrich.config.settings import get_settings
from proxenrich.core.logging import configure_logging
from proxenrich.enrichment.job import PassReport, build_store, run_until_done
from proxenrich.store.json_store import InputError, StoreError


def _print_pass(report: PassReport) -> None:
    summary = report.outcome.summary()
    print(f"\n--- pass {report.number} ---")
    print(
        f"calls={summary['calls_made']}/{summary['call_budget']} edges={summary['edges_recorded']} "
        f"failures={summary['oracle_failures']} complete={summary['complete']} pending={summary['pending']}"
    )
    print(f"overall: {report.processed}/{report.total} processed")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--sleep-seconds", type=float, default=60.0, help="Pause between passes.")
    parser.add_argument("--max-minutes", type=float, default=60.0)
    parser.add_argument("--max-runs", type=int, default=10_000)
    parser.add_argument("--budget", type=int, default=None, help="Oracle calls per pass.")
    args = parser.parse_args(argv)

    configure_logging()
    try:
        settings = get_settings()
        if args.budget is not None:
            settings = apply_settings_overrides(settings, {"enrichment": {"call_budget": int(args.budget)}})
        store = build_store(settings)

        print("Starting enrichment passes")
        print("points:", store.points_path)
        print("results:", store.results_path)
        print("enrichment settings:", settings.enrichment.model_dump())

        reason = run_until_done(
            settings,
            store=store,
            max_runs=int(args.max_runs),
            max_seconds=float(args.max_minutes) * 60.0,
            sleep_seconds=float(args.sleep_seconds),
            on_pass=_print_pass,
        )
    except InputError as exc:
        print("Input error:", str(exc))
        return 2
    except StoreError as exc:
        print("Output error:", str(exc))
        return 1
    except (ValueError, RuntimeError) as exc:
        print("Configuration error:", str(exc))
        return 2

    if reason == "done":
        print("\nAll points processed.")
        return 0
    if reason == "stalled":
        print("\nA pass made no progress (is the call budget 0?); stopping.")
        return 2
    if reason == "aborted":
        print("\nInterrupted; progress saved. Re-run to continue.")
        return 130
    print("\nStopped before completion (time or run limit). Re-run to continue.")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
