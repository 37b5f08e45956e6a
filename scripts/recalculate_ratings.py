#!/usr/bin/env python3
"""
Rebuild the rating ledger of a season from its completed matches.

Normal usage (recalculate the active season):
    python scripts/recalculate_ratings.py

Specific season with a custom reset reason:
    python scripts/recalculate_ratings.py --season-id 3 --reason "Score correction"

Dry run (replay and report without keeping anything):
    python scripts/recalculate_ratings.py --dry-run
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from time import perf_counter

# Add src to path so this script can be run directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from rankledger.config import settings
from rankledger.db import get_session
from rankledger.recalculation import DEFAULT_REASON, RecalculationOrchestrator
from rankledger.seasons import get_active_season


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Recalculate Glicko-2 ratings for a season.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--season-id",
        type=int,
        default=None,
        help="Season to recalculate (default: the active season).",
    )
    parser.add_argument(
        "--reason",
        default=DEFAULT_REASON,
        help="Reason stored on the reset events of this run.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Run the recalculation but roll back instead of committing.",
    )
    parser.add_argument(
        "--metrics-json",
        default=None,
        help="Write a JSON summary to this path on completion.",
    )
    return parser


def _print_progress(progress) -> None:
    if progress.status == "replaying" and progress.total_matches:
        print(f"  replayed {progress.processed_matches}/{progress.total_matches} matches")
    else:
        print(f"[{progress.status}]")


def main() -> int:
    args = _build_parser().parse_args()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    started_at = _utc_now_iso()
    t_start = perf_counter()

    with get_session() as session:
        season_id = args.season_id
        if season_id is None:
            season = get_active_season(session)
            if season is None:
                print("ERROR: no active season")
                return 1
            season_id = season.id

        print(f"RECALCULATE  season={season_id}  dry_run={args.dry_run}  started={started_at}")
        print("-" * 60)

        orchestrator = RecalculationOrchestrator(session)
        result = orchestrator.recalculate_scope(
            season_id,
            reason=args.reason,
            on_progress=_print_progress,
        )

        if args.dry_run or not result.succeeded:
            session.rollback()
            if args.dry_run:
                print("(dry run - changes rolled back)")
        else:
            session.commit()

    elapsed = perf_counter() - t_start

    print("-" * 60)
    print(f"Status:            {result.status}")
    print(f"Events created:    {result.events_created}")
    print(f"Matches processed: {result.matches_processed}")
    print(f"Skipped updates:   {result.skipped_updates}")
    print(f"Skipped matches:   {result.skipped_matches}")
    if result.error:
        print(f"Error:             {result.error_kind}: {result.error}")
        print(f"Failed during:     {result.failed_step}")
    print(f"Elapsed:           {elapsed:.2f}s")

    if args.metrics_json:
        payload = {
            **result.to_dict(),
            "status": "success" if result.succeeded else "failed",
            "dry_run": args.dry_run,
            "started_at": started_at,
            "elapsed_s": round(elapsed, 3),
        }
        metrics_path = Path(args.metrics_json)
        metrics_path.parent.mkdir(parents=True, exist_ok=True)
        metrics_path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")

    return 0 if result.succeeded else 2


if __name__ == "__main__":
    raise SystemExit(main())
