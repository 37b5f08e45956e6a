#!/usr/bin/env python3
"""
Archive the active season and start a new one, or bring an archived season back.

Archiving stores every rated player's final standing, freezes the season's
matches and ledger, and clears the players' current ratings for the new
season. Reactivating archives the current season the same way and restores
the players' ratings from the chosen season's final standings.

Usage:
    python scripts/archive_season.py --name "Spring 2026"
    python scripts/archive_season.py --activate 3
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Add src to path so this script can be run directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from rankledger.config import settings
from rankledger.db import get_session
from rankledger.errors import ScopeStateError
from rankledger.seasons import (
    DEFAULT_SEASON_NAME,
    activate_archived_season,
    archive_active_season,
    get_active_season,
    season_leaderboard,
)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Archive the active season, or reactivate an archived one.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--name",
        default=DEFAULT_SEASON_NAME,
        help="Name of the new active season.",
    )
    parser.add_argument(
        "--activate",
        type=int,
        default=None,
        metavar="SEASON_ID",
        help="Make this archived season active again instead of opening a new one.",
    )
    return parser


def _print_leaderboard(session, season, heading: str) -> None:
    board = season_leaderboard(session, season.id)
    print(f"{heading:<19}{season.id} ({season.name})")
    print(f"Players ranked:    {len(board)}")
    for entry in board[:10]:
        print(f"  {entry.rank:>3}. {entry.name:<30} {entry.rating:7.1f}")


def main() -> int:
    args = _build_parser().parse_args()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    with get_session() as session:
        previous = get_active_season(session)
        try:
            if args.activate is not None:
                active = activate_archived_season(
                    session,
                    args.activate,
                    lock_timeout=settings.recalc_lock_timeout_seconds,
                )
            else:
                active = archive_active_season(
                    session,
                    new_season_name=args.name,
                    lock_timeout=settings.recalc_lock_timeout_seconds,
                )
        except ScopeStateError as exc:
            print(f"ERROR: {exc}")
            return 1

        if previous is not None:
            _print_leaderboard(session, previous, "Archived season:")
        _print_leaderboard(session, active, "Active season:")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
