#!/usr/bin/env python3
"""
Retract the result of a match and recalculate its season.

A match can only be rolled back while neither player has played a later
match.

Check eligibility only:
    python scripts/rollback_match.py 42 --check-only

Roll back:
    python scripts/rollback_match.py 42
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
from rankledger.errors import RankLedgerError, RollbackIneligibleError
from rankledger.rollback import RollbackGuard


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Roll back a completed match.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("match_id", type=int, help="Match to roll back.")
    parser.add_argument(
        "--check-only",
        action="store_true",
        help="Report whether the match can be rolled back without changing anything.",
    )
    return parser


def main() -> int:
    args = _build_parser().parse_args()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    with get_session() as session:
        guard = RollbackGuard(session)

        if args.check_only:
            check = guard.can_rollback(args.match_id)
            if check.allowed:
                print(f"Match {args.match_id} can be rolled back")
                return 0
            print(f"Match {args.match_id}: {check.reason}")
            for blocker in check.blocking:
                print(f"  - {blocker}")
            return 1

        try:
            result = guard.rollback(args.match_id)
        except RollbackIneligibleError as exc:
            session.rollback()
            print(f"ERROR: {exc}")
            for blocker in exc.blocking:
                print(f"  - {blocker}")
            return 1
        except RankLedgerError as exc:
            session.rollback()
            print(f"ERROR: rollback failed: {exc}")
            return 2

    print(f"Match {args.match_id} rolled back; {result.events_created} events regenerated")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
