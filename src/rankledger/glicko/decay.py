"""
Inactivity decay for Glicko-2 ratings.

When a player hasn't played for a while, we are less sure of their level.
Glicko models this by growing the rating deviation between games while
leaving the rating and volatility alone:

Formula:
    new_deviation = min(DEFAULT_DEVIATION, sqrt(deviation^2 + c^2 * periods))

The deviation only ever grows, and never past the uncertainty of a brand-new
player.
"""

import math
from dataclasses import replace
from datetime import datetime

from rankledger.glicko.constants import DECAY_DEFAULTS, DEFAULT_DEVIATION
from rankledger.glicko.kernel import Rating


def apply_decay(
    current: Rating,
    elapsed_periods: float,
    c: float | None = None,
) -> Rating:
    """
    Grow a player's rating deviation for a stretch of inactivity.

    Args:
        current: Player's rating before the inactive stretch
        elapsed_periods: Number of inactivity periods (may be fractional)
        c: Deviation growth per period. Default from DECAY_DEFAULTS.

    Returns:
        New Rating with a larger (or equal) deviation. ``current`` itself when
        no time has passed.

    Examples:
        # No time passed - unchanged
        apply_decay(Rating(1800, 50, 0.06), 0)  # -> same Rating

        # A year of daily periods - back to full uncertainty
        apply_decay(Rating(1800, 50, 0.06), 365).deviation  # -> 350.0
    """
    if c is None:
        c = DECAY_DEFAULTS["c"]

    if elapsed_periods <= 0:
        return current

    grown = math.sqrt(current.deviation ** 2 + c * c * elapsed_periods)
    return replace(current, deviation=min(DEFAULT_DEVIATION, grown))


def elapsed_periods(
    since: datetime | None,
    until: datetime | None,
    period_days: float | None = None,
) -> float:
    """
    Number of inactivity periods between two timestamps.

    Returns 0 when either timestamp is missing or time runs backwards, so
    callers can feed the result straight into apply_decay().
    """
    if period_days is None:
        period_days = DECAY_DEFAULTS["period_days"]
    if since is None or until is None:
        return 0.0

    seconds = (until - since).total_seconds()
    if seconds <= 0:
        return 0.0
    return seconds / (period_days * 86400.0)
