"""Unit tests for inactivity decay."""

from datetime import datetime, timedelta

import pytest

from rankledger.glicko.decay import apply_decay, elapsed_periods
from rankledger.glicko.kernel import Rating


class TestApplyDecay:
    """Tests for apply_decay()."""

    def test_no_time_is_identity(self):
        current = Rating(1800, 50, 0.06)
        assert apply_decay(current, 0) is current
        assert apply_decay(current, -3) is current

    def test_only_deviation_changes(self):
        result = apply_decay(Rating(1800, 50, 0.055), 10)
        assert result.rating == 1800
        assert result.volatility == 0.055
        assert result.deviation == pytest.approx((50 ** 2 + 18.3 ** 2 * 10) ** 0.5)

    def test_monotonic_in_elapsed_time(self):
        current = Rating(1700, 60, 0.06)
        deviations = [apply_decay(current, days).deviation for days in (1, 7, 30, 90, 180)]
        assert deviations == sorted(deviations)
        assert all(d > 60 for d in deviations)

    def test_capped_at_new_player_deviation(self):
        """About a year of inactivity restores a deviation of 50 to the 350 ceiling."""
        assert apply_decay(Rating(1800, 50), 365).deviation == 350.0
        assert apply_decay(Rating(1800, 50), 10_000).deviation == 350.0

    def test_custom_constant(self):
        slow = apply_decay(Rating(1800, 50), 30, c=5.0)
        fast = apply_decay(Rating(1800, 50), 30, c=30.0)
        assert slow.deviation < fast.deviation


class TestElapsedPeriods:
    """Tests for elapsed_periods()."""

    def test_days(self):
        start = datetime(2026, 3, 1)
        assert elapsed_periods(start, start + timedelta(days=3)) == pytest.approx(3.0)
        assert elapsed_periods(start, start + timedelta(hours=12)) == pytest.approx(0.5)

    def test_custom_period(self):
        start = datetime(2026, 3, 1)
        assert elapsed_periods(start, start + timedelta(days=14), period_days=7) == pytest.approx(2.0)

    def test_missing_or_backwards_is_zero(self):
        start = datetime(2026, 3, 1)
        assert elapsed_periods(None, start) == 0.0
        assert elapsed_periods(start, None) == 0.0
        assert elapsed_periods(start, start - timedelta(days=1)) == 0.0
