"""
Unit tests for the Glicko-2 calculator.

Tests the core rating update to ensure:
- Results match Glickman's worked example
- Winners gain, losers drop, deviation shrinks after a game
- An empty rating period is an identity
- Invalid input and solver failures raise instead of guessing
"""

import math
from dataclasses import FrozenInstanceError

import pytest

from rankledger.errors import ConvergenceError
from rankledger.glicko.kernel import (
    MatchOutcome,
    Rating,
    compute_update,
    expected_score,
    predict_rating_change,
)


class TestComputeUpdate:
    """Tests for compute_update()."""

    def test_glickman_worked_example(self):
        """
        Player at 1500/200/0.06 beats 1400/30, loses to 1550/100 and 1700/300.

        Glickman's paper gives 1464.06 / 151.52 / 0.05999.
        """
        player = Rating(1500, 200, 0.06)
        outcomes = [
            MatchOutcome(Rating(1400, 30), 1),
            MatchOutcome(Rating(1550, 100), 0),
            MatchOutcome(Rating(1700, 300), 0),
        ]

        result = compute_update(player, outcomes, tau=0.5)

        assert result.rating == pytest.approx(1464.06, abs=0.1)
        assert result.deviation == pytest.approx(151.52, abs=0.1)
        assert result.volatility == pytest.approx(0.05999, abs=1e-4)

    def test_first_match_between_new_players(self):
        """Two brand-new players: the winner lands near 1662 with deviation near 290."""
        winner = compute_update(Rating(), [MatchOutcome(Rating(), 1)])
        loser = compute_update(Rating(), [MatchOutcome(Rating(), 0)])

        assert winner.rating == pytest.approx(1662.3, abs=0.5)
        assert winner.deviation == pytest.approx(290.3, abs=0.5)
        assert loser.rating == pytest.approx(1337.7, abs=0.5)
        # Symmetric around 1500
        assert winner.rating - 1500 == pytest.approx(1500 - loser.rating, abs=1e-9)
        assert winner.volatility == pytest.approx(0.06, abs=1e-3)

    def test_empty_outcomes_is_identity(self):
        """No games in the period returns the same object."""
        current = Rating(1720.5, 80.0, 0.059)
        assert compute_update(current, []) is current

    def test_draw_between_equals_keeps_rating(self):
        """A draw between identical players moves neither rating."""
        result = compute_update(Rating(), [MatchOutcome(Rating(), 0.5)])
        assert result.rating == pytest.approx(1500.0)
        assert result.deviation < 350.0

    def test_upset_win_gains_more(self):
        """Beating a stronger opponent earns more than beating a weaker one."""
        player = Rating(1600, 80)
        vs_stronger = compute_update(player, [MatchOutcome(Rating(1800, 80), 1)])
        vs_weaker = compute_update(player, [MatchOutcome(Rating(1400, 80), 1)])

        assert vs_stronger.rating - player.rating > vs_weaker.rating - player.rating > 0

    def test_input_is_not_mutated(self):
        player = Rating(1500, 200, 0.06)
        compute_update(player, [MatchOutcome(Rating(1400, 30), 1)])
        assert player == Rating(1500, 200, 0.06)

    def test_invalid_score_raises(self):
        with pytest.raises(ValueError):
            compute_update(Rating(), [MatchOutcome(Rating(), 0.7)])

    @pytest.mark.parametrize(
        "bad",
        [
            Rating(1500, 0.0, 0.06),
            Rating(1500, 350, 0.0),
            Rating(1500, -10, 0.06),
            Rating(math.nan, 350, 0.06),
            Rating(1500, math.inf, 0.06),
        ],
    )
    def test_invalid_rating_raises(self, bad):
        with pytest.raises(ValueError):
            compute_update(bad, [MatchOutcome(Rating(), 1)])
        with pytest.raises(ValueError):
            compute_update(Rating(), [MatchOutcome(bad, 1)])

    def test_saturated_expected_score_raises_convergence_error(self):
        """An absurd rating gap saturates the expected score; no silent fallback."""
        with pytest.raises(ConvergenceError):
            compute_update(Rating(100000, 30), [MatchOutcome(Rating(1500, 30), 1)])

    def test_degenerate_tau_raises_convergence_error(self):
        with pytest.raises(ConvergenceError):
            compute_update(Rating(), [MatchOutcome(Rating(), 1)], tau=0.0)

    def test_solver_terminates_for_extreme_but_valid_input(self):
        """Large surprises still converge within the iteration bound."""
        result = compute_update(
            Rating(1300, 50, 0.06),
            [MatchOutcome(Rating(2100, 50), 1)],
        )
        assert result.is_finite()
        assert result.rating > 1300


class TestPredictions:
    """Tests for expected_score() and predict_rating_change()."""

    def test_expected_score_equal_players(self):
        assert expected_score(Rating(), Rating()) == pytest.approx(0.5)

    def test_expected_score_favourite(self):
        score = expected_score(Rating(1700, 50), Rating(1500, 50))
        assert 0.7 < score < 0.8
        assert expected_score(Rating(1500, 50), Rating(1700, 50)) == pytest.approx(1 - score, abs=0.01)

    def test_predict_rating_change_matches_update(self):
        player = Rating(1600, 120, 0.06)
        opponent = Rating(1550, 90, 0.06)

        prediction = predict_rating_change(player, opponent)
        after_win = compute_update(player, [MatchOutcome(opponent, 1)])

        assert prediction.win_new_rating == pytest.approx(after_win.rating)
        assert prediction.win_rating_change > 0 > prediction.lose_rating_change

    def test_predict_rating_change_defaults_missing_ratings(self):
        prediction = predict_rating_change(None, None)
        assert prediction.win_new_rating == pytest.approx(1662.3, abs=0.5)
        assert prediction.lose_new_rating == pytest.approx(1337.7, abs=0.5)


class TestRating:
    """Tests for the Rating value type."""

    def test_defaults(self):
        assert Rating() == Rating(1500.0, 350.0, 0.06)

    def test_from_values_fills_missing(self):
        assert Rating.from_values(None, None, None) == Rating()
        assert Rating.from_values(1600, None, 0.05) == Rating(1600.0, 350.0, 0.05)

    def test_glicko2_scale_round_trip(self):
        rating = Rating(1673.2, 88.4, 0.061)
        mu, phi, sigma = rating.to_glicko2_scale()
        back = Rating.from_glicko2_scale(mu, phi, sigma)
        assert back.rating == pytest.approx(rating.rating)
        assert back.deviation == pytest.approx(rating.deviation)

    def test_is_immutable(self):
        with pytest.raises(FrozenInstanceError):
            Rating().rating = 1600  # type: ignore[misc]
