"""
Glicko-2 rating calculator.

Implements the update rule from Glickman's "Example of the Glicko-2 system":

  1. Convert rating/deviation to the Glicko-2 scale (mu, phi)
  2. For each game: g(phi_j) = 1 / sqrt(1 + 3 phi_j^2 / pi^2)
                    E_j      = 1 / (1 + exp(-g(phi_j) (mu - mu_j)))
  3. Estimated variance   v     = 1 / sum(g^2 E (1 - E))
  4. Improvement          delta = v * sum(g (s - E))
  5. New volatility sigma' from an Illinois regula falsi root-find
  6. phi* = sqrt(phi^2 + sigma'^2), phi' = 1 / sqrt(1/phi*^2 + 1/v),
     mu'  = mu + phi'^2 * sum(g (s - E))
  7. Convert back to the public scale

Everything here is a pure function over immutable values, so it is safe to
call from any number of threads at once.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import NamedTuple, Optional, Sequence

from rankledger.errors import ConvergenceError
from rankledger.glicko.constants import (
    CONVERGENCE_TOLERANCE,
    DEFAULT_DEVIATION,
    DEFAULT_RATING,
    DEFAULT_TAU,
    DEFAULT_VOLATILITY,
    GLICKO2_SCALE,
    MAX_BRACKET_STEPS,
    MAX_SOLVER_ITERATIONS,
    VALID_SCORES,
)


@dataclass(frozen=True)
class Rating:
    """
    A player's Glicko-2 state on the public scale.

    Immutable: every update produces a new Rating.
    """
    rating: float = DEFAULT_RATING
    deviation: float = DEFAULT_DEVIATION
    volatility: float = DEFAULT_VOLATILITY

    @classmethod
    def from_values(
        cls,
        rating: Optional[float] = None,
        deviation: Optional[float] = None,
        volatility: Optional[float] = None,
    ) -> "Rating":
        """Build a Rating from nullable stored values, defaulting missing ones."""
        return cls(
            rating=float(rating) if rating is not None else DEFAULT_RATING,
            deviation=float(deviation) if deviation is not None else DEFAULT_DEVIATION,
            volatility=float(volatility) if volatility is not None else DEFAULT_VOLATILITY,
        )

    def to_glicko2_scale(self) -> tuple[float, float, float]:
        """Convert to (mu, phi, sigma) on the Glicko-2 scale."""
        mu = (self.rating - DEFAULT_RATING) / GLICKO2_SCALE
        phi = self.deviation / GLICKO2_SCALE
        return mu, phi, self.volatility

    @classmethod
    def from_glicko2_scale(cls, mu: float, phi: float, sigma: float) -> "Rating":
        """Create from Glicko-2 scale values."""
        return cls(
            rating=mu * GLICKO2_SCALE + DEFAULT_RATING,
            deviation=phi * GLICKO2_SCALE,
            volatility=sigma,
        )

    def is_finite(self) -> bool:
        return all(math.isfinite(x) for x in (self.rating, self.deviation, self.volatility))

    def __repr__(self) -> str:
        return (
            f"<Rating({self.rating:.2f}, rd={self.deviation:.2f}, "
            f"vol={self.volatility:.5f})>"
        )


class MatchOutcome(NamedTuple):
    """One game result from a player's point of view: 1 win, 0.5 draw, 0 loss."""
    opponent: Rating
    score: float


@dataclass(frozen=True)
class RatingPrediction:
    """Rating a player would end up with after a win or a loss."""
    win_new_rating: float
    lose_new_rating: float
    win_rating_change: float
    lose_rating_change: float


def _g(phi: float) -> float:
    return 1.0 / math.sqrt(1.0 + 3.0 * phi * phi / (math.pi * math.pi))


def _expected(mu: float, mu_j: float, g_j: float) -> float:
    return 1.0 / (1.0 + math.exp(-g_j * (mu - mu_j)))


def _validate(rating: Rating, label: str) -> None:
    if not rating.is_finite():
        raise ValueError(f"{label} must be finite, got {rating!r}")
    if rating.deviation <= 0 or rating.volatility <= 0:
        raise ValueError(f"{label} deviation and volatility must be positive, got {rating!r}")


def compute_update(
    current: Rating,
    outcomes: Sequence[MatchOutcome],
    tau: float = DEFAULT_TAU,
) -> Rating:
    """
    Calculate a player's new rating after a rating period.

    All outcomes are treated as simultaneous (one rating period), each against
    the opponent's rating as it stood before the period.

    Args:
        current: Player's rating before the period
        outcomes: Games played in the period. Empty means no change.
        tau: System constant constraining volatility change

    Returns:
        New Rating. When outcomes is empty, ``current`` itself is returned.

    Raises:
        ValueError: If a score is not 0, 0.5 or 1, or a rating is not a finite
                    positive-deviation, positive-volatility value.
        ConvergenceError: If the volatility solver cannot bracket or converge,
                          or the result is not finite.

    Example:
        # Two brand-new players, A beats B
        a = Rating()
        b = Rating()
        new_a = compute_update(a, [MatchOutcome(b, 1)])
        # new_a.rating ~ 1662, deviation drops from 350 to ~290
    """
    if not outcomes:
        return current

    _validate(current, "current rating")
    mu, phi, sigma = current.to_glicko2_scale()

    v_inv = 0.0
    delta_sum = 0.0
    for outcome in outcomes:
        if outcome.score not in VALID_SCORES:
            raise ValueError(f"score must be one of {VALID_SCORES}, got {outcome.score!r}")
        _validate(outcome.opponent, "opponent rating")

        mu_j, phi_j, _ = outcome.opponent.to_glicko2_scale()
        g_j = _g(phi_j)
        e_j = _expected(mu, mu_j, g_j)
        v_inv += g_j * g_j * e_j * (1.0 - e_j)
        delta_sum += g_j * (outcome.score - e_j)

    # Expected scores saturate at 0 or 1 for absurd rating gaps
    if not v_inv > 0.0:
        raise ConvergenceError("estimated variance is unbounded (expected score saturated)")

    v = 1.0 / v_inv
    delta = v * delta_sum

    sigma_new = _solve_volatility(delta, phi, v, sigma, tau)

    phi_star = math.sqrt(phi * phi + sigma_new * sigma_new)
    phi_new = 1.0 / math.sqrt(1.0 / (phi_star * phi_star) + 1.0 / v)
    mu_new = mu + phi_new * phi_new * delta_sum

    result = Rating.from_glicko2_scale(mu_new, phi_new, sigma_new)
    if not result.is_finite():
        raise ConvergenceError(f"update produced a non-finite rating: {result!r}")
    return result


def _solve_volatility(delta: float, phi: float, v: float, sigma: float, tau: float) -> float:
    """
    Find the new volatility with the Illinois variant of regula falsi.

    The bracket [A, B] starts at a = ln(sigma^2). B is either the closed form
    ln(delta^2 - phi^2 - v) or found by stepping down from a in steps of tau.
    Both the bracket search and the iteration are bounded, so this always
    terminates.
    """
    phi_sq = phi * phi
    delta_sq = delta * delta

    def f(x: float) -> float:
        ex = math.exp(x)
        denom = phi_sq + v + ex
        return ex * (delta_sq - phi_sq - v - ex) / (2.0 * denom * denom) - (x - a) / (tau * tau)

    try:
        a = math.log(sigma * sigma)
        A = a
        if delta_sq > phi_sq + v:
            B = math.log(delta_sq - phi_sq - v)
        else:
            k = 1
            while f(a - k * tau) < 0:
                if k >= MAX_BRACKET_STEPS:
                    raise ConvergenceError(
                        f"could not bracket volatility within {MAX_BRACKET_STEPS} steps"
                    )
                k += 1
            B = a - k * tau

        f_a = f(A)
        f_b = f(B)
        iterations = 0
        while abs(B - A) > CONVERGENCE_TOLERANCE:
            if iterations >= MAX_SOLVER_ITERATIONS:
                raise ConvergenceError(
                    f"volatility did not converge within {MAX_SOLVER_ITERATIONS} iterations"
                )
            if f_b == f_a:
                raise ConvergenceError("volatility solver hit a flat secant step")

            C = A + (A - B) * f_a / (f_b - f_a)
            f_c = f(C)
            if f_c * f_b <= 0:
                A, f_a = B, f_b
            else:
                # Illinois step: halve the retained endpoint
                f_a /= 2.0
            B, f_b = C, f_c
            iterations += 1

        sigma_new = math.exp(A / 2.0)
    except (OverflowError, ValueError, ZeroDivisionError) as exc:
        raise ConvergenceError(f"volatility solver failed: {exc}") from exc

    if not math.isfinite(sigma_new) or sigma_new <= 0:
        raise ConvergenceError(f"volatility solver produced {sigma_new!r}")
    return sigma_new


def expected_score(player: Rating, opponent: Rating) -> float:
    """
    Probability-like expected score of ``player`` against ``opponent``.

    Uses the opponent's deviation to damp the rating gap, exactly as the
    update rule does.

    Example:
        expected_score(Rating(1700, 50), Rating(1500, 50))  # ~0.75
    """
    mu, _, _ = player.to_glicko2_scale()
    mu_j, phi_j, _ = opponent.to_glicko2_scale()
    return _expected(mu, mu_j, _g(phi_j))


def predict_rating_change(
    player: Optional[Rating],
    opponent: Optional[Rating],
    tau: float = DEFAULT_TAU,
) -> RatingPrediction:
    """
    Rating changes for ``player`` if they were to win or lose against ``opponent``.

    Players without a rating in the current season (None) are treated as
    brand-new players at the defaults.
    """
    player = player or Rating()
    opponent = opponent or Rating()

    after_win = compute_update(player, [MatchOutcome(opponent, 1.0)], tau=tau)
    after_loss = compute_update(player, [MatchOutcome(opponent, 0.0)], tau=tau)

    return RatingPrediction(
        win_new_rating=after_win.rating,
        lose_new_rating=after_loss.rating,
        win_rating_change=after_win.rating - player.rating,
        lose_rating_change=after_loss.rating - player.rating,
    )
