"""
Glicko-2 rating system module.

Implements the rating math and the chronological replay:
- Glicko-2 update for one player over a batch of results
- Inactivity decay (grows rating deviation between matches)
- Replay engine that rebuilds rating history from completed matches
"""

from rankledger.glicko.constants import (
    DEFAULT_DEVIATION,
    DEFAULT_RATING,
    DEFAULT_VOLATILITY,
)
from rankledger.glicko.decay import apply_decay, elapsed_periods
from rankledger.glicko.kernel import (
    MatchOutcome,
    Rating,
    RatingPrediction,
    compute_update,
    expected_score,
    predict_rating_change,
)
from rankledger.glicko.replay import (
    ReplayConfig,
    ReplayEngine,
    LedgerEntry,
    ReplayMatch,
    ReplayProgress,
    ReplayResult,
)

__all__ = [
    "DEFAULT_DEVIATION",
    "DEFAULT_RATING",
    "DEFAULT_VOLATILITY",
    "MatchOutcome",
    "Rating",
    "RatingPrediction",
    "compute_update",
    "expected_score",
    "predict_rating_change",
    "apply_decay",
    "elapsed_periods",
    "ReplayConfig",
    "ReplayEngine",
    "LedgerEntry",
    "ReplayMatch",
    "ReplayProgress",
    "ReplayResult",
]
