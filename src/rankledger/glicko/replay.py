"""
Replay engine - walks completed matches in chronological order.

Every player starts at the default rating. Each match then:
1. Optionally applies inactivity decay to both participants
2. Scores the result (winner 1, loser 0, anything else a draw)
3. Runs the Glicko-2 update for each side against the other's pre-match rating
4. Emits one ledger event per participant
5. Commits both participants' new state before moving on

The engine is pure in-memory computation. It never touches the database, so
it can run on a worker thread and be cancelled without side effects.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, NamedTuple, Optional, Sequence

from rankledger.errors import ConvergenceError, MissingParticipantError, ReplayCancelled
from rankledger.glicko.constants import DECAY_DEFAULTS, DEFAULT_TAU
from rankledger.glicko.decay import apply_decay, elapsed_periods
from rankledger.glicko.kernel import MatchOutcome, Rating, compute_update

logger = logging.getLogger(__name__)


@dataclass
class ReplayConfig:
    """Tunable behaviour of a replay run."""
    tau: float = DEFAULT_TAU
    convergence_policy: str = "skip"  # 'skip' or 'abort'
    decay_enabled: bool = False
    decay_c: float = DECAY_DEFAULTS["c"]
    decay_period_days: float = DECAY_DEFAULTS["period_days"]
    progress_interval: int = 10

    @classmethod
    def from_settings(cls, settings=None) -> "ReplayConfig":
        """Build a config from application settings (defaults to the global settings)."""
        if settings is None:
            from rankledger.config import settings
        return cls(
            tau=settings.glicko_tau,
            convergence_policy=settings.convergence_policy,
            decay_enabled=settings.decay_enabled,
            decay_c=settings.decay_c,
            decay_period_days=settings.decay_period_days,
            progress_interval=settings.progress_interval,
        )


class ReplayMatch(NamedTuple):
    """Lightweight completed-match record fed to the engine."""
    id: int
    player1_id: int
    player2_id: int
    winner_id: Optional[int]
    played_at: Optional[datetime] = None


@dataclass(frozen=True)
class LedgerEntry:
    """A rating event not yet written to the ledger."""
    player_id: int
    event_type: str  # 'reset', 'match', 'decay' or 'manual_adjustment'
    rating: Rating
    rating_change: Optional[float] = None
    match_id: Optional[int] = None
    opponent_id: Optional[int] = None
    result: Optional[float] = None
    occurred_at: Optional[datetime] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class ReplayProgress:
    """Coarse progress report delivered to callers during a run."""
    total_matches: int
    processed_matches: int
    current_match_id: Optional[int]
    status: str


ProgressCallback = Callable[[ReplayProgress], None]


@dataclass
class ReplayResult:
    """Everything a replay run produced."""
    events: list[LedgerEntry] = field(default_factory=list)
    matches_processed: int = 0
    skipped_matches: int = 0
    skipped_updates: int = 0
    final_ratings: dict[int, Rating] = field(default_factory=dict)


@dataclass
class _PlayerState:
    """In-memory state for one player during a replay."""
    player_id: int
    rating: Rating = field(default_factory=Rating)
    match_count: int = 0
    last_played_at: Optional[datetime] = None


class ReplayEngine:
    """
    Replays completed matches to rebuild every player's rating trajectory.

    Usage:
        engine = ReplayEngine(ReplayConfig())
        result = engine.replay(
            player_ids=[1, 2],
            matches=[ReplayMatch(id=10, player1_id=1, player2_id=2, winner_id=1)],
        )
        for event in result.events:
            print(event.player_id, event.rating)
    """

    def __init__(self, config: Optional[ReplayConfig] = None):
        self.config = config or ReplayConfig()
        if self.config.convergence_policy not in ("skip", "abort"):
            raise ValueError(
                f"convergence_policy must be 'skip' or 'abort', got {self.config.convergence_policy!r}"
            )

    def replay(
        self,
        player_ids: Iterable[int],
        matches: Sequence[ReplayMatch],
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ReplayResult:
        """
        Process matches in order and collect the resulting rating events.

        Args:
            player_ids: Every player that may appear in the matches
            matches: Completed matches sorted by ascending id
            on_progress: Called every ``progress_interval`` matches and at the end
            cancel_event: When set, the run stops at the next match boundary

        Returns:
            ReplayResult with events in chronological order

        Raises:
            ValueError: If matches are not in ascending id order
            ReplayCancelled: If cancel_event was set during the run
            ConvergenceError: Only with convergence_policy='abort'
        """
        states = {pid: _PlayerState(player_id=pid) for pid in player_ids}
        result = ReplayResult()
        total = len(matches)
        interval = max(1, self.config.progress_interval)
        last_match_id: Optional[int] = None

        for index, match in enumerate(matches):
            if cancel_event is not None and cancel_event.is_set():
                raise ReplayCancelled(f"Replay cancelled after {index} of {total} matches")

            if last_match_id is not None and match.id <= last_match_id:
                raise ValueError(
                    f"Matches must be sorted by ascending id: {match.id} follows {last_match_id}"
                )
            last_match_id = match.id

            if on_progress is not None and index % interval == 0:
                on_progress(ReplayProgress(total, index, match.id, "replaying"))

            if match.winner_id is None:
                logger.warning("Skipping match %s: no result recorded", match.id)
                result.skipped_matches += 1
                continue

            try:
                self._apply_match(match, states, result)
            except MissingParticipantError as exc:
                logger.warning("Skipping match: %s", exc)
                result.skipped_matches += 1
                continue

            result.matches_processed += 1

        if on_progress is not None:
            on_progress(ReplayProgress(total, total, last_match_id, "replaying"))

        if result.skipped_updates or result.skipped_matches:
            logger.warning(
                "Replay finished with %d skipped updates and %d skipped matches",
                result.skipped_updates,
                result.skipped_matches,
            )

        result.final_ratings = {pid: state.rating for pid, state in states.items()}
        return result

    # ------------------------------------------------------------------
    # Per-match processing
    # ------------------------------------------------------------------

    def _apply_match(
        self,
        match: ReplayMatch,
        states: dict[int, _PlayerState],
        result: ReplayResult,
    ) -> None:
        missing = [pid for pid in (match.player1_id, match.player2_id) if pid not in states]
        if missing:
            raise MissingParticipantError(match.id, missing)

        state_1 = states[match.player1_id]
        state_2 = states[match.player2_id]
        events: list[LedgerEntry] = []

        # ---- Step 1: Inactivity decay ----
        before_1 = self._decayed(state_1, match, events)
        before_2 = self._decayed(state_2, match, events)

        # ---- Step 2: Scores ----
        score_1, score_2 = _scores(match)

        # ---- Step 3: Glicko-2 update, both sides against pre-match ratings ----
        new_1 = self._update(match, state_1.player_id, before_1, before_2, score_1, result)
        new_2 = self._update(match, state_2.player_id, before_2, before_1, score_2, result)

        # ---- Step 4: Events and state, committed together ----
        for state, before, new, opponent_id, score in (
            (state_1, before_1, new_1, state_2.player_id, score_1),
            (state_2, before_2, new_2, state_1.player_id, score_2),
        ):
            state.rating = before
            if new is not None:
                events.append(
                    LedgerEntry(
                        player_id=state.player_id,
                        event_type="match",
                        rating=new,
                        rating_change=new.rating - before.rating,
                        match_id=match.id,
                        opponent_id=opponent_id,
                        result=score,
                        occurred_at=match.played_at,
                    )
                )
                state.rating = new
                state.match_count += 1
            if match.played_at is not None:
                state.last_played_at = match.played_at

        result.events.extend(events)

    def _decayed(
        self,
        state: _PlayerState,
        match: ReplayMatch,
        events: list[LedgerEntry],
    ) -> Rating:
        """Return the player's rating after inactivity decay up to this match."""
        if not self.config.decay_enabled:
            return state.rating
        if state.last_played_at is None or match.played_at is None:
            return state.rating

        periods = elapsed_periods(
            state.last_played_at, match.played_at, self.config.decay_period_days
        )
        decayed = apply_decay(state.rating, periods, c=self.config.decay_c)
        if decayed.deviation == state.rating.deviation:
            return state.rating

        events.append(
            LedgerEntry(
                player_id=state.player_id,
                event_type="decay",
                rating=decayed,
                rating_change=0.0,
                occurred_at=match.played_at,
                reason=f"Inactivity decay ({periods:.1f} periods)",
            )
        )
        return decayed

    def _update(
        self,
        match: ReplayMatch,
        player_id: int,
        before: Rating,
        opponent: Rating,
        score: float,
        result: ReplayResult,
    ) -> Optional[Rating]:
        try:
            return compute_update(before, [MatchOutcome(opponent, score)], tau=self.config.tau)
        except ConvergenceError as exc:
            if self.config.convergence_policy == "abort":
                raise
            logger.warning(
                "Skipping rating update for player %s in match %s: %s",
                player_id,
                match.id,
                exc,
            )
            result.skipped_updates += 1
            return None


def _scores(match: ReplayMatch) -> tuple[float, float]:
    if match.winner_id == match.player1_id:
        return 1.0, 0.0
    if match.winner_id == match.player2_id:
        return 0.0, 1.0
    return 0.5, 0.5
