"""
Recalculation orchestrator - rebuilds one season's ledger from its matches.

A run moves through these states:

    idle -> fetching -> resetting -> replaying -> persisting -> projecting -> complete

and lands in `error` if any step fails. Steps resetting through projecting
run inside a single SAVEPOINT, so a failed or cancelled run leaves the
previous ledger generation and player projection exactly as they were. The
caller owns the outer transaction and decides when to commit.

Usage:
    with get_session() as session:
        orchestrator = RecalculationOrchestrator(session)
        result = orchestrator.recalculate_scope(season_id=1)
        result.raise_for_status()
"""

from __future__ import annotations

import logging
import threading
from contextlib import ExitStack
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rankledger.db.models import EVENT_RESET, Match, Player, RatingEvent, Season
from rankledger.errors import RankLedgerError, ReplayCancelled, ScopeStateError
from rankledger.glicko.kernel import Rating
from rankledger.glicko.replay import (
    LedgerEntry,
    ProgressCallback,
    ReplayConfig,
    ReplayEngine,
    ReplayMatch,
    ReplayProgress,
)
from rankledger.ledger import RatingLedger, apply_projection
from rankledger.tasks.locks import season_lock

logger = logging.getLogger(__name__)

DEFAULT_REASON = "Full recalculation"


class RecalcState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    RESETTING = "resetting"
    REPLAYING = "replaying"
    PERSISTING = "persisting"
    PROJECTING = "projecting"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class RecalculationResult:
    """Outcome of one recalculation run."""

    season_id: int
    status: str
    events_created: int = 0
    matches_processed: int = 0
    skipped_updates: int = 0
    skipped_matches: int = 0
    error: Optional[str] = None
    error_kind: Optional[str] = None
    # State the run was in when it failed
    failed_step: Optional[str] = None
    exception: Optional[BaseException] = field(default=None, repr=False, compare=False)

    @property
    def succeeded(self) -> bool:
        return self.status == RecalcState.COMPLETE.value

    def raise_for_status(self) -> None:
        """Re-raise the exception that ended the run, if any."""
        if self.exception is not None:
            raise self.exception

    def to_dict(self) -> dict[str, Any]:
        return {
            "season_id": self.season_id,
            "status": self.status,
            "events_created": self.events_created,
            "matches_processed": self.matches_processed,
            "skipped_updates": self.skipped_updates,
            "skipped_matches": self.skipped_matches,
            "error": self.error,
            "error_kind": self.error_kind,
            "failed_step": self.failed_step,
        }


class RecalculationOrchestrator:
    """
    Clears, replays and re-projects the rating ledger of one season.

    Only one recalculation per season runs at a time. A second request for a
    season that is already being recalculated fails with ScopeStateError
    (reported through the result, like every other failure).
    """

    def __init__(
        self,
        session: Session,
        config: Optional[ReplayConfig] = None,
        batch_size: Optional[int] = None,
        lock_timeout: Optional[float] = None,
    ):
        from rankledger.config import settings

        self.session = session
        self.config = config or ReplayConfig.from_settings()
        self.batch_size = batch_size or settings.ledger_batch_size
        self.lock_timeout = (
            settings.recalc_lock_timeout_seconds if lock_timeout is None else lock_timeout
        )
        self.ledger = RatingLedger(session)
        self.state = RecalcState.IDLE

    def recalculate_scope(
        self,
        season_id: int,
        reason: str = DEFAULT_REASON,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        lock: bool = True,
    ) -> RecalculationResult:
        """
        Rebuild a season's ledger and projection from its completed matches.

        Args:
            season_id: Season to recalculate (must be active)
            reason: Stored on every reset event of this generation
            on_progress: Receives ReplayProgress updates with the current state
            cancel_event: When set, the run stops and nothing is kept
            lock: Take the season lock. Callers that already hold it pass False.

        Returns:
            RecalculationResult. Failures never raise; they come back with
            status 'error' and can be re-raised with raise_for_status().
        """
        self.state = RecalcState.IDLE
        try:
            with ExitStack() as stack:
                if lock:
                    try:
                        stack.enter_context(
                            season_lock(self.session, season_id, timeout_seconds=self.lock_timeout)
                        )
                    except TimeoutError as exc:
                        raise ScopeStateError(
                            f"A recalculation of season {season_id} is already in flight"
                        ) from exc
                return self._run(season_id, reason, on_progress, cancel_event)
        except (RankLedgerError, SQLAlchemyError, ValueError) as exc:
            return self._fail(season_id, exc, on_progress)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _run(
        self,
        season_id: int,
        reason: str,
        on_progress: Optional[ProgressCallback],
        cancel_event: Optional[threading.Event],
    ) -> RecalculationResult:
        result = RecalculationResult(season_id=season_id, status=RecalcState.IDLE.value)

        # ---- fetching ----
        self._transition(RecalcState.FETCHING, on_progress)
        self._check_season(season_id)
        player_ids = list(self.session.scalars(select(Player.id).order_by(Player.id)))
        matches = self._fetch_matches(season_id)
        total = len(matches)
        logger.info(
            "Season %s: %d players, %d completed matches", season_id, len(player_ids), total
        )

        with self.session.begin_nested():
            # ---- resetting ----
            self._transition(RecalcState.RESETTING, on_progress, total)
            cleared = self.ledger.clear_scope(season_id)
            logger.info("Season %s: cleared %d ledger events", season_id, cleared)
            resets = [
                LedgerEntry(player_id=pid, event_type=EVENT_RESET, rating=Rating(), reason=reason)
                for pid in player_ids
            ]
            result.events_created += self.ledger.append_entries(
                resets, season_id, batch_size=self.batch_size, step=RecalcState.RESETTING.value
            )

            if matches:
                # ---- replaying ----
                self._transition(RecalcState.REPLAYING, on_progress, total)
                replay = ReplayEngine(self.config).replay(
                    player_ids, matches, on_progress=on_progress, cancel_event=cancel_event
                )
                result.matches_processed = replay.matches_processed
                result.skipped_matches = replay.skipped_matches
                result.skipped_updates = replay.skipped_updates

                # ---- persisting ----
                _check_cancelled(cancel_event, "before persisting")
                self._transition(RecalcState.PERSISTING, on_progress, total, result.matches_processed)
                result.events_created += self.ledger.append_entries(
                    replay.events, season_id, batch_size=self.batch_size
                )

            # ---- projecting ----
            _check_cancelled(cancel_event, "before projecting")
            self._transition(RecalcState.PROJECTING, on_progress, total, total)
            self._project(season_id)

        self._transition(RecalcState.COMPLETE, on_progress, total, total)
        result.status = RecalcState.COMPLETE.value
        logger.info(
            "Season %s recalculated: %d events, %d matches, %d skipped updates, %d skipped matches",
            season_id,
            result.events_created,
            result.matches_processed,
            result.skipped_updates,
            result.skipped_matches,
        )
        return result

    def _check_season(self, season_id: int) -> Season:
        season = self.session.get(Season, season_id)
        if season is None:
            raise ScopeStateError(f"Season {season_id} does not exist")
        if not season.is_active:
            raise ScopeStateError(f"Season {season_id} is archived and read-only")
        return season

    def _fetch_matches(self, season_id: int) -> list[ReplayMatch]:
        rows = self.session.execute(
            select(
                Match.id,
                Match.player1_id,
                Match.player2_id,
                Match.winner_id,
                Match.played_at,
            )
            .where(Match.season_id == season_id, Match.winner_id.is_not(None))
            .order_by(Match.id)
        )
        return [ReplayMatch(*row) for row in rows]

    def _project(self, season_id: int) -> None:
        """
        Write the ledger's current state onto players and matches.

        Players get their latest rating, match count, last match date and
        peak. Matches get the legacy rating_change_p1/p2 deltas, which are
        cleared for matches that have no ledger events.
        """
        latest = self.ledger.latest_by_player(season_id)
        match_events = self.ledger.match_events(season_id)

        counts: dict[int, int] = {}
        last_played = {}
        peaks: dict[int, RatingEvent] = {}
        deltas: dict[int, dict[int, Optional[float]]] = {}

        for event in match_events:
            pid = event.player_id
            counts[pid] = counts.get(pid, 0) + 1
            if event.occurred_at is not None:
                if last_played.get(pid) is None or event.occurred_at > last_played[pid]:
                    last_played[pid] = event.occurred_at
            # Strictly greater keeps the earliest event on ties
            if pid not in peaks or event.rating > peaks[pid].rating:
                peaks[pid] = event
            deltas.setdefault(event.match_id, {})[pid] = event.rating_change

        for player in self.session.scalars(select(Player)):
            event = latest.get(player.id)
            peak = peaks.get(player.id)
            if peak is None and event is not None:
                peak = self.ledger.peak_for_player(player.id, season_id)
            apply_projection(
                player,
                event,
                counts.get(player.id, 0),
                last_played.get(player.id),
                peak,
            )

        for match in self.session.scalars(select(Match).where(Match.season_id == season_id)):
            changes = deltas.get(match.id, {})
            match.rating_change_p1 = changes.get(match.player1_id)
            match.rating_change_p2 = changes.get(match.player2_id)

        self.session.flush()

    # ------------------------------------------------------------------
    # State reporting
    # ------------------------------------------------------------------

    def _transition(
        self,
        state: RecalcState,
        on_progress: Optional[ProgressCallback],
        total: int = 0,
        processed: int = 0,
    ) -> None:
        self.state = state
        logger.info("Recalculation state: %s", state.value)
        if on_progress is not None:
            on_progress(ReplayProgress(total, processed, None, state.value))

    def _fail(
        self,
        season_id: int,
        exc: BaseException,
        on_progress: Optional[ProgressCallback],
    ) -> RecalculationResult:
        failed_in = self.state.value
        self.state = RecalcState.ERROR
        if isinstance(exc, (ReplayCancelled, ScopeStateError)):
            logger.warning("Recalculation of season %s stopped: %s", season_id, exc)
        else:
            logger.error(
                "Recalculation of season %s failed during %s: %s", season_id, failed_in, exc
            )
        if on_progress is not None:
            on_progress(ReplayProgress(0, 0, None, RecalcState.ERROR.value))
        return RecalculationResult(
            season_id=season_id,
            status=RecalcState.ERROR.value,
            error=str(exc),
            error_kind=type(exc).__name__,
            failed_step=failed_in,
            exception=exc,
        )


def _check_cancelled(cancel_event: Optional[threading.Event], where: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise ReplayCancelled(f"Recalculation cancelled {where}")
