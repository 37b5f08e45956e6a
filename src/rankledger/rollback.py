"""
Rollback guard - retracts the result of a match.

Ratings form a linear chain: every match result feeds the ratings used for
the participants' next matches. A match can therefore only be rolled back
while neither participant has a completed match with a greater id. Rolling
back deletes the match's ledger events, reverts the match to scheduled and
recalculates the season.
"""

from __future__ import annotations

import logging
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import NamedTuple, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from rankledger.db.models import Match, Season
from rankledger.errors import RollbackIneligibleError, ScopeStateError
from rankledger.glicko.replay import ProgressCallback
from rankledger.ledger import RatingLedger
from rankledger.recalculation import RecalculationOrchestrator, RecalculationResult
from rankledger.tasks.locks import season_lock

logger = logging.getLogger(__name__)


class BlockingParticipant(NamedTuple):
    """A participant whose later match prevents a rollback."""
    role: str  # 'player1' or 'player2'
    player_id: int
    later_match_id: int

    def __str__(self) -> str:
        return f"{self.role} (player {self.player_id}) played match {self.later_match_id} afterwards"


@dataclass(frozen=True)
class RollbackCheck:
    allowed: bool
    reason: Optional[str] = None
    blocking: list[BlockingParticipant] = field(default_factory=list)


class RollbackGuard:
    """
    Checks and performs match rollbacks.

    Usage:
        guard = RollbackGuard(session)
        check = guard.can_rollback(match_id)
        if check.allowed:
            guard.rollback(match_id)
    """

    def __init__(
        self,
        session: Session,
        orchestrator: Optional[RecalculationOrchestrator] = None,
    ):
        self.session = session
        self.orchestrator = orchestrator or RecalculationOrchestrator(session)
        self.ledger = RatingLedger(session)

    def can_rollback(self, match_id: int) -> RollbackCheck:
        """Report whether a match can be rolled back, and if not, why."""
        match = self.session.get(Match, match_id)
        if match is None:
            return RollbackCheck(False, "Match not found")
        if match.winner_id is None:
            return RollbackCheck(False, "Cannot rollback upcoming matches")

        season = self.session.get(Season, match.season_id)
        if season is None or not season.is_active:
            return RollbackCheck(False, "Cannot rollback: the match belongs to an archived season")

        blocking = []
        for role, player_id in (("player1", match.player1_id), ("player2", match.player2_id)):
            later_id = self._later_match_id(match_id, player_id)
            if later_id is not None:
                blocking.append(BlockingParticipant(role, player_id, later_id))

        if not blocking:
            return RollbackCheck(True)

        if len(blocking) == 2:
            reason = "Cannot rollback: both players have played matches afterwards"
        elif blocking[0].role == "player1":
            reason = "Cannot rollback: player 1 has played matches afterwards"
        else:
            reason = "Cannot rollback: player 2 has played matches afterwards"
        return RollbackCheck(False, reason, blocking)

    def rollback(
        self,
        match_id: int,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RecalculationResult:
        """
        Retract a match result and recalculate its season.

        Eligibility is checked again while holding the season lock, so a
        result recorded between can_rollback() and rollback() is not lost.
        Everything happens in one SAVEPOINT: if the recalculation fails, the
        match keeps its result and its ledger events.

        Raises:
            RollbackIneligibleError: If the match cannot be rolled back
            ScopeStateError: If the season is being recalculated right now
            RankLedgerError: Whatever ended the recalculation, if it failed
        """
        match = self.session.get(Match, match_id)
        if match is None:
            raise RollbackIneligibleError(match_id, "Match not found")
        season_id = match.season_id

        with ExitStack() as stack:
            try:
                stack.enter_context(
                    season_lock(
                        self.session, season_id, timeout_seconds=self.orchestrator.lock_timeout
                    )
                )
            except TimeoutError as exc:
                raise ScopeStateError(
                    f"A recalculation of season {season_id} is already in flight"
                ) from exc

            with self.session.begin_nested():
                check = self.can_rollback(match_id)
                if not check.allowed:
                    raise RollbackIneligibleError(match_id, check.reason, check.blocking)

                deleted = self.ledger.delete_for_match(match_id)
                match.winner_id = None
                match.player1_score = None
                match.player2_score = None
                match.rating_change_p1 = None
                match.rating_change_p2 = None
                self.session.flush()
                logger.info(
                    "Reverted match %s to scheduled (%d ledger events removed)", match_id, deleted
                )

                result = self.orchestrator.recalculate_scope(
                    season_id,
                    reason=f"Rollback of match {match_id}",
                    on_progress=on_progress,
                    lock=False,
                )
                result.raise_for_status()

        logger.info("Match %s rolled back", match_id)
        return result

    def _later_match_id(self, match_id: int, player_id: int) -> Optional[int]:
        return self.session.scalars(
            select(Match.id)
            .where(
                Match.id > match_id,
                Match.winner_id.is_not(None),
                or_(Match.player1_id == player_id, Match.player2_id == player_id),
            )
            .order_by(Match.id)
            .limit(1)
        ).first()
