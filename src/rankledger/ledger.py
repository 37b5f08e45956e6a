"""
Rating ledger - append-only store of rating events.

Every change to a player's rating is one row in rating_events. Rows are
ordered within a season by `sequence`, which this module assigns on append,
continuing from the season's current maximum. The ledger never updates rows:
a recalculation clears a whole season and regenerates it, and a rollback
deletes the rows of a single match.

Usage:
    ledger = RatingLedger(session)
    ledger.append_entries(entries, season_id=1)
    latest = ledger.latest_by_player(season_id=1)
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import and_, delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rankledger.db.models import (
    EVENT_MANUAL_ADJUSTMENT,
    EVENT_MATCH,
    EVENT_RESET,
    Player,
    RatingEvent,
    Season,
)
from rankledger.errors import PersistenceError
from rankledger.glicko.kernel import Rating
from rankledger.glicko.replay import LedgerEntry

logger = logging.getLogger(__name__)


class RatingLedger:
    """Reads and appends rating events through a SQLAlchemy session."""

    def __init__(self, session: Session):
        self.session = session

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def next_sequence(self, season_id: int) -> int:
        """Return the sequence number the next appended event will get."""
        current = self.session.execute(
            select(func.max(RatingEvent.sequence)).where(RatingEvent.season_id == season_id)
        ).scalar()
        return (current or 0) + 1

    def append_entries(
        self,
        entries: Sequence[LedgerEntry],
        season_id: int,
        batch_size: Optional[int] = None,
        step: str = "persisting",
    ) -> int:
        """
        Append entries to a season in bounded batches.

        Entries keep their input order; each receives the next sequence
        number of the season.

        Args:
            entries: Events in chronological order
            season_id: Season the events belong to
            batch_size: Rows per flush (defaults to settings.ledger_batch_size)
            step: Name of the calling step, reported on failure

        Returns:
            Number of rows written

        Raises:
            PersistenceError: If a batch fails to write. Rows from earlier
                batches are flushed but uncommitted; the caller decides
                whether to roll them back.
        """
        if batch_size is None:
            from rankledger.config import settings
            batch_size = settings.ledger_batch_size
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        sequence = self.next_sequence(season_id)
        written = 0

        for batch_index, start in enumerate(range(0, len(entries), batch_size)):
            batch = []
            for entry in entries[start:start + batch_size]:
                batch.append(_to_row(entry, season_id, sequence))
                sequence += 1

            try:
                self.session.bulk_save_objects(batch)
                self.session.flush()
            except SQLAlchemyError as exc:
                logger.error(
                    "Ledger write failed in batch %d after %d entries: %s",
                    batch_index,
                    written,
                    exc,
                )
                raise PersistenceError(
                    "Failed to write rating events",
                    step=step,
                    batch_index=batch_index,
                    entries_written=written,
                ) from exc

            written += len(batch)
            logger.debug("Wrote ledger batch %d (%d entries)", batch_index, len(batch))

        return written

    def clear_scope(self, season_id: int) -> int:
        """Delete every event of one season. Returns the number of rows removed."""
        result = self.session.execute(
            delete(RatingEvent).where(RatingEvent.season_id == season_id)
        )
        return result.rowcount or 0

    def delete_for_match(self, match_id: int) -> int:
        """Delete the events of one match. Returns the number of rows removed."""
        result = self.session.execute(
            delete(RatingEvent).where(RatingEvent.match_id == match_id)
        )
        return result.rowcount or 0

    def record_manual_adjustment(
        self,
        player_id: int,
        season_id: int,
        rating: Rating,
        reason: str,
    ) -> RatingEvent:
        """
        Append an admin correction for one player.

        The change is measured against the player's latest event in the
        season. A later full recalculation rebuilds the season from matches
        only, so manual adjustments do not survive it.

        In the active season the adjusted rating becomes the player's
        current rating, so the cached fields on the player row are
        refreshed as well.
        """
        previous = self.latest_for_player(player_id, season_id)
        change = rating.rating - previous.rating if previous is not None else None

        row = _to_row(
            LedgerEntry(
                player_id=player_id,
                event_type=EVENT_MANUAL_ADJUSTMENT,
                rating=rating,
                rating_change=change,
                reason=reason,
            ),
            season_id,
            self.next_sequence(season_id),
        )
        self.session.add(row)
        self.session.flush()
        logger.info(
            "Manual adjustment for player %s in season %s: %s (%s)",
            player_id,
            season_id,
            rating,
            reason,
        )

        season = self.session.get(Season, season_id)
        if season is not None and season.is_active:
            self.project_player(player_id, season_id)
        return row

    def project_player(self, player_id: int, season_id: int) -> Optional[Player]:
        """Refresh one player's cached rating fields from a season's ledger."""
        player = self.session.get(Player, player_id)
        if player is None:
            return None

        latest = self.latest_for_player(player_id, season_id)
        matches_played, last_match_date = self.session.execute(
            select(func.count(RatingEvent.id), func.max(RatingEvent.occurred_at)).where(
                RatingEvent.season_id == season_id,
                RatingEvent.player_id == player_id,
                RatingEvent.event_type == EVENT_MATCH,
            )
        ).one()
        peak = self.peak_for_player(player_id, season_id) if latest is not None else None

        apply_projection(player, latest, matches_played, last_match_date, peak)
        self.session.flush()
        return player

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def latest_by_player(self, season_id: int) -> dict[int, RatingEvent]:
        """Return each player's event with the greatest sequence in a season."""
        latest = (
            select(
                RatingEvent.player_id,
                func.max(RatingEvent.sequence).label("max_sequence"),
            )
            .where(RatingEvent.season_id == season_id)
            .group_by(RatingEvent.player_id)
            .subquery()
        )
        stmt = (
            select(RatingEvent)
            .join(
                latest,
                and_(
                    RatingEvent.player_id == latest.c.player_id,
                    RatingEvent.sequence == latest.c.max_sequence,
                ),
            )
            .where(RatingEvent.season_id == season_id)
        )
        return {event.player_id: event for event in self.session.scalars(stmt)}

    def latest_for_player(self, player_id: int, season_id: int) -> Optional[RatingEvent]:
        return self.session.scalars(
            select(RatingEvent)
            .where(
                RatingEvent.season_id == season_id,
                RatingEvent.player_id == player_id,
            )
            .order_by(RatingEvent.sequence.desc())
            .limit(1)
        ).first()

    def history_for_player(
        self,
        player_id: int,
        season_id: int,
        limit: Optional[int] = None,
    ) -> list[RatingEvent]:
        """
        Return a player's events in a season, oldest first.

        With a limit, only the most recent `limit` events are returned (still
        oldest first).
        """
        stmt = select(RatingEvent).where(
            RatingEvent.season_id == season_id,
            RatingEvent.player_id == player_id,
        )
        if limit is None:
            return list(self.session.scalars(stmt.order_by(RatingEvent.sequence)))

        recent = list(
            self.session.scalars(stmt.order_by(RatingEvent.sequence.desc()).limit(limit))
        )
        recent.reverse()
        return recent

    def peak_for_player(self, player_id: int, season_id: int) -> Optional[RatingEvent]:
        """
        Return the player's highest-rated match event in a season.

        Ties go to the earliest event. A player without match events falls
        back to their latest reset event, or None if they have neither.
        """
        peak = self.session.scalars(
            select(RatingEvent)
            .where(
                RatingEvent.season_id == season_id,
                RatingEvent.player_id == player_id,
                RatingEvent.event_type == EVENT_MATCH,
            )
            .order_by(RatingEvent.rating.desc(), RatingEvent.sequence)
            .limit(1)
        ).first()
        if peak is not None:
            return peak

        return self.session.scalars(
            select(RatingEvent)
            .where(
                RatingEvent.season_id == season_id,
                RatingEvent.player_id == player_id,
                RatingEvent.event_type == EVENT_RESET,
            )
            .order_by(RatingEvent.sequence.desc())
            .limit(1)
        ).first()

    def match_events(self, season_id: int) -> list[RatingEvent]:
        """Return every match event of a season in sequence order."""
        return list(
            self.session.scalars(
                select(RatingEvent)
                .where(
                    RatingEvent.season_id == season_id,
                    RatingEvent.event_type == EVENT_MATCH,
                )
                .order_by(RatingEvent.sequence)
            )
        )

    def events_for_match(self, match_id: int) -> list[RatingEvent]:
        return list(
            self.session.scalars(
                select(RatingEvent)
                .where(RatingEvent.match_id == match_id)
                .order_by(RatingEvent.sequence)
            )
        )

    def count(self, season_id: int) -> int:
        return self.session.execute(
            select(func.count(RatingEvent.id)).where(RatingEvent.season_id == season_id)
        ).scalar_one()


def apply_projection(
    player: Player,
    latest: Optional[RatingEvent],
    matches_played: int,
    last_match_date: Optional[datetime],
    peak: Optional[RatingEvent],
) -> None:
    """
    Copy ledger-derived values onto a player row.

    A player without a latest event is unrated in the season (NULL rating).
    """
    if latest is None:
        player.rating = None
        player.rd = None
        player.volatility = None
    else:
        player.rating = latest.rating
        player.rd = latest.rd
        player.volatility = latest.volatility

    player.matches_played = matches_played
    player.last_match_date = last_match_date
    player.has_played_this_season = matches_played > 0
    player.peak_rating = peak.rating if peak is not None else None
    player.peak_rating_date = peak.occurred_at if peak is not None else None


def _to_row(entry: LedgerEntry, season_id: int, sequence: int) -> RatingEvent:
    return RatingEvent(
        player_id=entry.player_id,
        match_id=entry.match_id,
        season_id=season_id,
        event_type=entry.event_type,
        rating=entry.rating.rating,
        rd=entry.rating.deviation,
        volatility=entry.rating.volatility,
        rating_change=entry.rating_change,
        opponent_id=entry.opponent_id,
        result=entry.result,
        reason=entry.reason,
        sequence=sequence,
        occurred_at=entry.occurred_at,
    )
