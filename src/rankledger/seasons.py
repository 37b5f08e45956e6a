"""
Season management.

Exactly one season is active at a time. Archiving the active season freezes
its matches and ledger, stores every rated player's final standing as a
SeasonPlayerSnapshot, opens a new active season and clears the players'
cached ratings (NULL = not rated in the new season yet). An archived season
can be made active again; its snapshots then become the players' ratings.
"""

from __future__ import annotations

import logging
from contextlib import ExitStack
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from rankledger.db.models import (
    EVENT_MATCH,
    SEASON_ACTIVE,
    SEASON_ARCHIVED,
    Match,
    Player,
    RatingEvent,
    Season,
    SeasonPlayerSnapshot,
)
from rankledger.errors import ScopeStateError
from rankledger.tasks.locks import season_lock

logger = logging.getLogger(__name__)

DEFAULT_SEASON_NAME = "Active Season"


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    player_id: int
    name: str
    rating: float
    rd: float
    matches_played: int
    peak_rating: Optional[float] = None


@dataclass(frozen=True)
class SeasonStats:
    season: Season
    match_count: int
    player_count: int


def get_active_season(session: Session) -> Optional[Season]:
    return session.scalars(select(Season).where(Season.status == SEASON_ACTIVE)).first()


def ensure_active_season(session: Session, name: str = DEFAULT_SEASON_NAME) -> Season:
    """Return the active season, creating one if none exists."""
    season = get_active_season(session)
    if season is not None:
        return season

    season = Season(name=name, status=SEASON_ACTIVE, start_date=datetime.utcnow())
    session.add(season)
    session.flush()
    logger.info("Created active season %s (%s)", season.id, season.name)
    return season


def list_seasons(session: Session, status: Optional[str] = None) -> list[Season]:
    """Return seasons, newest first, optionally filtered by status."""
    stmt = select(Season).order_by(Season.start_date.desc(), Season.id.desc())
    if status is not None:
        stmt = stmt.where(Season.status == status)
    return list(session.scalars(stmt))


def archive_active_season(
    session: Session,
    new_season_name: str = DEFAULT_SEASON_NAME,
    lock_timeout: float = 0.0,
) -> Season:
    """
    Archive the active season and open a new one.

    Steps:
    1. Snapshot every rated player, ranked by rating (highest first)
    2. Mark the season archived with an end date
    3. Create the new active season
    4. Clear the players' cached rating projection

    Returns:
        The newly created active season

    Raises:
        ScopeStateError: If there is no active season, or it is being
            recalculated right now
    """
    current = get_active_season(session)
    if current is None:
        raise ScopeStateError("No active season to archive")

    with ExitStack() as stack:
        _lock_seasons(stack, session, [current.id], lock_timeout)

        with session.begin_nested():
            _archive(session, current)

            new_season = Season(
                name=new_season_name,
                status=SEASON_ACTIVE,
                start_date=datetime.utcnow(),
            )
            session.add(new_season)

            _clear_projection(session)
            session.flush()

    logger.info(
        "Archived season %s (%s); new active season %s (%s)",
        current.id,
        current.name,
        new_season.id,
        new_season.name,
    )
    return new_season


def activate_archived_season(
    session: Session,
    season_id: int,
    lock_timeout: float = 0.0,
) -> Season:
    """
    Make an archived season the active one again.

    Steps:
    1. Archive the current active season (with snapshots), if there is one
    2. Restore the players' cached ratings from the target season's snapshots
    3. Mark the target season active and clear its end date

    The target's matches and ledger were never touched while it was archived,
    so they are the active season's history again as they stand.

    Returns:
        The reactivated season

    Raises:
        ScopeStateError: If the season does not exist, is already active, or
            either season is being recalculated right now
    """
    target = session.get(Season, season_id)
    if target is None:
        raise ScopeStateError(f"Season {season_id} does not exist")
    if target.is_active:
        raise ScopeStateError(f"Season {season_id} is already active")

    current = get_active_season(session)
    locked = sorted({season_id} | ({current.id} if current is not None else set()))

    with ExitStack() as stack:
        _lock_seasons(stack, session, locked, lock_timeout)

        with session.begin_nested():
            if current is not None:
                _archive(session, current)

            _clear_projection(session)
            restored = _restore_projection(session, target)

            target.status = SEASON_ACTIVE
            target.end_date = None
            session.flush()

    logger.info(
        "Reactivated season %s (%s) with %d restored players%s",
        target.id,
        target.name,
        restored,
        f"; archived season {current.id}" if current is not None else "",
    )
    return target


def _lock_seasons(
    stack: ExitStack,
    session: Session,
    season_ids: list[int],
    timeout_seconds: float,
) -> None:
    for season_id in season_ids:
        try:
            stack.enter_context(season_lock(session, season_id, timeout_seconds=timeout_seconds))
        except TimeoutError as exc:
            raise ScopeStateError(
                f"Season {season_id} is being recalculated and cannot change status"
            ) from exc


def _archive(session: Session, season: Season) -> None:
    """Snapshot the rated players of the active season and mark it archived."""
    # A reactivated season is archived again with fresh standings
    session.execute(
        delete(SeasonPlayerSnapshot).where(SeasonPlayerSnapshot.season_id == season.id)
    )

    rated = list(
        session.scalars(
            select(Player)
            .where(Player.rating.is_not(None))
            .order_by(Player.rating.desc(), Player.id)
        )
    )
    for rank, player in enumerate(rated, start=1):
        session.add(
            SeasonPlayerSnapshot(
                season_id=season.id,
                player_id=player.id,
                final_rating=player.rating,
                final_rd=player.rd,
                final_volatility=player.volatility,
                matches_played_count=player.matches_played or 0,
                peak_rating=player.peak_rating,
                peak_rating_date=player.peak_rating_date,
                final_rank=rank,
            )
        )
    logger.info("Season %s: stored %d player snapshots", season.id, len(rated))

    season.status = SEASON_ARCHIVED
    season.end_date = datetime.utcnow()
    # The single-active index needs the old row archived before another is activated
    session.flush()


def _clear_projection(session: Session) -> None:
    for player in session.scalars(select(Player)):
        player.rating = None
        player.rd = None
        player.volatility = None
        player.matches_played = 0
        player.last_match_date = None
        player.peak_rating = None
        player.peak_rating_date = None
        player.has_played_this_season = False


def _restore_projection(session: Session, season: Season) -> int:
    """Copy a season's snapshots back onto the player rows. Returns the count."""
    last_played = dict(
        session.execute(
            select(RatingEvent.player_id, func.max(RatingEvent.occurred_at))
            .where(
                RatingEvent.season_id == season.id,
                RatingEvent.event_type == EVENT_MATCH,
            )
            .group_by(RatingEvent.player_id)
        ).all()
    )

    snapshots = list(
        session.scalars(
            select(SeasonPlayerSnapshot).where(SeasonPlayerSnapshot.season_id == season.id)
        )
    )
    for snapshot in snapshots:
        player = snapshot.player
        player.rating = snapshot.final_rating
        player.rd = snapshot.final_rd
        player.volatility = snapshot.final_volatility
        player.matches_played = snapshot.matches_played_count
        player.last_match_date = last_played.get(snapshot.player_id)
        player.peak_rating = snapshot.peak_rating
        player.peak_rating_date = snapshot.peak_rating_date
        player.has_played_this_season = snapshot.matches_played_count > 0
    return len(snapshots)


def season_leaderboard(session: Session, season_id: int) -> list[LeaderboardEntry]:
    """
    Return the standings of a season.

    Active season: rated players by current rating. Archived season: the
    snapshots taken at archive time, by final rank.
    """
    season = session.get(Season, season_id)
    if season is None:
        raise ScopeStateError(f"Season {season_id} does not exist")

    if season.is_active:
        players = session.scalars(
            select(Player)
            .where(Player.rating.is_not(None))
            .order_by(Player.rating.desc(), Player.id)
        )
        return [
            LeaderboardEntry(
                rank=rank,
                player_id=player.id,
                name=player.name,
                rating=player.rating,
                rd=player.rd,
                matches_played=player.matches_played,
                peak_rating=player.peak_rating,
            )
            for rank, player in enumerate(players, start=1)
        ]

    snapshots = session.scalars(
        select(SeasonPlayerSnapshot)
        .where(SeasonPlayerSnapshot.season_id == season_id)
        .order_by(SeasonPlayerSnapshot.final_rank)
    )
    return [
        LeaderboardEntry(
            rank=snapshot.final_rank,
            player_id=snapshot.player_id,
            name=snapshot.player.name,
            rating=snapshot.final_rating,
            rd=snapshot.final_rd,
            matches_played=snapshot.matches_played_count,
            peak_rating=snapshot.peak_rating,
        )
        for snapshot in snapshots
    ]


def season_stats(session: Session, season_id: int) -> SeasonStats:
    """Match count and rated-player count of one season."""
    season = session.get(Season, season_id)
    if season is None:
        raise ScopeStateError(f"Season {season_id} does not exist")

    match_count = session.execute(
        select(func.count(Match.id)).where(Match.season_id == season_id)
    ).scalar_one()

    if season.is_active:
        player_count = session.execute(
            select(func.count(Player.id)).where(Player.rating.is_not(None))
        ).scalar_one()
    else:
        player_count = session.execute(
            select(func.count(SeasonPlayerSnapshot.id)).where(
                SeasonPlayerSnapshot.season_id == season_id
            )
        ).scalar_one()

    return SeasonStats(season=season, match_count=match_count, player_count=player_count)


def player_season_history(session: Session, player_id: int) -> list[SeasonPlayerSnapshot]:
    """A player's final standings across archived seasons, oldest season first."""
    return list(
        session.scalars(
            select(SeasonPlayerSnapshot)
            .join(Season, Season.id == SeasonPlayerSnapshot.season_id)
            .where(SeasonPlayerSnapshot.player_id == player_id)
            .order_by(Season.start_date, Season.id)
        )
    )
