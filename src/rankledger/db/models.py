"""
SQLAlchemy ORM models for rankledger.

This module defines all database tables and their relationships.
The schema is built around an event-sourced rating ledger: every change to a
player's rating is a row in rating_events, and the rating columns on players
are only a cached projection of the latest event per player.

Key design decisions:
- Matches are ordered by id; a higher id is always a later match
- A match with winner_id NULL is scheduled, not yet played
- Rating events are append-only and partitioned by season
- rating_events.sequence gives the per-season chronological order
- Exactly one season is active; archived seasons are read-only

Tables:
- players: Player identity plus cached rating projection
- seasons: Active and archived seasons
- matches: Scheduled and completed head-to-head matches
- rating_events: The rating ledger
- season_player_snapshots: Final standings of archived seasons
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# =============================================================================
# Constants
# =============================================================================

SEASON_ACTIVE = "active"
SEASON_ARCHIVED = "archived"

EVENT_RESET = "reset"
EVENT_MATCH = "match"
EVENT_DECAY = "decay"
EVENT_MANUAL_ADJUSTMENT = "manual_adjustment"

EVENT_TYPES = (EVENT_RESET, EVENT_MATCH, EVENT_DECAY, EVENT_MANUAL_ADJUSTMENT)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# =============================================================================
# Player Models
# =============================================================================

class Player(Base):
    """
    Player record.

    Identity and display fields are edited by admins. The rating fields are a
    projection of the rating ledger for the active season and are only ever
    written by the recalculation projection step. NULL ratings mean the player
    has no rating in the active season yet.
    """
    __tablename__ = "players"

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # External handle (e.g. social account), display only
    handle: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Cached projection of the latest rating event in the active season
    rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    rd: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    volatility: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    matches_played: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_match_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    peak_rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    peak_rating_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    has_played_this_season: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index("idx_players_has_played_this_season", "has_played_this_season"),
    )

    def __repr__(self) -> str:
        return f"<Player(id={self.id}, name='{self.name}', rating={self.rating})>"


# =============================================================================
# Season Models
# =============================================================================

class Season(Base):
    """
    A partition of matches and rating events.

    Exactly one season has status 'active'. Archived seasons keep their
    matches and ledger untouched and carry final standings in
    season_player_snapshots.
    """
    __tablename__ = "seasons"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=SEASON_ACTIVE)
    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'archived')",
            name="ck_seasons_status",
        ),
        # At most one active season
        Index(
            "uq_seasons_single_active",
            "status",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.status == SEASON_ACTIVE

    def __repr__(self) -> str:
        return f"<Season(id={self.id}, name='{self.name}', status='{self.status}')>"


class SeasonPlayerSnapshot(Base):
    """Final state of one player at the moment a season was archived."""
    __tablename__ = "season_player_snapshots"

    id: Mapped[int] = mapped_column(primary_key=True)
    season_id: Mapped[int] = mapped_column(
        ForeignKey("seasons.id", ondelete="CASCADE"), nullable=False
    )
    player_id: Mapped[int] = mapped_column(
        ForeignKey("players.id", ondelete="CASCADE"), nullable=False
    )

    final_rating: Mapped[float] = mapped_column(Float, nullable=False)
    final_rd: Mapped[float] = mapped_column(Float, nullable=False)
    final_volatility: Mapped[float] = mapped_column(Float, nullable=False)
    matches_played_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    peak_rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    peak_rating_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    final_rank: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    player: Mapped["Player"] = relationship()

    __table_args__ = (
        UniqueConstraint("season_id", "player_id", name="uq_season_snapshot_player"),
        Index("idx_season_snapshots_season", "season_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<SeasonPlayerSnapshot(season_id={self.season_id}, "
            f"player_id={self.player_id}, rank={self.final_rank})>"
        )


# =============================================================================
# Match Models
# =============================================================================

class Match(Base):
    """
    Head-to-head match.

    The id doubles as the chronological key: matches are replayed in
    ascending id order. winner_id NULL means the match is scheduled.

    rating_change_p1 / rating_change_p2 are legacy denormalized deltas,
    backfilled from the ledger for simpler consumers.
    """
    __tablename__ = "matches"

    id: Mapped[int] = mapped_column(primary_key=True)

    season_id: Mapped[int] = mapped_column(ForeignKey("seasons.id"), nullable=False)
    player1_id: Mapped[int] = mapped_column(ForeignKey("players.id"), nullable=False)
    player2_id: Mapped[int] = mapped_column(ForeignKey("players.id"), nullable=False)
    winner_id: Mapped[Optional[int]] = mapped_column(ForeignKey("players.id"), nullable=True)

    player1_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    player2_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    rating_change_p1: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    rating_change_p2: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # When the match was played (used for decay and history dates)
    played_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    player1: Mapped["Player"] = relationship(foreign_keys=[player1_id])
    player2: Mapped["Player"] = relationship(foreign_keys=[player2_id])
    season: Mapped["Season"] = relationship()

    __table_args__ = (
        CheckConstraint("player1_id <> player2_id", name="ck_matches_distinct_players"),
        Index("idx_matches_season_id", "season_id"),
        Index("idx_matches_player1", "player1_id"),
        Index("idx_matches_player2", "player2_id"),
    )

    @property
    def is_completed(self) -> bool:
        return self.winner_id is not None

    def __repr__(self) -> str:
        return (
            f"<Match(id={self.id}, {self.player1_id} vs {self.player2_id}, "
            f"winner={self.winner_id})>"
        )


# =============================================================================
# Rating Ledger
# =============================================================================

class RatingEvent(Base):
    """
    One rating-affecting occurrence for one player.

    Stores the rating state AFTER the event. Rows are never updated; a full
    recalculation deletes and regenerates a season's rows, and a rollback
    deletes the rows of one match.
    """
    __tablename__ = "rating_events"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)

    player_id: Mapped[int] = mapped_column(
        ForeignKey("players.id", ondelete="CASCADE"), nullable=False
    )
    match_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("matches.id", ondelete="SET NULL"), nullable=True
    )
    season_id: Mapped[int] = mapped_column(ForeignKey("seasons.id"), nullable=False)

    # 'reset', 'match', 'decay', 'manual_adjustment'
    event_type: Mapped[str] = mapped_column(String(30), nullable=False)

    # Rating state after this event
    rating: Mapped[float] = mapped_column(Float, nullable=False)
    rd: Mapped[float] = mapped_column(Float, nullable=False)
    volatility: Mapped[float] = mapped_column(Float, nullable=False)

    rating_change: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    opponent_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("players.id", ondelete="SET NULL"), nullable=True
    )
    # 0 = loss, 0.5 = draw, 1 = win
    result: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Per-season chronological order
    sequence: Mapped[int] = mapped_column(BigInteger, nullable=False)
    occurred_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "event_type IN ('reset', 'match', 'decay', 'manual_adjustment')",
            name="ck_rating_events_type",
        ),
        CheckConstraint(
            "(event_type = 'match' AND match_id IS NOT NULL AND opponent_id IS NOT NULL "
            "AND result IS NOT NULL) OR (event_type <> 'match')",
            name="ck_rating_events_valid_match_event",
        ),
        UniqueConstraint("season_id", "sequence", name="uq_rating_events_season_sequence"),
        Index("idx_rating_events_season_player", "season_id", "player_id", "sequence"),
        Index("idx_rating_events_match_id", "match_id"),
        # Never reuse ids of deleted generations
        {"sqlite_autoincrement": True},
    )

    def __repr__(self) -> str:
        return (
            f"<RatingEvent(player_id={self.player_id}, type='{self.event_type}', "
            f"rating={self.rating:.1f}, seq={self.sequence})>"
        )
