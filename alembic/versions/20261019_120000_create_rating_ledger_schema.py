"""Create players, seasons, matches and the rating ledger

Revision ID: 3e1f0a9c5b27
Revises:
Create Date: 2026-10-19 12:00:00.000000+00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# Revision identifiers, used by Alembic.
revision: str = "3e1f0a9c5b27"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "players",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("handle", sa.String(length=100), nullable=True),
        sa.Column("rating", sa.Float(), nullable=True),
        sa.Column("rd", sa.Float(), nullable=True),
        sa.Column("volatility", sa.Float(), nullable=True),
        sa.Column("matches_played", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_match_date", sa.DateTime(), nullable=True),
        sa.Column("peak_rating", sa.Float(), nullable=True),
        sa.Column("peak_rating_date", sa.DateTime(), nullable=True),
        sa.Column(
            "has_played_this_season",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_players_has_played_this_season", "players", ["has_played_this_season"], unique=False
    )

    op.create_table(
        "seasons",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("start_date", sa.DateTime(), nullable=False),
        sa.Column("end_date", sa.DateTime(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("status IN ('active', 'archived')", name="ck_seasons_status"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_seasons_single_active",
        "seasons",
        ["status"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
        sqlite_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "season_player_snapshots",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("season_id", sa.Integer(), nullable=False),
        sa.Column("player_id", sa.Integer(), nullable=False),
        sa.Column("final_rating", sa.Float(), nullable=False),
        sa.Column("final_rd", sa.Float(), nullable=False),
        sa.Column("final_volatility", sa.Float(), nullable=False),
        sa.Column("matches_played_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("peak_rating", sa.Float(), nullable=True),
        sa.Column("peak_rating_date", sa.DateTime(), nullable=True),
        sa.Column("final_rank", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["season_id"], ["seasons.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["player_id"], ["players.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("season_id", "player_id", name="uq_season_snapshot_player"),
    )
    op.create_index(
        "idx_season_snapshots_season", "season_player_snapshots", ["season_id"], unique=False
    )

    op.create_table(
        "matches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("season_id", sa.Integer(), nullable=False),
        sa.Column("player1_id", sa.Integer(), nullable=False),
        sa.Column("player2_id", sa.Integer(), nullable=False),
        sa.Column("winner_id", sa.Integer(), nullable=True),
        sa.Column("player1_score", sa.Integer(), nullable=True),
        sa.Column("player2_score", sa.Integer(), nullable=True),
        sa.Column("rating_change_p1", sa.Float(), nullable=True),
        sa.Column("rating_change_p2", sa.Float(), nullable=True),
        sa.Column("played_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("player1_id <> player2_id", name="ck_matches_distinct_players"),
        sa.ForeignKeyConstraint(["season_id"], ["seasons.id"]),
        sa.ForeignKeyConstraint(["player1_id"], ["players.id"]),
        sa.ForeignKeyConstraint(["player2_id"], ["players.id"]),
        sa.ForeignKeyConstraint(["winner_id"], ["players.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_matches_season_id", "matches", ["season_id"], unique=False)
    op.create_index("idx_matches_player1", "matches", ["player1_id"], unique=False)
    op.create_index("idx_matches_player2", "matches", ["player2_id"], unique=False)

    op.create_table(
        "rating_events",
        sa.Column("id", sa.BigInteger().with_variant(sa.Integer(), "sqlite"), nullable=False),
        sa.Column("player_id", sa.Integer(), nullable=False),
        sa.Column("match_id", sa.Integer(), nullable=True),
        sa.Column("season_id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(length=30), nullable=False),
        sa.Column("rating", sa.Float(), nullable=False),
        sa.Column("rd", sa.Float(), nullable=False),
        sa.Column("volatility", sa.Float(), nullable=False),
        sa.Column("rating_change", sa.Float(), nullable=True),
        sa.Column("opponent_id", sa.Integer(), nullable=True),
        sa.Column("result", sa.Float(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("sequence", sa.BigInteger(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "event_type IN ('reset', 'match', 'decay', 'manual_adjustment')",
            name="ck_rating_events_type",
        ),
        sa.CheckConstraint(
            "(event_type = 'match' AND match_id IS NOT NULL AND opponent_id IS NOT NULL "
            "AND result IS NOT NULL) OR (event_type <> 'match')",
            name="ck_rating_events_valid_match_event",
        ),
        sa.ForeignKeyConstraint(["player_id"], ["players.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["match_id"], ["matches.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["season_id"], ["seasons.id"]),
        sa.ForeignKeyConstraint(["opponent_id"], ["players.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("season_id", "sequence", name="uq_rating_events_season_sequence"),
        sqlite_autoincrement=True,
    )
    op.create_index(
        "idx_rating_events_season_player",
        "rating_events",
        ["season_id", "player_id", "sequence"],
        unique=False,
    )
    op.create_index("idx_rating_events_match_id", "rating_events", ["match_id"], unique=False)


def downgrade() -> None:
    op.drop_index("idx_rating_events_match_id", table_name="rating_events")
    op.drop_index("idx_rating_events_season_player", table_name="rating_events")
    op.drop_table("rating_events")

    op.drop_index("idx_matches_player2", table_name="matches")
    op.drop_index("idx_matches_player1", table_name="matches")
    op.drop_index("idx_matches_season_id", table_name="matches")
    op.drop_table("matches")

    op.drop_index("idx_season_snapshots_season", table_name="season_player_snapshots")
    op.drop_table("season_player_snapshots")

    op.drop_index("uq_seasons_single_active", table_name="seasons")
    op.drop_table("seasons")

    op.drop_index("idx_players_has_played_this_season", table_name="players")
    op.drop_table("players")
