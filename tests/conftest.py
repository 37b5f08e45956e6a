"""
Pytest configuration and fixtures.

This file is automatically loaded by pytest and provides
shared fixtures for all tests.
"""

from datetime import datetime

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rankledger.db.models import SEASON_ACTIVE, Base, Match, Player, Season


@pytest.fixture(scope="session")
def test_engine():
    """
    Create a test database engine.

    Uses SQLite in-memory for fast tests that don't need
    PostgreSQL-specific features. A single shared connection lets worker
    threads see the test's data, and the pysqlite hooks below make
    SAVEPOINT (session.begin_nested) behave as it does on PostgreSQL.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


@pytest.fixture(scope="session")
def tables(test_engine):
    """
    Create all tables for testing.

    This fixture runs once per test session.
    """
    Base.metadata.create_all(test_engine)
    yield
    Base.metadata.drop_all(test_engine)


@pytest.fixture
def db_connection(test_engine, tables):
    """Connection holding the outer transaction that every test rolls back."""
    connection = test_engine.connect()
    transaction = connection.begin()

    yield connection

    transaction.rollback()
    connection.close()


@pytest.fixture
def session_factory(db_connection):
    """
    Session factory bound to the test connection.

    Sessions join the outer transaction through a SAVEPOINT, so code under
    test may commit or roll back freely without leaking into other tests.
    """
    return sessionmaker(
        bind=db_connection,
        autoflush=False,
        join_transaction_mode="create_savepoint",
    )


@pytest.fixture
def db_session(session_factory):
    """
    Create a database session for a test.

    Each test gets its own session with automatic rollback,
    ensuring tests don't affect each other.
    """
    session = session_factory()

    yield session

    session.close()


@pytest.fixture
def season(db_session):
    """The active season."""
    season = Season(name="Test Season", status=SEASON_ACTIVE, start_date=datetime(2026, 1, 1))
    db_session.add(season)
    db_session.flush()
    return season


@pytest.fixture
def make_player(db_session):
    """Factory for players."""

    def _make(name: str) -> Player:
        player = Player(name=name)
        db_session.add(player)
        db_session.flush()
        return player

    return _make


@pytest.fixture
def players(make_player):
    """Three players, in id order."""
    return [make_player("Alice"), make_player("Bob"), make_player("Carol")]


@pytest.fixture
def make_match(db_session, season):
    """
    Factory for matches in the active season.

    `winner` is a Player or None (scheduled match).
    """

    def _make(player1, player2, winner=None, played_at=None, season_id=None) -> Match:
        match = Match(
            season_id=season_id if season_id is not None else season.id,
            player1_id=player1.id,
            player2_id=player2.id,
            winner_id=winner.id if winner is not None else None,
            player1_score=(1 if winner is player1 else 0) if winner is not None else None,
            player2_score=(1 if winner is player2 else 0) if winner is not None else None,
            played_at=played_at,
        )
        db_session.add(match)
        db_session.flush()
        return match

    return _make
