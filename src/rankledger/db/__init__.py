"""
Database module for rankledger.

Provides SQLAlchemy ORM models and session management.

Usage:
    from rankledger.db import get_session, Player, Match

    with get_session() as session:
        players = session.query(Player).all()
"""

from rankledger.db.models import (
    Base,
    Match,
    Player,
    RatingEvent,
    Season,
    SeasonPlayerSnapshot,
)
from rankledger.db.session import SessionLocal, get_engine, get_session, get_session_factory

__all__ = [
    # Base
    "Base",
    # Models
    "Player",
    "Season",
    "SeasonPlayerSnapshot",
    "Match",
    "RatingEvent",
    # Session
    "get_session",
    "get_engine",
    "get_session_factory",
    "SessionLocal",
]
