"""Scope locks that keep at most one recalculation per season in flight."""

from __future__ import annotations

import hashlib
import threading
import time
from contextlib import contextmanager
from typing import Generator, Hashable

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import Session


def advisory_lock_key(name: str) -> int:
    """Return a deterministic signed 64-bit lock key from a scope name."""
    digest = hashlib.sha256(name.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], byteorder="big", signed=True)


def season_lock_name(season_id: int) -> str:
    return f"rankledger:recalculate:season:{season_id}"


@contextmanager
def postgres_advisory_lock(
    engine: Engine,
    scope_name: str,
    *,
    timeout_seconds: float = 0.0,
    poll_interval_seconds: float = 0.25,
) -> Generator[int, None, None]:
    """
    Hold the PostgreSQL advisory lock of one recalculation scope.

    Separate processes recalculating the same season (a script and a
    background worker, say) exclude each other through this lock. The lock
    lives on its own connection, so SAVEPOINT rollbacks in the caller's
    session never release it early.

    Yields:
        The advisory lock key derived from ``scope_name``.

    Raises:
        TimeoutError: if another process keeps the scope past the timeout.
    """
    key = advisory_lock_key(scope_name)
    with engine.connect() as connection:
        if not _try_advisory_lock(connection, key, timeout_seconds, poll_interval_seconds):
            raise TimeoutError(f"Scope {scope_name!r} is locked by another process")
        try:
            yield key
        finally:
            connection.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": key})


def _try_advisory_lock(
    connection: Connection,
    key: int,
    timeout_seconds: float,
    poll_interval_seconds: float,
) -> bool:
    deadline = time.monotonic() + max(timeout_seconds, 0.0)
    while True:
        if connection.execute(text("SELECT pg_try_advisory_lock(:key)"), {"key": key}).scalar():
            return True
        if time.monotonic() >= deadline:
            return False
        time.sleep(poll_interval_seconds)


class ScopeLockRegistry:
    """
    In-process single-flight guard keyed by scope.

    Usage:
        registry = ScopeLockRegistry()
        with registry.hold(season_id):
            ...  # nobody else in this process holds season_id
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._held: set[Hashable] = set()

    def _try_acquire(self, key: Hashable) -> bool:
        with self._guard:
            if key in self._held:
                return False
            self._held.add(key)
            return True

    def is_held(self, key: Hashable) -> bool:
        with self._guard:
            return key in self._held

    @contextmanager
    def hold(
        self,
        key: Hashable,
        timeout_seconds: float = 0.0,
        poll_interval_seconds: float = 0.05,
    ) -> Generator[bool, None, None]:
        """
        Hold `key` for the life of this context.

        Raises:
            TimeoutError: if another holder keeps the key past the timeout.
        """
        deadline = time.monotonic() + max(timeout_seconds, 0.0)
        while not self._try_acquire(key):
            if timeout_seconds <= 0 or time.monotonic() >= deadline:
                raise TimeoutError(f"Scope {key!r} is already locked")
            time.sleep(poll_interval_seconds)

        try:
            yield True
        finally:
            with self._guard:
                self._held.discard(key)


# Shared by every orchestrator in this process
season_locks = ScopeLockRegistry()


@contextmanager
def season_lock(
    session: Session,
    season_id: int,
    timeout_seconds: float = 0.0,
) -> Generator[bool, None, None]:
    """
    Hold the recalculation lock for one season.

    Always takes the in-process lock. On PostgreSQL it also takes an advisory
    lock so separate processes (scripts, workers) exclude each other.

    Raises:
        TimeoutError: if the season is already locked.
    """
    with season_locks.hold(season_id, timeout_seconds=timeout_seconds):
        engine = session.get_bind().engine
        if engine.dialect.name != "postgresql":
            yield True
            return

        with postgres_advisory_lock(
            engine,
            season_lock_name(season_id),
            timeout_seconds=timeout_seconds,
        ):
            yield True
