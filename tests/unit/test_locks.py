"""Unit tests for scope locks."""

import threading

import pytest

from rankledger.tasks.locks import (
    ScopeLockRegistry,
    advisory_lock_key,
    postgres_advisory_lock,
    season_lock,
    season_lock_name,
    season_locks,
)


def test_advisory_lock_key_is_stable_signed_64_bit():
    key = advisory_lock_key(season_lock_name(7))
    assert key == advisory_lock_key(season_lock_name(7))
    assert key != advisory_lock_key(season_lock_name(8))
    assert -(2 ** 63) <= key < 2 ** 63


def test_registry_single_holder():
    registry = ScopeLockRegistry()
    with registry.hold("a"):
        assert registry.is_held("a")
        with pytest.raises(TimeoutError):
            with registry.hold("a"):
                pass
        # Other keys are independent
        with registry.hold("b"):
            assert registry.is_held("b")
    assert not registry.is_held("a")


def test_registry_released_on_error():
    registry = ScopeLockRegistry()
    with pytest.raises(RuntimeError):
        with registry.hold(1):
            raise RuntimeError("boom")
    assert not registry.is_held(1)


def test_registry_waits_up_to_timeout():
    registry = ScopeLockRegistry()
    acquired = threading.Event()
    release = threading.Event()

    def holder():
        with registry.hold("x"):
            acquired.set()
            release.wait(timeout=5)

    thread = threading.Thread(target=holder)
    thread.start()
    acquired.wait(timeout=5)

    threading.Timer(0.1, release.set).start()
    with registry.hold("x", timeout_seconds=5, poll_interval_seconds=0.01):
        assert registry.is_held("x")

    thread.join(timeout=5)


def test_season_lock_on_sqlite_uses_process_lock(db_session, season):
    with season_lock(db_session, season.id):
        assert season_locks.is_held(season.id)
        with pytest.raises(TimeoutError):
            with season_lock(db_session, season.id):
                pass
    assert not season_locks.is_held(season.id)


class _FakeConnection:
    """Answers pg_try_advisory_lock from a scripted list of results."""

    def __init__(self, answers):
        self.answers = list(answers)
        self.statements = []

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def execute(self, statement, params):
        sql = str(statement)
        self.statements.append((sql, params["key"]))
        value = self.answers.pop(0) if "pg_try_advisory_lock" in sql else None
        return _FakeResult(value)


class _FakeResult:

    def __init__(self, value):
        self.value = value

    def scalar(self):
        return self.value


class _FakeEngine:

    def __init__(self, connection):
        self.connection = connection

    def connect(self):
        return self.connection


class TestPostgresAdvisoryLock:

    def test_acquire_and_release_for_season_scope(self):
        connection = _FakeConnection([True])
        name = season_lock_name(3)

        with postgres_advisory_lock(_FakeEngine(connection), name) as key:
            assert key == advisory_lock_key(name)

        assert [sql for sql, _ in connection.statements] == [
            "SELECT pg_try_advisory_lock(:key)",
            "SELECT pg_advisory_unlock(:key)",
        ]
        assert {k for _, k in connection.statements} == {advisory_lock_key(name)}

    def test_held_elsewhere_fails_without_unlocking(self):
        connection = _FakeConnection([False])

        with pytest.raises(TimeoutError):
            with postgres_advisory_lock(_FakeEngine(connection), season_lock_name(3)):
                pass

        assert len(connection.statements) == 1

    def test_retries_until_free(self):
        connection = _FakeConnection([False, False, True])

        with postgres_advisory_lock(
            _FakeEngine(connection),
            season_lock_name(3),
            timeout_seconds=5,
            poll_interval_seconds=0.01,
        ):
            pass

        tries = [sql for sql, _ in connection.statements if "try" in sql]
        assert len(tries) == 3
