"""Unit tests for background recalculation."""

import concurrent.futures as cf

import pytest

from rankledger.glicko.replay import ReplayConfig
from rankledger.ledger import RatingLedger
from rankledger.tasks.background import RecalculationTask


@pytest.fixture
def executor():
    pool = cf.ThreadPoolExecutor(max_workers=1)
    yield pool
    pool.shutdown(wait=True)


def test_runs_on_worker_and_commits(db_session, session_factory, season, players, make_match, executor):
    alice, bob, _ = players
    make_match(alice, bob, winner=alice)
    db_session.commit()
    reports = []

    task = RecalculationTask(
        season.id,
        session_factory=session_factory,
        config=ReplayConfig(),
        on_progress=reports.append,
    )
    result = task.start(executor).result(timeout=30)

    assert result.succeeded
    assert result.events_created == 5
    assert task.progress.status == "complete"
    assert reports[-1].status == "complete"
    assert RatingLedger(db_session).count(season.id) == 5


def test_cancelled_task_keeps_nothing(db_session, session_factory, season, players, make_match, executor):
    alice, bob, _ = players
    make_match(alice, bob, winner=alice)
    db_session.commit()

    task = RecalculationTask(season.id, session_factory=session_factory, config=ReplayConfig())
    task.cancel()
    result = task.start(executor).result(timeout=30)

    assert task.cancelled
    assert result.status == "error"
    assert result.error_kind == "ReplayCancelled"
    assert RatingLedger(db_session).count(season.id) == 0


def test_task_cannot_start_twice(session_factory, season, executor):
    task = RecalculationTask(season.id, session_factory=session_factory, config=ReplayConfig())
    task.start(executor).result(timeout=30)

    with pytest.raises(RuntimeError):
        task.start(executor)


def test_default_pool(db_session, session_factory, season, players):
    db_session.commit()
    task = RecalculationTask(season.id, session_factory=session_factory, config=ReplayConfig())

    result = task.start().result(timeout=30)

    assert result.succeeded
    assert result.events_created == len(players)
