"""Unit tests for match rollback."""

from datetime import datetime

import pytest
from sqlalchemy import select

from rankledger.db.models import SEASON_ARCHIVED, RatingEvent, Season
from rankledger.errors import RollbackIneligibleError, ScopeStateError
from rankledger.glicko.replay import ReplayConfig
from rankledger.ledger import RatingLedger
from rankledger.recalculation import RecalculationOrchestrator
from rankledger.rollback import RollbackGuard
from rankledger.tasks.locks import season_locks


@pytest.fixture
def guard(db_session):
    return RollbackGuard(db_session, RecalculationOrchestrator(db_session, config=ReplayConfig()))


def _ratings(session, players):
    for player in players:
        session.refresh(player)
    return [(p.rating, p.rd, p.volatility, p.matches_played) for p in players]


class TestCanRollback:

    def test_latest_match_is_eligible(self, guard, players, make_match):
        alice, bob, _ = players
        match = make_match(alice, bob, winner=alice)

        check = guard.can_rollback(match.id)

        assert check.allowed
        assert check.reason is None
        assert check.blocking == []

    def test_missing_match(self, guard):
        check = guard.can_rollback(424242)
        assert not check.allowed
        assert check.reason == "Match not found"

    def test_scheduled_match(self, guard, players, make_match):
        alice, bob, _ = players
        match = make_match(alice, bob)

        check = guard.can_rollback(match.id)

        assert not check.allowed
        assert check.reason == "Cannot rollback upcoming matches"

    def test_both_players_blocked(self, guard, players, make_match):
        alice, bob, carol = players
        match = make_match(alice, bob, winner=alice)
        later_a = make_match(alice, carol, winner=carol)
        later_b = make_match(bob, carol, winner=bob)

        check = guard.can_rollback(match.id)

        assert not check.allowed
        assert check.reason == "Cannot rollback: both players have played matches afterwards"
        assert [(b.role, b.player_id, b.later_match_id) for b in check.blocking] == [
            ("player1", alice.id, later_a.id),
            ("player2", bob.id, later_b.id),
        ]

    def test_player1_blocked(self, guard, players, make_match):
        alice, bob, carol = players
        match = make_match(alice, bob, winner=alice)
        make_match(carol, alice, winner=carol)

        check = guard.can_rollback(match.id)

        assert check.reason == "Cannot rollback: player 1 has played matches afterwards"
        assert [b.role for b in check.blocking] == ["player1"]

    def test_player2_blocked(self, guard, players, make_match):
        alice, bob, carol = players
        match = make_match(alice, bob, winner=alice)
        make_match(bob, carol, winner=carol)

        check = guard.can_rollback(match.id)

        assert check.reason == "Cannot rollback: player 2 has played matches afterwards"
        assert "player2" in str(check.blocking[0])

    def test_later_scheduled_match_does_not_block(self, guard, players, make_match):
        alice, bob, carol = players
        match = make_match(alice, bob, winner=alice)
        make_match(alice, carol)

        assert guard.can_rollback(match.id).allowed

    def test_archived_season(self, guard, db_session, players, make_match):
        alice, bob, _ = players
        archived = Season(name="Old", status=SEASON_ARCHIVED, start_date=datetime(2025, 1, 1))
        db_session.add(archived)
        db_session.flush()
        match = make_match(alice, bob, winner=alice, season_id=archived.id)

        check = guard.can_rollback(match.id)

        assert not check.allowed
        assert "archived" in check.reason


class TestRollback:

    def test_rollback_restores_previous_state(self, guard, db_session, season, players, make_match):
        """Recording a match and rolling it back leaves every rating as before."""
        alice, bob, carol = players
        make_match(alice, bob, winner=alice)
        make_match(bob, carol, winner=bob)
        guard.orchestrator.recalculate_scope(season.id)
        before = _ratings(db_session, players)
        events_before = RatingLedger(db_session).count(season.id)

        match = make_match(carol, alice, winner=carol)
        guard.orchestrator.recalculate_scope(season.id)
        assert _ratings(db_session, players) != before

        result = guard.rollback(match.id)

        assert result.succeeded
        assert _ratings(db_session, players) == before
        assert RatingLedger(db_session).count(season.id) == events_before
        db_session.refresh(match)
        assert match.winner_id is None
        assert match.player1_score is None and match.player2_score is None
        assert match.rating_change_p1 is None and match.rating_change_p2 is None

    def test_rollback_of_only_match_restores_defaults(
        self, guard, db_session, season, make_player, make_match
    ):
        a = make_player("A")
        b = make_player("B")
        match = make_match(a, b, winner=a)
        guard.orchestrator.recalculate_scope(season.id)
        assert _ratings(db_session, [a, b]) != [(1500.0, 350.0, 0.06, 0)] * 2

        guard.rollback(match.id)
        result = guard.orchestrator.recalculate_scope(season.id)

        assert result.succeeded
        assert _ratings(db_session, [a, b]) == [(1500.0, 350.0, 0.06, 0)] * 2
        kinds = {e.event_type for e in RatingLedger(db_session).history_for_player(a.id, season.id)}
        assert kinds == {"reset"}

    def test_rollback_reason_on_reset_events(self, guard, db_session, season, players, make_match):
        alice, bob, _ = players
        match = make_match(alice, bob, winner=alice)

        guard.rollback(match.id)

        reasons = set(
            db_session.scalars(
                select(RatingEvent.reason).where(
                    RatingEvent.season_id == season.id, RatingEvent.event_type == "reset"
                )
            )
        )
        assert reasons == {f"Rollback of match {match.id}"}

    def test_ineligible_rollback_raises_with_blocking(self, guard, db_session, players, make_match):
        alice, bob, carol = players
        match = make_match(alice, bob, winner=alice)
        make_match(alice, carol, winner=alice)

        with pytest.raises(RollbackIneligibleError) as exc_info:
            guard.rollback(match.id)

        assert [b.role for b in exc_info.value.blocking] == ["player1"]
        db_session.refresh(match)
        assert match.winner_id == alice.id

    def test_rollback_while_locked(self, guard, season, players, make_match):
        alice, bob, _ = players
        match = make_match(alice, bob, winner=alice)

        with season_locks.hold(season.id):
            with pytest.raises(ScopeStateError):
                guard.rollback(match.id)

    def test_failed_recalculation_undoes_rollback(
        self, guard, db_session, season, players, make_match, monkeypatch
    ):
        alice, bob, _ = players
        match = make_match(alice, bob, winner=alice)
        guard.orchestrator.recalculate_scope(season.id)
        events_before = RatingLedger(db_session).count(season.id)

        def broken_project(season_id):
            raise ScopeStateError("projection unavailable")

        monkeypatch.setattr(guard.orchestrator, "_project", broken_project)

        with pytest.raises(ScopeStateError):
            guard.rollback(match.id)

        db_session.refresh(match)
        assert match.winner_id == alice.id
        assert RatingLedger(db_session).count(season.id) == events_before
        assert not season_locks.is_held(season.id)
