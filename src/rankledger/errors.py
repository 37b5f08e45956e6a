"""Exception types raised by the rating engine, ledger and orchestration layers."""

from __future__ import annotations


class RankLedgerError(Exception):
    """Base class for all rankledger errors."""


class ConvergenceError(RankLedgerError):
    """The Glicko-2 volatility solver failed to bracket or converge."""


class MissingParticipantError(RankLedgerError):
    """A match references a player that is not part of the replayed player set."""

    def __init__(self, match_id: int, player_ids: list[int]):
        self.match_id = match_id
        self.player_ids = player_ids
        super().__init__(
            f"Match {match_id} references unknown player(s): {', '.join(map(str, player_ids))}"
        )


class ReplayCancelled(RankLedgerError):
    """A replay was abandoned because its cancel event was set."""


class ScopeStateError(RankLedgerError):
    """A season cannot be recalculated right now (in flight, archived or unknown)."""


class RollbackIneligibleError(RankLedgerError):
    """A match cannot be rolled back because later results depend on it."""

    def __init__(self, match_id: int, reason: str, blocking: list | None = None):
        self.match_id = match_id
        self.reason = reason
        self.blocking = blocking or []
        super().__init__(f"Match {match_id}: {reason}")


class PersistenceError(RankLedgerError):
    """A storage write failed part-way through a step."""

    def __init__(
        self,
        message: str,
        *,
        step: str,
        batch_index: int | None = None,
        entries_written: int = 0,
    ):
        self.step = step
        self.batch_index = batch_index
        self.entries_written = entries_written
        detail = f"step={step}"
        if batch_index is not None:
            detail += f" batch={batch_index}"
        detail += f" written={entries_written}"
        super().__init__(f"{message} ({detail})")
