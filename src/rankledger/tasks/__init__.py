"""
Locking and background execution for recalculation runs.

RecalculationTask lives in rankledger.tasks.background; it is not re-exported
here because the orchestrator itself depends on the lock helpers below.
"""

from rankledger.tasks.locks import (
    ScopeLockRegistry,
    advisory_lock_key,
    postgres_advisory_lock,
    season_lock,
)

__all__ = [
    "ScopeLockRegistry",
    "advisory_lock_key",
    "postgres_advisory_lock",
    "season_lock",
]
