"""
Background recalculation.

Runs a season recalculation on a worker thread so interactive callers are
not blocked. The worker opens its own session, relays progress, and commits
only when the run completes; a failed or cancelled run is rolled back.

Usage:
    task = RecalculationTask(season_id=1)
    future = task.start()
    ...
    task.cancel()             # optional, stops at the next match boundary
    result = future.result()
"""

from __future__ import annotations

import concurrent.futures as cf
import logging
import threading
from typing import Callable, Optional

from sqlalchemy.orm import Session

from rankledger.glicko.replay import ProgressCallback, ReplayConfig, ReplayProgress
from rankledger.recalculation import (
    DEFAULT_REASON,
    RecalculationOrchestrator,
    RecalculationResult,
)

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


class RecalculationTask:
    """One cancellable recalculation run on a worker thread."""

    def __init__(
        self,
        season_id: int,
        reason: str = DEFAULT_REASON,
        session_factory: Optional[SessionFactory] = None,
        config: Optional[ReplayConfig] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        if session_factory is None:
            from rankledger.db.session import get_session_factory
            session_factory = get_session_factory()

        self.season_id = season_id
        self.reason = reason
        self.session_factory = session_factory
        self.config = config
        self.on_progress = on_progress
        self.progress: Optional[ReplayProgress] = None
        self._cancel_event = threading.Event()
        self._future: Optional[cf.Future] = None

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def future(self) -> Optional[cf.Future]:
        return self._future

    def start(self, executor: Optional[cf.Executor] = None) -> cf.Future:
        """
        Submit the run.

        Without an executor, a single-thread pool is created for this run and
        shut down once the run finishes.

        Returns:
            Future resolving to a RecalculationResult
        """
        if self._future is not None:
            raise RuntimeError("Recalculation task already started")

        if executor is not None:
            self._future = executor.submit(self.run)
            return self._future

        pool = cf.ThreadPoolExecutor(max_workers=1, thread_name_prefix="rankledger-recalc")
        self._future = pool.submit(self.run)
        pool.shutdown(wait=False)
        return self._future

    def cancel(self) -> None:
        """Ask the run to stop; nothing from the run is kept."""
        logger.info("Cancellation requested for season %s recalculation", self.season_id)
        self._cancel_event.set()

    def run(self) -> RecalculationResult:
        """Execute the recalculation on the calling thread."""
        session = self.session_factory()
        try:
            orchestrator = RecalculationOrchestrator(session, config=self.config)
            result = orchestrator.recalculate_scope(
                self.season_id,
                reason=self.reason,
                on_progress=self._relay,
                cancel_event=self._cancel_event,
            )
            if result.succeeded:
                session.commit()
            else:
                session.rollback()
            return result
        except Exception:
            session.rollback()
            logger.exception("Background recalculation of season %s crashed", self.season_id)
            raise
        finally:
            session.close()

    def _relay(self, progress: ReplayProgress) -> None:
        self.progress = progress
        if self.on_progress is not None:
            self.on_progress(progress)
