"""
ProgressTracker — the in-memory view of the persisted sync cursor.

Owned exclusively by the SyncController. Every transition is written
through the ProgressRepository first and only adopted in memory once the
write succeeded, so the cursor never runs ahead of what survives a restart.
"""

from __future__ import annotations

from datetime import datetime

import structlog

from dgc_verifier.domain.models import NEVER_FETCHED, ServerStatus, SyncProgress
from dgc_verifier.domain.ports import ProgressRepository
from dgc_verifier.domain.result import Result

log = structlog.get_logger()


class ProgressTracker:
    def __init__(self, repository: ProgressRepository) -> None:
        self._repository = repository
        self._progress = (
            repository.load()
            .peek_failure(lambda err: log.warning("progress.load_failed", failure=str(err)))
            .get_or_else(SyncProgress())
        )

    @property
    def progress(self) -> SyncProgress:
        return self._progress

    def start(self, status: ServerStatus) -> Result[SyncProgress]:
        """Target `status.version` from the first chunk, keeping the applied version."""
        return self._persist(SyncProgress.for_download(status, self._progress.current_version))

    def advance(self, chunk_size_in_bytes: int) -> Result[SyncProgress]:
        return self._persist(self._progress.advance(chunk_size_in_bytes))

    def complete(self) -> Result[SyncProgress]:
        return self._persist(self._progress.complete())

    def reset(self) -> Result[SyncProgress]:
        """Forget everything. The in-memory cursor is emptied even if persisting fails."""
        self._progress = SyncProgress()
        return self._repository.reset().peek_failure(
            lambda err: log.error("progress.reset_failed", failure=str(err))
        )

    def last_fetch(self) -> datetime:
        return self._repository.last_fetch().get_or_else(NEVER_FETCHED)

    def mark_fetched(self, when: datetime) -> Result[datetime]:
        return self._repository.mark_fetched(when)

    def _persist(self, progress: SyncProgress) -> Result[SyncProgress]:
        def adopt(saved: SyncProgress) -> None:
            self._progress = saved

        return self._repository.save(progress).peek(adopt)
