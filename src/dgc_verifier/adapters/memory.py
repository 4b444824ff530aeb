"""
In-process adapters — revocation set and progress cursor held in memory.

Adapter layer — implements RevocationStore and ProgressRepository without a
database. Used for single-process deployments (STORE=memory) and as the
deterministic backend of the unit and acceptance tests.

Atomicity: writers build the new set aside and swap it in under a lock, so
`contains`/`count` never observe a half-applied chunk.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from datetime import datetime

import structlog

from dgc_verifier.domain.models import NEVER_FETCHED, SyncProgress
from dgc_verifier.domain.result import Result

log = structlog.get_logger()


class InMemoryRevocationStore:
    """
    Thread-safe set of revoked UVCI hashes.

    Implements the RevocationStore port.
    """

    def __init__(self, hashes: Iterable[str] = ()) -> None:
        self._revoked: frozenset[str] = frozenset(hashes)
        self._lock = threading.Lock()

    def apply_snapshot(self, hashes: Iterable[str]) -> Result[int]:
        replacement = frozenset(hashes)
        with self._lock:
            self._revoked = replacement
        log.debug("memory_store.snapshot_applied", inserted=len(replacement))
        return Result.success(len(replacement))

    def apply_delta(self, insertions: Iterable[str], deletions: Iterable[str]) -> Result[int]:
        added = frozenset(insertions)
        removed = frozenset(deletions)
        with self._lock:
            self._revoked = (self._revoked | added) - removed
        log.debug("memory_store.delta_applied", inserted=len(added), deleted=len(removed))
        return Result.success(len(added) + len(removed))

    def contains(self, hashed_uvci: str) -> Result[bool]:
        return Result.success(hashed_uvci in self._revoked)

    def count(self) -> Result[int]:
        return Result.success(len(self._revoked))

    def clear(self) -> Result[int]:
        with self._lock:
            removed = len(self._revoked)
            self._revoked = frozenset()
        return Result.success(removed)


class InMemoryProgressRepository:
    """Implements the ProgressRepository port; state is lost on restart."""

    def __init__(
        self,
        progress: SyncProgress | None = None,
        last_fetch: datetime = NEVER_FETCHED,
    ) -> None:
        self._progress = progress or SyncProgress()
        self._last_fetch = last_fetch
        self._lock = threading.Lock()

    def load(self) -> Result[SyncProgress]:
        return Result.success(self._progress)

    def save(self, progress: SyncProgress) -> Result[SyncProgress]:
        with self._lock:
            self._progress = progress
        return Result.success(progress)

    def last_fetch(self) -> Result[datetime]:
        return Result.success(self._last_fetch)

    def mark_fetched(self, when: datetime) -> Result[datetime]:
        with self._lock:
            self._last_fetch = when
        return Result.success(when)

    def reset(self) -> Result[SyncProgress]:
        with self._lock:
            self._progress = SyncProgress()
            self._last_fetch = NEVER_FETCHED
        return Result.success(self._progress)
