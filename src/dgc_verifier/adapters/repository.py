"""
PostgreSQL repository adapters — revoked UVCI set and sync progress.

Adapter layer — implements RevocationStore and ProgressRepository using
psycopg (v3) with parameterized queries.

Every mutation runs in ONE transaction:
  1. BEGIN
  2. DELETE / INSERT the chunk's hashes
  3. COMMIT (or automatic ROLLBACK on failure → previous set preserved)

Readers use separate connections and, under PostgreSQL MVCC, only ever see
committed chunks.

Tables:
  revoked_uvci  (hashed_uvci TEXT PRIMARY KEY)
  drl_progress  (single row, id = 1)

No ORM — raw parameterized SQL for maximum control and transparency.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any

import psycopg
import structlog
from psycopg.rows import dict_row

from dgc_verifier.domain.models import NEVER_FETCHED, SyncProgress
from dgc_verifier.domain.result import ErrorCode, Result

log = structlog.get_logger()

DDL = """
CREATE TABLE IF NOT EXISTS revoked_uvci (
    hashed_uvci                 TEXT PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS drl_progress (
    id                          SMALLINT PRIMARY KEY CHECK (id = 1),
    current_version             INTEGER NOT NULL DEFAULT 0,
    requested_version           INTEGER NOT NULL DEFAULT 0,
    current_chunk               INTEGER,
    total_chunk                 INTEGER,
    size_single_chunk_in_bytes  BIGINT,
    total_size_in_bytes         BIGINT,
    remaining_bytes             BIGINT,
    last_fetch                  TIMESTAMP WITH TIME ZONE NOT NULL
);
"""

_INSERT_HASH = """
INSERT INTO revoked_uvci (hashed_uvci) VALUES (%s)
ON CONFLICT (hashed_uvci) DO NOTHING
"""

_DELETE_HASHES = "DELETE FROM revoked_uvci WHERE hashed_uvci = ANY(%s)"

_UPSERT_PROGRESS = """
INSERT INTO drl_progress (
    id, current_version, requested_version, current_chunk, total_chunk,
    size_single_chunk_in_bytes, total_size_in_bytes, remaining_bytes, last_fetch
) VALUES (1, %s, %s, %s, %s, %s, %s, %s, %s)
ON CONFLICT (id) DO UPDATE SET
    current_version = EXCLUDED.current_version,
    requested_version = EXCLUDED.requested_version,
    current_chunk = EXCLUDED.current_chunk,
    total_chunk = EXCLUDED.total_chunk,
    size_single_chunk_in_bytes = EXCLUDED.size_single_chunk_in_bytes,
    total_size_in_bytes = EXCLUDED.total_size_in_bytes,
    remaining_bytes = EXCLUDED.remaining_bytes
"""

_SELECT_PROGRESS = """
SELECT current_version, requested_version, current_chunk, total_chunk,
       size_single_chunk_in_bytes, total_size_in_bytes, remaining_bytes, last_fetch
FROM drl_progress WHERE id = 1
"""


def create_schema(dsn: str) -> None:
    """Create the tables if they do not exist yet."""
    with psycopg.connect(dsn) as conn:
        conn.execute(DDL)
        conn.commit()


class PsycopgRevocationStore:
    """
    Persist revoked UVCI hashes to PostgreSQL, one transaction per chunk.

    Implements the RevocationStore port.
    All exceptions are caught at this adapter boundary via Result.from_computation().
    """

    def __init__(self, dsn: str) -> None:
        self._dsn = dsn

    def apply_snapshot(self, hashes: Iterable[str]) -> Result[int]:
        """Atomically replace the whole set. On failure the previous set remains."""
        return Result.from_computation(
            lambda: self._transactional_snapshot(list(hashes)),
            ErrorCode.DATABASE_ERROR,
            "Failed to apply revocation snapshot",
        )

    def apply_delta(self, insertions: Iterable[str], deletions: Iterable[str]) -> Result[int]:
        """Atomically add insertions and remove deletions."""
        return Result.from_computation(
            lambda: self._transactional_delta(list(insertions), list(deletions)),
            ErrorCode.DATABASE_ERROR,
            "Failed to apply revocation delta",
        )

    def contains(self, hashed_uvci: str) -> Result[bool]:
        return Result.from_computation(
            lambda: self._exists(hashed_uvci),
            ErrorCode.DATABASE_ERROR,
            "Failed to look up revoked UVCI",
        )

    def count(self) -> Result[int]:
        return Result.from_computation(
            self._count,
            ErrorCode.DATABASE_ERROR,
            "Failed to count revoked UVCIs",
        )

    def clear(self) -> Result[int]:
        return Result.from_computation(
            self._delete_all,
            ErrorCode.DATABASE_ERROR,
            "Failed to clear revoked UVCIs",
        )

    def _transactional_snapshot(self, hashes: list[str]) -> int:
        """DELETE all → INSERT all in a single ACID transaction."""
        with psycopg.connect(self._dsn) as conn, conn.transaction(), conn.cursor() as cur:
            cur.execute("DELETE FROM revoked_uvci")
            self._insert(cur, hashes)
            log.info("repository.snapshot_applied", inserted=len(hashes))
            return len(hashes)

    def _transactional_delta(self, insertions: list[str], deletions: list[str]) -> int:
        with psycopg.connect(self._dsn) as conn, conn.transaction(), conn.cursor() as cur:
            self._insert(cur, insertions)
            if deletions:
                cur.execute(_DELETE_HASHES, (deletions,))
            log.info(
                "repository.delta_applied",
                inserted=len(insertions),
                deleted=len(deletions),
            )
            return len(insertions) + len(deletions)

    def _insert(self, cur: psycopg.Cursor[Any], hashes: list[str]) -> None:
        if hashes:
            cur.executemany(_INSERT_HASH, [(h,) for h in hashes])

    def _exists(self, hashed_uvci: str) -> bool:
        with psycopg.connect(self._dsn) as conn:
            row = conn.execute(
                "SELECT EXISTS (SELECT 1 FROM revoked_uvci WHERE hashed_uvci = %s)",
                (hashed_uvci,),
            ).fetchone()
            return bool(row and row[0])

    def _count(self) -> int:
        with psycopg.connect(self._dsn) as conn:
            row = conn.execute("SELECT count(*) FROM revoked_uvci").fetchone()
            return int(row[0]) if row else 0

    def _delete_all(self) -> int:
        with psycopg.connect(self._dsn) as conn, conn.transaction(), conn.cursor() as cur:
            cur.execute("DELETE FROM revoked_uvci")
            removed = cur.rowcount
            log.info("repository.cleared", removed=removed)
            return removed


class PsycopgProgressRepository:
    """
    Persist the synchronization cursor as a single row.

    Implements the ProgressRepository port. A missing row reads as empty
    progress that was never fetched.
    """

    def __init__(self, dsn: str) -> None:
        self._dsn = dsn

    def load(self) -> Result[SyncProgress]:
        return Result.from_computation(
            lambda: self._load_row()[0],
            ErrorCode.DATABASE_ERROR,
            "Failed to load sync progress",
        )

    def save(self, progress: SyncProgress) -> Result[SyncProgress]:
        return Result.from_computation(
            lambda: self._upsert(progress),
            ErrorCode.DATABASE_ERROR,
            "Failed to persist sync progress",
        )

    def last_fetch(self) -> Result[datetime]:
        return Result.from_computation(
            lambda: self._load_row()[1],
            ErrorCode.DATABASE_ERROR,
            "Failed to load last fetch timestamp",
        )

    def mark_fetched(self, when: datetime) -> Result[datetime]:
        return Result.from_computation(
            lambda: self._update_last_fetch(when),
            ErrorCode.DATABASE_ERROR,
            "Failed to persist last fetch timestamp",
        )

    def reset(self) -> Result[SyncProgress]:
        return Result.from_computation(
            self._reset,
            ErrorCode.DATABASE_ERROR,
            "Failed to reset sync progress",
        )

    def _load_row(self) -> tuple[SyncProgress, datetime]:
        with psycopg.connect(self._dsn, row_factory=dict_row) as conn:
            row = conn.execute(_SELECT_PROGRESS).fetchone()
        if row is None:
            return SyncProgress(), NEVER_FETCHED
        last_fetch = row.pop("last_fetch")
        return SyncProgress(**row), last_fetch

    def _upsert(self, progress: SyncProgress, conn: psycopg.Connection[Any] | None = None) -> SyncProgress:
        params = (
            progress.current_version,
            progress.requested_version,
            progress.current_chunk,
            progress.total_chunk,
            progress.size_single_chunk_in_bytes,
            progress.total_size_in_bytes,
            progress.remaining_bytes,
            NEVER_FETCHED,
        )
        if conn is not None:
            conn.execute(_UPSERT_PROGRESS, params)
            return progress
        with psycopg.connect(self._dsn) as own, own.transaction():
            own.execute(_UPSERT_PROGRESS, params)
        log.debug("repository.progress_saved", progress=progress.describe())
        return progress

    def _update_last_fetch(self, when: datetime) -> datetime:
        with psycopg.connect(self._dsn) as conn, conn.transaction():
            self._upsert_if_missing(conn)
            conn.execute("UPDATE drl_progress SET last_fetch = %s WHERE id = 1", (when,))
        return when

    def _upsert_if_missing(self, conn: psycopg.Connection[Any]) -> None:
        conn.execute(
            "INSERT INTO drl_progress (id, last_fetch) VALUES (1, %s) ON CONFLICT (id) DO NOTHING",
            (NEVER_FETCHED,),
        )

    def _reset(self) -> SyncProgress:
        empty = SyncProgress()
        with psycopg.connect(self._dsn) as conn, conn.transaction():
            self._upsert(empty, conn)
            conn.execute("UPDATE drl_progress SET last_fetch = %s WHERE id = 1", (NEVER_FETCHED,))
        log.info("repository.progress_reset")
        return empty
