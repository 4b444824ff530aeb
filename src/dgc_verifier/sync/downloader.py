"""
ChunkDownloader — fetch, verify and apply one DRL chunk.

    fetch_chunk(current_version, current_chunk)
      → ensure chunk.version == requested_version     (CONSISTENCY_ERROR)
      → ensure chunk.chunk_index == current_chunk     (CONSISTENCY_ERROR)
      → store.apply_snapshot / store.apply_delta      (one transaction)
      → tracker.advance(chunk size)                   (persisted cursor)

The cursor advances only after the store committed the chunk. A crash in
between leaves the cursor on the same chunk, which is simply requested again
on resume: snapshots are idempotent and re-inserting delta hashes is a no-op.
"""

from __future__ import annotations

import structlog

from dgc_verifier.domain.models import FIRST_CHUNK, RevocationChunk, SyncProgress
from dgc_verifier.domain.ports import RevocationGateway, RevocationStore
from dgc_verifier.domain.result import ErrorCode, Result
from dgc_verifier.sync.progress import ProgressTracker

log = structlog.get_logger()


class ChunkDownloader:
    def __init__(
        self,
        gateway: RevocationGateway,
        store: RevocationStore,
        tracker: ProgressTracker,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._tracker = tracker

    def download_next(self) -> Result[SyncProgress]:
        """Download and apply the chunk the cursor points at; returns the advanced cursor."""
        progress = self._tracker.progress
        chunk_index = progress.current_chunk or FIRST_CHUNK
        return (
            self._gateway.fetch_chunk(progress.current_version, chunk_index)
            .ensure(
                lambda chunk: chunk.version == progress.requested_version,
                ErrorCode.CONSISTENCY_ERROR,
                f"chunk version does not match requested version {progress.requested_version}",
            )
            .ensure(
                lambda chunk: chunk.chunk_index == chunk_index,
                ErrorCode.CONSISTENCY_ERROR,
                f"received a different chunk than requested ({chunk_index})",
            )
            .flat_map(self._apply)
            .flat_map(self._tracker.advance)
        )

    def _apply(self, chunk: RevocationChunk) -> Result[int]:
        """Mutate the store; the chunk's byte size is what the cursor consumes."""
        if chunk.is_snapshot and chunk.chunk_index == FIRST_CHUNK:
            applied = self._store.apply_snapshot(chunk.insertions)
        elif chunk.is_snapshot:
            # later chunks of a snapshot extend the set the first chunk replaced
            applied = self._store.apply_delta(chunk.insertions, ())
        else:
            applied = self._store.apply_delta(chunk.insertions, chunk.deletions)
        return applied.peek(
            lambda touched: log.info(
                "drl.chunk_applied",
                version=chunk.version,
                chunk=chunk.chunk_index,
                snapshot=chunk.is_snapshot,
                hashes=touched,
                size_bytes=chunk.size_single_chunk_in_bytes,
            )
        ).map(lambda _: chunk.size_single_chunk_in_bytes)
