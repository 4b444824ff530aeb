"""
Ports — Protocol-based interfaces for infrastructure adapters.

These define WHAT synchronization and validation need without specifying
HOW it's done. Following hexagonal architecture:

  Domain ← Ports (protocols) ← Adapters (implementations)

Adapters satisfy a port simply by implementing its methods — no
inheritance. Every call that can fail returns a Result so the sync
controller can classify failures without catching exceptions.

Collaborators:
  1. RevocationGateway  → remote DRL status and chunks
  2. ConnectivityProbe  → is the network reachable right now
  3. RevocationStore    → persistent set of revoked UVCI hashes
  4. ProgressRepository → persistent sync cursor + last successful fetch
  5. SyncDelegate       → receives every SyncResult transition
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Protocol, runtime_checkable

from dgc_verifier.domain.models import RevocationChunk, ServerStatus, SyncProgress, SyncResult
from dgc_verifier.domain.result import Result


@runtime_checkable
class RevocationGateway(Protocol):
    """
    Port: remote revocation-list service.

    `fetch_status` reports the target version and its chunking relative to the
    local progress. `fetch_chunk` returns chunk `chunk_index` of the delta that
    brings `version` (the locally applied version) to the server's current one.

    Failures carry `http_status` when the server answered with an error status.
    """

    def fetch_status(self, progress: SyncProgress) -> Result[ServerStatus]: ...

    def fetch_chunk(self, version: int, chunk_index: int) -> Result[RevocationChunk]: ...


@runtime_checkable
class ConnectivityProbe(Protocol):
    """Port: is the network reachable."""

    def is_reachable(self) -> bool: ...


@runtime_checkable
class RevocationStore(Protocol):
    """
    Port: persistent set of revoked UVCI hashes.

    Every mutating call is atomic: concurrent `contains`/`count` readers see
    either the state before the call or the state after it, never a mix.
    Mutations return the number of hashes they touched.
    """

    def apply_snapshot(self, hashes: Iterable[str]) -> Result[int]:
        """Replace the whole set with `hashes`."""
        ...

    def apply_delta(self, insertions: Iterable[str], deletions: Iterable[str]) -> Result[int]:
        """Add `insertions`, then remove `deletions`."""
        ...

    def contains(self, hashed_uvci: str) -> Result[bool]: ...

    def count(self) -> Result[int]: ...

    def clear(self) -> Result[int]: ...


@runtime_checkable
class ProgressRepository(Protocol):
    """
    Port: persisted synchronization cursor.

    Survives process restarts so an interrupted download can resume at the
    first unacknowledged chunk.
    """

    def load(self) -> Result[SyncProgress]: ...

    def save(self, progress: SyncProgress) -> Result[SyncProgress]: ...

    def last_fetch(self) -> Result[datetime]:
        """When the last synchronization completed; NEVER_FETCHED if it never did."""
        ...

    def mark_fetched(self, when: datetime) -> Result[datetime]: ...

    def reset(self) -> Result[SyncProgress]:
        """Forget progress and last fetch; returns the empty progress."""
        ...


@runtime_checkable
class SyncDelegate(Protocol):
    """Port: observer of synchronization outcomes (UI, REST status endpoint)."""

    def status_did_change(self, result: SyncResult) -> None: ...
