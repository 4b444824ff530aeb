"""
SyncController — the revocation-list synchronization state machine.

    trigger() / start()
      → fetch_status(progress)                 ── failure → handle_status_error
      → status.version == current_version      → completion check
      → no pending download                    → fresh download (size gate)
      → pending download                       → resume (or clean restart on mismatch)
    start_download()
      → chunk 1..N via ChunkDownloader         ── failure → classify_chunk_failure
      → completion check                       → completed

Every transition is reported to the SyncDelegate as a SyncResult. An
attempt runs synchronously on the calling thread; a lock-guarded in-flight
flag turns concurrent calls (scheduler tick, REST trigger) into no-ops.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum, unique
from typing import Any

import structlog

from dgc_verifier.domain.models import FIRST_CHUNK, ServerStatus, SyncResult, SyncState
from dgc_verifier.domain.ports import (
    ConnectivityProbe,
    ProgressRepository,
    RevocationGateway,
    RevocationStore,
    SyncDelegate,
)
from dgc_verifier.domain.result import ErrorCode, FailureDescription
from dgc_verifier.sync.downloader import ChunkDownloader
from dgc_verifier.sync.progress import ProgressTracker
from dgc_verifier.validation.catalog import RuleCatalog

log = structlog.get_logger()

AUTOMATIC_MAX_SIZE_BYTES = 5 * 1024 * 1024
STALENESS = timedelta(hours=24)

_WAITING_STATES = frozenset({SyncState.PAUSED, SyncState.USER_INTERACTION_REQUIRED})

_STATE_FOR_RESULT = {
    SyncResult.DOWNLOAD_READY: SyncState.PAUSED,
    SyncResult.PAUSED: SyncState.PAUSED,
    SyncResult.DOWNLOADING: SyncState.DOWNLOADING,
    SyncResult.COMPLETED: SyncState.COMPLETED,
    SyncResult.ERROR: SyncState.ERROR,
    SyncResult.STATUS_NETWORK_ERROR: SyncState.ERROR,
    SyncResult.NO_CONNECTION: SyncState.NO_CONNECTION,
    SyncResult.USER_INTERACTION_REQUIRED: SyncState.USER_INTERACTION_REQUIRED,
}


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class SyncContext:
    """Everything one controller talks to; built once at startup."""

    gateway: RevocationGateway
    store: RevocationStore
    progress: ProgressRepository
    connectivity: ConnectivityProbe
    catalog: RuleCatalog
    automatic_max_size_bytes: int = AUTOMATIC_MAX_SIZE_BYTES
    staleness: timedelta = STALENESS
    clock: Callable[[], datetime] = field(default=_utc_now)


@unique
class ChunkFailureAction(StrEnum):
    RETRY = "retry"
    PAUSE = "pause"
    NO_CONNECTION = "no_connection"
    ERROR = "error"


def classify_chunk_failure(failure: FailureDescription, online: bool) -> ChunkFailureAction:
    """
    Map a failed chunk download to the controller's reaction.

    version/index mismatch      → RETRY
    HTTP 408 or timeout         → PAUSE (online) / NO_CONNECTION (offline)
    HTTP 400–407                → RETRY
    anything else               → ERROR
    """
    if failure.code is ErrorCode.CONSISTENCY_ERROR:
        return ChunkFailureAction.RETRY
    if failure.is_timeout:
        return ChunkFailureAction.PAUSE if online else ChunkFailureAction.NO_CONNECTION
    if failure.http_status is not None and 400 <= failure.http_status <= 407:
        return ChunkFailureAction.RETRY
    return ChunkFailureAction.ERROR


class SyncController:
    def __init__(self, context: SyncContext) -> None:
        self._ctx = context
        self._tracker = ProgressTracker(context.progress)
        self._downloader = ChunkDownloader(context.gateway, context.store, self._tracker)

        self._lock = threading.Lock()
        self._in_flight = False
        self._first_trigger = True

        self._delegate: SyncDelegate | None = None
        self._status: ServerStatus | None = None
        self._allow_max_size = False
        self._state = SyncState.IDLE
        self._last_result: SyncResult | None = None

        self._status_fail_counter = context.catalog.max_retries
        self._download_fail_counter = context.catalog.max_retries

    # ─────────────────────── Public API ───────────────────────

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def last_result(self) -> SyncResult | None:
        return self._last_result

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def tracker(self) -> ProgressTracker:
        return self._tracker

    @property
    def context(self) -> SyncContext:
        return self._ctx

    def initialize(self, delegate: SyncDelegate | None = None) -> None:
        """Attach the delegate and arm the retry counters (no-op when sync is disabled)."""
        if not self._ctx.catalog.sync_enabled:
            log.info("drl.sync.disabled")
            return
        self._delegate = delegate
        self._reset_counters()
        log.info("drl.sync.initialized", max_retries=self._ctx.catalog.max_retries)

    def trigger(self) -> bool:
        """
        Periodic entry point. Returns whether an attempt actually ran.

        Skipped while another attempt is in flight, and while the last
        completed synchronization is younger than the staleness window
        (except on the first call after startup).
        """
        if not self._ctx.catalog.sync_enabled:
            return False
        if not self._acquire():
            log.debug("drl.sync.skipped", reason="in_flight")
            return False
        try:
            first, self._first_trigger = self._first_trigger, False
            if not first and not self._is_stale():
                log.debug("drl.sync.skipped", reason="fresh")
                return False
            self._download_fail_counter = self._ctx.catalog.max_retries
            self._attempt(allow_max_size_download=False)
            return True
        finally:
            self._release()

    def start(self, allow_max_size_download: bool = False) -> bool:
        """Run one attempt now, regardless of staleness."""
        if not self._acquire():
            return False
        try:
            self._attempt(allow_max_size_download)
            return True
        finally:
            self._release()

    def start_download(self) -> bool:
        """User confirmation: download (or resume) the pending version, whatever its size."""
        if not self._acquire():
            return False
        try:
            if self._status is None or self._tracker.progress.no_pending_download:
                self._attempt(allow_max_size_download=True)
            else:
                self._allow_max_size = True
                self._download()
            return True
        finally:
            self._release()

    def snapshot(self) -> dict[str, Any]:
        progress = self._tracker.progress
        return {
            "state": self._state.value,
            "last_result": self._last_result.value if self._last_result else None,
            "in_flight": self._in_flight,
            "current_version": progress.current_version,
            "requested_version": progress.requested_version,
            "current_chunk": progress.current_chunk,
            "total_chunk": progress.total_chunk,
            "remaining_bytes": progress.remaining_bytes,
            "last_fetch": self._tracker.last_fetch().isoformat(),
        }

    # ─────────────────────── Attempt ───────────────────────

    def _attempt(self, allow_max_size_download: bool) -> None:
        self._allow_max_size = allow_max_size_download
        self._state = SyncState.CHECKING_STATUS
        progress = self._tracker.progress
        fetched = self._ctx.gateway.fetch_status(progress)
        if fetched.is_failure():
            self.handle_status_error(fetched.error())
            return

        status = fetched.value()
        self._status = status
        self._status_fail_counter = self._ctx.catalog.max_retries
        log.info(
            "drl.sync.status_fetched",
            local=progress.describe(),
            server_version=status.version,
            total_chunk=status.total_chunk,
        )

        if status.version == progress.current_version:
            self._state = SyncState.NO_UPDATE_NEEDED
            self._check_completion()
        elif progress.no_pending_download:
            self._fresh_download(status)
        else:
            self._resume(status)

    def _fresh_download(self, status: ServerStatus) -> None:
        started = self._tracker.start(status)
        if started.is_failure():
            self.error_flow(started.error())
            return
        if status.total_size_in_bytes > self._ctx.automatic_max_size_bytes and not self._allow_max_size:
            log.info(
                "drl.sync.confirmation_required",
                total_size_bytes=status.total_size_in_bytes,
                threshold_bytes=self._ctx.automatic_max_size_bytes,
            )
            self._report(SyncResult.USER_INTERACTION_REQUIRED)
            return
        self._download()

    def _resume(self, status: ServerStatus) -> None:
        progress = self._tracker.progress
        if (
            progress.size_single_chunk_in_bytes != status.size_single_chunk_in_bytes
            or progress.requested_version != status.version
        ):
            log.info(
                "drl.sync.resume_mismatch",
                local=progress.describe(),
                server_version=status.version,
            )
            self.clean()
            self._attempt(self._allow_max_size)
            return
        if progress.current_chunk is None or progress.current_chunk > FIRST_CHUNK:
            self._report(SyncResult.PAUSED)
        else:
            self._report(SyncResult.DOWNLOAD_READY)

    def _download(self) -> None:
        if not self._ctx.connectivity.is_reachable():
            self._report(SyncResult.NO_CONNECTION)
            return
        while True:
            progress = self._tracker.progress
            if (progress.current_chunk or FIRST_CHUNK) > (progress.total_chunk or FIRST_CHUNK):
                break
            self._report(SyncResult.DOWNLOADING)
            downloaded = self._downloader.download_next()
            if downloaded.is_failure():
                self._handle_chunk_failure(downloaded.error())
                return
        self._check_completion()

    def _check_completion(self) -> None:
        """The store must hold exactly the server's revoked count before the version is adopted."""
        counted = self._ctx.store.count()
        if counted.is_failure():
            self.error_flow(counted.error())
            return
        expected = self._expected_revoked_count()
        if expected is None or counted.value() != expected:
            log.warning("drl.sync.count_mismatch", local=counted.value(), server=expected)
            self.handle_retry()
            return
        completed = self._tracker.complete()
        if completed.is_failure():
            self.error_flow(completed.error())
            return
        self._tracker.mark_fetched(self._ctx.clock())
        self._download_fail_counter = self._ctx.catalog.max_retries
        log.info("drl.sync.completed", version=completed.value().current_version, revoked=counted.value())
        self._report(SyncResult.COMPLETED)

    def _expected_revoked_count(self) -> int | None:
        """Server total to verify against; None (unverifiable) fails the guard."""
        status = self._status
        if status is None:
            return None
        if status.total_revoked_count is None and status.version == 0:
            # nothing published yet: the store must be empty
            return 0
        return status.total_revoked_count

    # ─────────────────────── Failure handling ───────────────────────

    def handle_status_error(self, failure: FailureDescription) -> None:
        self._status_fail_counter -= 1
        log.warning(
            "drl.sync.status_failed",
            failure=str(failure),
            retries_left=self._status_fail_counter,
        )
        if (
            self._status_fail_counter < 0
            or failure.is_timeout
            or not self._ctx.connectivity.is_reachable()
        ):
            self._report(SyncResult.STATUS_NETWORK_ERROR)
            return
        self.clean_and_retry()

    def _handle_chunk_failure(self, failure: FailureDescription) -> None:
        online = self._ctx.connectivity.is_reachable() if failure.is_timeout else True
        action = classify_chunk_failure(failure, online)
        log.warning(
            "drl.sync.chunk_failed",
            action=action.value,
            failure=str(failure),
            progress=self._tracker.progress.describe(),
        )
        match action:
            case ChunkFailureAction.RETRY:
                self.handle_retry()
            case ChunkFailureAction.PAUSE:
                self._report(SyncResult.PAUSED)
            case ChunkFailureAction.NO_CONNECTION:
                self._report(SyncResult.NO_CONNECTION)
            case ChunkFailureAction.ERROR:
                self.error_flow(failure)

    def handle_retry(self) -> None:
        self._download_fail_counter -= 1
        if self._download_fail_counter < 0:
            transferred = self._tracker.progress.transferred_bytes
            log.error("drl.sync.retries_exhausted", transferred_bytes=transferred)
            self._report(SyncResult.STATUS_NETWORK_ERROR if transferred == 0 else SyncResult.ERROR)
            self.clean()
            return
        log.info("drl.sync.retrying", retries_left=self._download_fail_counter)
        self.clean_and_retry()

    def error_flow(self, failure: FailureDescription) -> None:
        """Abort the attempt; persisted progress is kept for a later resume."""
        log.error("drl.sync.failed", failure=str(failure))
        self._status = None
        self._report(SyncResult.ERROR)

    def clean(self) -> None:
        """Forget progress, last fetch and cached status; empty the store."""
        self._status = None
        self._tracker.reset()
        self._ctx.store.clear().peek_failure(
            lambda err: log.error("drl.sync.clear_failed", failure=str(err))
        )
        log.info("drl.sync.cleaned")

    def clean_and_retry(self) -> None:
        self.clean()
        self._attempt(self._allow_max_size)

    # ─────────────────────── Internals ───────────────────────

    def _reset_counters(self) -> None:
        self._status_fail_counter = self._ctx.catalog.max_retries
        self._download_fail_counter = self._ctx.catalog.max_retries

    def _is_stale(self) -> bool:
        return self._ctx.clock() - self._tracker.last_fetch() >= self._ctx.staleness

    def _acquire(self) -> bool:
        with self._lock:
            if self._in_flight:
                return False
            self._in_flight = True
            return True

    def _release(self) -> None:
        with self._lock:
            self._in_flight = False
            if self._state not in _WAITING_STATES:
                self._state = SyncState.IDLE

    def _report(self, result: SyncResult) -> None:
        self._last_result = result
        self._state = _STATE_FOR_RESULT[result]
        log.info("drl.sync.status_changed", result=result.value)
        if self._delegate is not None:
            self._delegate.status_did_change(result)
