"""
Domain models — immutable values for revocation sync and certificate validation.

Synchronization values (SyncProgress, ServerStatus, RevocationChunk) describe
the versioned, chunked revocation list (DRL). Progress is never mutated in
place: every transition returns a new SyncProgress that the ProgressTracker
persists.

Validation values (CertificateStatement and its entries) are the already
decoded and signature-checked certificate content consumed read-only by
the ValidationEngine.
"""

from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from enum import StrEnum, unique

FIRST_CHUNK = 1
NEVER_FETCHED = datetime(1970, 1, 1, tzinfo=UTC)


# ─────────────────────── Synchronization ───────────────────────


@unique
class SyncResult(StrEnum):
    """Outcome reported to the SyncDelegate after every transition."""

    DOWNLOAD_READY = "downloadReady"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    PAUSED = "paused"
    ERROR = "error"
    STATUS_NETWORK_ERROR = "statusNetworkError"
    NO_CONNECTION = "noConnection"
    USER_INTERACTION_REQUIRED = "userInteractionRequired"
    """Download size exceeds the automatic threshold; waiting for confirmation."""


@unique
class SyncState(StrEnum):
    """Controller state machine positions."""

    IDLE = "idle"
    CHECKING_STATUS = "checking_status"
    NO_UPDATE_NEEDED = "no_update_needed"
    DOWNLOADING = "downloading"
    PAUSED = "paused"
    USER_INTERACTION_REQUIRED = "user_interaction_required"
    COMPLETED = "completed"
    ERROR = "error"
    NO_CONNECTION = "no_connection"


@dataclass(frozen=True, slots=True)
class ServerStatus:
    """
    Remote DRL status, fetched fresh for every synchronization attempt.

    Treated as the target state of the attempt; never persisted.
    """

    version: int
    total_chunk: int
    size_single_chunk_in_bytes: int
    total_size_in_bytes: int
    total_revoked_count: int | None = None
    from_version: int | None = None


@dataclass(frozen=True, slots=True)
class SyncProgress:
    """
    Persisted cursor of the synchronization.

    `current_chunk` is 1-based and only advances after the chunk has been
    applied to the store; `remaining_bytes` only decreases. Empty progress
    (both versions 0) means nothing has ever been synchronized.
    """

    current_version: int = 0
    requested_version: int = 0
    current_chunk: int | None = None
    total_chunk: int | None = None
    size_single_chunk_in_bytes: int | None = None
    total_size_in_bytes: int | None = None
    remaining_bytes: int | None = None

    @staticmethod
    def for_download(status: ServerStatus, current_version: int) -> SyncProgress:
        """Fresh progress targeting `status.version`, starting at the first chunk."""
        return SyncProgress(
            current_version=current_version,
            requested_version=status.version,
            current_chunk=FIRST_CHUNK,
            total_chunk=status.total_chunk,
            size_single_chunk_in_bytes=status.size_single_chunk_in_bytes,
            total_size_in_bytes=status.total_size_in_bytes,
            remaining_bytes=status.total_size_in_bytes,
        )

    @property
    def no_pending_download(self) -> bool:
        return self.current_version == self.requested_version

    @property
    def transferred_bytes(self) -> int:
        if self.total_size_in_bytes is None or self.remaining_bytes is None:
            return 0
        return self.total_size_in_bytes - self.remaining_bytes

    @property
    def is_completed(self) -> bool:
        """A version has been fully applied and nothing is pending."""
        return self.current_version > 0 and self.no_pending_download

    def advance(self, chunk_size_in_bytes: int) -> SyncProgress:
        """Acknowledge the current chunk: move to the next one and consume its bytes."""
        remaining = self.remaining_bytes
        if remaining is not None:
            remaining = max(0, remaining - max(0, chunk_size_in_bytes))
        return replace(
            self,
            current_chunk=(self.current_chunk or FIRST_CHUNK) + 1,
            remaining_bytes=remaining,
        )

    def complete(self) -> SyncProgress:
        """The requested version is now the applied one."""
        return SyncProgress(
            current_version=self.requested_version,
            requested_version=self.requested_version,
            total_size_in_bytes=self.total_size_in_bytes,
            remaining_bytes=0,
        )

    def describe(self) -> str:
        chunk = self.current_chunk or FIRST_CHUNK
        chunks = self.total_chunk or FIRST_CHUNK
        return f"[{self.current_version}->{self.requested_version}] {chunk}/{chunks}"


@dataclass(frozen=True, slots=True)
class RevocationChunk:
    """
    One chunk of the DRL.

    Snapshot chunks replace the set (the first chunk clears, every chunk
    inserts `insertions`); delta chunks add `insertions` and remove
    `deletions` from the existing set.
    """

    version: int
    chunk_index: int
    is_snapshot: bool
    insertions: tuple[str, ...] = ()
    deletions: tuple[str, ...] = ()
    size_single_chunk_in_bytes: int = 0
    last_chunk: int | None = None

    @property
    def is_delta(self) -> bool:
        return not self.is_snapshot


# ─────────────────────── Certificate statement ───────────────────────


@unique
class ScanMode(StrEnum):
    BASE = "base"
    REINFORCED = "reinforced"
    BOOSTER = "booster"
    ITALY_ENTRY = "italy_entry"


@unique
class CertificateType(StrEnum):
    UNKNOWN = "unknown"
    VACCINE = "vaccine"
    RECOVERY = "recovery"
    TEST = "test"
    VACCINE_EXEMPTION = "vaccine_exemption"


@unique
class TestType(StrEnum):
    MOLECULAR = "molecular"
    RAPID = "rapid"

    __test__ = False  # not a pytest test class


@dataclass(frozen=True, slots=True)
class VaccinationEntry:
    """`dose_description` is free text such as "2/2" or "Dose 1 of 2"."""

    medicinal_product: str
    dose_description: str
    vaccination_date: date


@dataclass(frozen=True, slots=True)
class RecoveryEntry:
    valid_from: date
    valid_until: date


@dataclass(frozen=True, slots=True)
class TestEntry:
    test_type: TestType
    sample_collected_at: datetime
    detected: bool = False

    __test__ = False


@dataclass(frozen=True, slots=True)
class ExemptionEntry:
    valid_from: date
    valid_until: date | None = None


@dataclass(frozen=True, slots=True)
class CertificateStatement:
    """
    Decoded certificate content, trusted (signature already verified upstream).

    Exactly the entry matching `extended_type` is expected to be populated;
    a missing entry makes the certificate malformed.
    """

    extended_type: CertificateType
    country_code: str
    uvci: str
    vaccination: VaccinationEntry | None = None
    recovery: RecoveryEntry | None = None
    test: TestEntry | None = None
    exemption: ExemptionEntry | None = None

    @property
    def hashed_uvci(self) -> str:
        return hash_uvci(self.uvci)


def hash_uvci(uvci: str) -> str:
    """Revocation-list key of a UVCI: base64 of its SHA-256 digest."""
    return base64.b64encode(hashlib.sha256(uvci.encode("utf-8")).digest()).decode("ascii")


# ─────────────────────── Validity decision ───────────────────────


@unique
class ValidityStatus(StrEnum):
    VALID = "valid"
    PARTIALLY_VALID = "partially_valid"
    NOT_VALID = "not_valid"


@unique
class ValidityReason(StrEnum):
    NOT_YET_VALID = "not_yet_valid"
    EXPIRED = "expired"
    ADDITIONAL_CHECK_REQUIRED = "additional_check_required"
    REVOKED = "revoked"
    BLACKLISTED = "blacklisted"
    UNRECOGNIZED_PRODUCT = "unrecognized_product"
    NOT_ACCEPTED = "not_accepted"
    MALFORMED = "malformed"


@dataclass(frozen=True, slots=True)
class ValidityDecision:
    status: ValidityStatus
    reason: ValidityReason | None = field(default=None)

    @staticmethod
    def valid() -> ValidityDecision:
        return ValidityDecision(ValidityStatus.VALID)

    @staticmethod
    def not_valid(reason: ValidityReason) -> ValidityDecision:
        return ValidityDecision(ValidityStatus.NOT_VALID, reason)

    @staticmethod
    def partially_valid(reason: ValidityReason) -> ValidityDecision:
        return ValidityDecision(ValidityStatus.PARTIALLY_VALID, reason)

    @property
    def is_valid(self) -> bool:
        return self.status is ValidityStatus.VALID
