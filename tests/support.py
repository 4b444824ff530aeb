"""
Test doubles and assertions shared by the unit, integration and acceptance suites.

  ResultAssertions   expressive checks on Result values
  ScriptedGateway    RevocationGateway serving canned statuses and chunks
  SwitchableProbe    ConnectivityProbe with an `online` flag
  RecordingDelegate  SyncDelegate collecting every reported SyncResult
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from typing import TypeVar

from dgc_verifier.domain.models import RevocationChunk, ServerStatus, SyncProgress, SyncResult
from dgc_verifier.domain.result import ErrorCode, FailureDescription, Result
from dgc_verifier.validation.catalog import GENERIC, RuleCatalog, Setting

T = TypeVar("T")

CHUNK_SIZE = 1_000


class ResultAssertions:
    """Expressive test assertions for Result values."""

    @staticmethod
    def assert_success(result: Result[T], message: str = "") -> T:
        context = f" ({message})" if message else ""
        assert result.is_success(), (
            f"Expected Success but got Failure("
            f"{result.error().code.value}: {result.error().message!r}){context}"
        )
        return result.value()

    @staticmethod
    def assert_failure(
        result: Result[T],
        expected_code: ErrorCode | None = None,
        message: str = "",
    ) -> FailureDescription:
        context = f" ({message})" if message else ""
        assert result.is_failure(), f"Expected Failure but got Success({result.value()!r}){context}"
        error = result.error()
        if expected_code is not None:
            assert error.code == expected_code, (
                f"Expected error code {expected_code.value} "
                f"but got {error.code.value}: {error.message!r}{context}"
            )
        return error


# ─────────────────────── Builders ───────────────────────


def server_status(
    version: int,
    total_chunk: int = 1,
    revoked: int | None = None,
    chunk_size: int = CHUNK_SIZE,
    total_size: int | None = None,
) -> ServerStatus:
    return ServerStatus(
        version=version,
        total_chunk=total_chunk,
        size_single_chunk_in_bytes=chunk_size,
        total_size_in_bytes=total_size if total_size is not None else chunk_size * total_chunk,
        total_revoked_count=revoked,
    )


def snapshot_chunk(version: int, index: int, hashes: Iterable[str], size: int = CHUNK_SIZE) -> RevocationChunk:
    return RevocationChunk(
        version=version,
        chunk_index=index,
        is_snapshot=True,
        insertions=tuple(hashes),
        size_single_chunk_in_bytes=size,
    )


def delta_chunk(
    version: int,
    index: int,
    insertions: Iterable[str] = (),
    deletions: Iterable[str] = (),
    size: int = CHUNK_SIZE,
) -> RevocationChunk:
    return RevocationChunk(
        version=version,
        chunk_index=index,
        is_snapshot=False,
        insertions=tuple(insertions),
        deletions=tuple(deletions),
        size_single_chunk_in_bytes=size,
    )


def http_failure(status: int) -> Result[RevocationChunk]:
    code = ErrorCode.TIMEOUT_ERROR if status == 408 else ErrorCode.EXTERNAL_SERVICE_ERROR
    return Result.failure(code, f"HTTP {status}", http_status=status)


def make_catalog(*rows: tuple[str, str, str], home_country: str = "IT") -> RuleCatalog:
    """Catalog from (name, type, value) triples; a 2-tuple means a GENERIC row."""
    return RuleCatalog(
        (Setting(name=r[0], type=r[1], value=r[2]) if len(r) == 3 else Setting(r[0], GENERIC, r[1]))
        for r in rows
    )


# ─────────────────────── Doubles ───────────────────────


class ScriptedGateway:
    """
    RevocationGateway double.

    `statuses` is consumed front to back; the last entry keeps being served.
    `chunks` maps chunk index → chunk served for any version.
    `chunk_failures` maps chunk index → results served (once each) before the chunk.
    """

    def __init__(self, *statuses: ServerStatus | Result[ServerStatus]) -> None:
        self.statuses: list[Result[ServerStatus]] = [
            s if isinstance(s, Result) else Result.success(s) for s in statuses
        ]
        self.chunks: dict[int, RevocationChunk] = {}
        self.chunk_failures: dict[int, list[Result[RevocationChunk]]] = defaultdict(list)
        self.status_calls: list[SyncProgress] = []
        self.chunk_calls: list[tuple[int, int]] = []

    def answer(self, *statuses: ServerStatus | Result[ServerStatus]) -> ScriptedGateway:
        self.statuses = [s if isinstance(s, Result) else Result.success(s) for s in statuses]
        return self

    def serve(self, *chunks: RevocationChunk) -> ScriptedGateway:
        for chunk in chunks:
            self.chunks[chunk.chunk_index] = chunk
        return self

    def fail_chunk(self, index: int, *failures: Result[RevocationChunk]) -> ScriptedGateway:
        self.chunk_failures[index].extend(failures)
        return self

    def fetch_status(self, progress: SyncProgress) -> Result[ServerStatus]:
        self.status_calls.append(progress)
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]

    def fetch_chunk(self, version: int, chunk_index: int) -> Result[RevocationChunk]:
        self.chunk_calls.append((version, chunk_index))
        pending = self.chunk_failures.get(chunk_index)
        if pending:
            return pending.pop(0)
        chunk = self.chunks.get(chunk_index)
        if chunk is None:
            return http_failure(404)
        return Result.success(chunk)

    @property
    def requested_chunks(self) -> list[int]:
        return [index for _, index in self.chunk_calls]


class SwitchableProbe:
    def __init__(self, online: bool = True) -> None:
        self.online = online

    def is_reachable(self) -> bool:
        return self.online


class RecordingDelegate:
    def __init__(self) -> None:
        self.results: list[SyncResult] = []

    def status_did_change(self, result: SyncResult) -> None:
        self.results.append(result)

    @property
    def last(self) -> SyncResult | None:
        return self.results[-1] if self.results else None
