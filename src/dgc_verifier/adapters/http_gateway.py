"""
HTTP adapter — DRL status, DRL chunks and connectivity via httpx.

Adapter layer — implements RevocationGateway and ConnectivityProbe ports
using httpx for sync HTTP calls.

Endpoints (relative to the gateway base URL):
  1. GET /drl/check?version={v}&chunk={c}  → DRL status (target version, chunking)
  2. GET /drl?version={v}&chunk={c}        → one snapshot or delta chunk
  3. HEAD /                                → reachability probe

Retry/backoff via tenacity on transient connection errors only. HTTP error
statuses are NOT retried here: they are returned as failures carrying
`http_status` so the sync controller can apply its own policy
(400–407 retry, 408 pause, anything else abort).

Payloads are validated with pydantic before being mapped to domain values.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from dgc_verifier.domain.models import RevocationChunk, ServerStatus, SyncProgress
from dgc_verifier.domain.result import ErrorCode, Result

log = structlog.get_logger()

T = TypeVar("T")

_transport_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=0.1, max=30),
    retry=retry_if_exception_type((httpx.ConnectError, httpx.RemoteProtocolError)),
    reraise=True,
)


# ─────────────────────── Wire format ───────────────────────


class _StatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    version: int
    from_version: int | None = Field(default=None, alias="fromVersion")
    total_chunk: int = Field(default=1, alias="totalChunk", ge=1)
    size_single_chunk_in_bytes: int = Field(alias="sizeSingleChunkInByte", ge=0)
    total_size_in_bytes: int = Field(alias="totalSizeInByte", ge=0)
    total_revoked_count: int | None = Field(default=None, alias="totalNumberUCVI")

    def to_domain(self) -> ServerStatus:
        return ServerStatus(
            version=self.version,
            total_chunk=self.total_chunk,
            size_single_chunk_in_bytes=self.size_single_chunk_in_bytes,
            total_size_in_bytes=self.total_size_in_bytes,
            total_revoked_count=self.total_revoked_count,
            from_version=self.from_version,
        )


class _Delta(BaseModel):
    insertions: list[str] = Field(default_factory=list)
    deletions: list[str] = Field(default_factory=list)


class _ChunkResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    version: int
    chunk: int = 1
    last_chunk: int | None = Field(default=None, alias="lastChunk")
    size_single_chunk_in_bytes: int = Field(default=0, alias="sizeSingleChunkInByte", ge=0)
    revoked_ucvi: list[str] | None = Field(default=None, alias="revokedUcvi")
    delta: _Delta | None = None

    @model_validator(mode="after")
    def snapshot_or_delta(self) -> _ChunkResponse:
        """Exactly one of revokedUcvi (snapshot) or delta must be present."""
        if (self.revoked_ucvi is None) == (self.delta is None):
            raise ValueError("chunk must carry exactly one of 'revokedUcvi' or 'delta'")
        return self

    def to_domain(self) -> RevocationChunk:
        if self.revoked_ucvi is not None:
            return RevocationChunk(
                version=self.version,
                chunk_index=self.chunk,
                is_snapshot=True,
                insertions=tuple(self.revoked_ucvi),
                size_single_chunk_in_bytes=self.size_single_chunk_in_bytes,
                last_chunk=self.last_chunk,
            )
        if self.delta is None:
            raise ValueError("chunk carries neither 'revokedUcvi' nor 'delta'")
        return RevocationChunk(
            version=self.version,
            chunk_index=self.chunk,
            is_snapshot=False,
            insertions=tuple(self.delta.insertions),
            deletions=tuple(self.delta.deletions),
            size_single_chunk_in_bytes=self.size_single_chunk_in_bytes,
            last_chunk=self.last_chunk,
        )


# ─────────────────────── Failure capture ───────────────────────


def _capture(computation: Callable[[], T], message: str) -> Result[T]:
    """
    Run an HTTP computation and classify whatever it raises.

    HTTPStatusError → EXTERNAL_SERVICE_ERROR (or TIMEOUT_ERROR for 408) with http_status
    TimeoutException → TIMEOUT_ERROR
    TransportError   → NETWORK_ERROR
    malformed body   → VALIDATION_ERROR
    """
    try:
        return Result.success(computation())
    except httpx.HTTPStatusError as e:
        status = e.response.status_code
        code = ErrorCode.TIMEOUT_ERROR if status == 408 else ErrorCode.EXTERNAL_SERVICE_ERROR
        return Result.failure(code, f"{message}: HTTP {status}", e, http_status=status)
    except httpx.TimeoutException as e:
        return Result.failure(ErrorCode.TIMEOUT_ERROR, f"{message}: timed out", e)
    except httpx.TransportError as e:
        return Result.failure(ErrorCode.NETWORK_ERROR, f"{message}: {e}", e)
    except (ValidationError, ValueError) as e:
        return Result.failure(ErrorCode.VALIDATION_ERROR, f"{message}: malformed payload", e)


class HttpRevocationGateway:
    """
    Fetch DRL status and chunks from the revocation service.

    Implements the RevocationGateway port.
    """

    def __init__(
        self,
        base_url: str,
        status_path: str = "/drl/check",
        chunk_path: str = "/drl",
        timeout: int = 60,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._status_path = status_path
        self._chunk_path = chunk_path
        self._timeout = timeout

    def fetch_status(self, progress: SyncProgress) -> Result[ServerStatus]:
        """
        Request the DRL status relative to the locally applied version.

        Returns Result[ServerStatus] on success, or a failure classified by
        `_capture` (http_status set when the server answered with an error).
        """
        params = {
            "version": progress.current_version,
            "chunk": progress.current_chunk or 1,
        }
        return (
            _capture(
                lambda: self._get_json(self._status_path, params),
                "DRL status request failed",
            )
            .flat_map(
                lambda body: _capture(
                    lambda: _StatusResponse.model_validate(body).to_domain(),
                    "DRL status response invalid",
                )
            )
            .peek(
                lambda status: log.info(
                    "gateway.status_fetched",
                    version=status.version,
                    total_chunk=status.total_chunk,
                    total_size_bytes=status.total_size_in_bytes,
                )
            )
        )

    def fetch_chunk(self, version: int, chunk_index: int) -> Result[RevocationChunk]:
        """Download chunk `chunk_index` of the DRL delta starting at `version`."""
        params = {"version": version, "chunk": chunk_index}
        return _capture(
            lambda: self._get_json(self._chunk_path, params),
            f"DRL chunk {chunk_index} request failed",
        ).flat_map(
            lambda body: _capture(
                lambda: _ChunkResponse.model_validate(body).to_domain(),
                f"DRL chunk {chunk_index} response invalid",
            )
        )

    @_transport_retry
    def _get_json(self, path: str, params: dict[str, int]) -> object:
        """HTTP GET with retry — exceptions classified by _capture."""
        with httpx.Client(timeout=self._timeout) as client:
            response = client.get(f"{self._base_url}{path}", params=params)
            response.raise_for_status()
            log.debug("gateway.response", path=path, size_bytes=len(response.content))
            return response.json()


class HttpConnectivityProbe:
    """
    Reachability check against the gateway host.

    Implements the ConnectivityProbe port. Any HTTP answer (even an error
    status) means the network is up; only transport failures mean offline.
    """

    def __init__(self, url: str, timeout: float = 5.0) -> None:
        self._url = url
        self._timeout = timeout

    def is_reachable(self) -> bool:
        try:
            with httpx.Client(timeout=self._timeout) as client:
                client.head(self._url)
        except httpx.TransportError as e:
            log.warning("connectivity.unreachable", url=self._url, error=str(e))
            return False
        return True
