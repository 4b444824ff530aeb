"""
Result — the Railway-Oriented error channel used at every port boundary.

A Result[T] is either Success(value) or Failure(FailureDescription).
Adapters capture their exceptions into a Failure, so the sync controller
and the validation engine only branch on values, never on try/except.

    fetch_status(progress)
      .flat_map(check_version)     ── Failure ──┐
      .map(to_progress)            ── Failure ──┤
                                                 └──→ Result[T]

FailureDescription additionally carries the HTTP status reported by the
transport (when there is one), because the synchronization policy
classifies chunk failures by status code.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, unique
from typing import Any, Generic, TypeVar

import structlog

log = structlog.get_logger()

T = TypeVar("T")
U = TypeVar("U")
R = TypeVar("R")


@unique
class ErrorCode(Enum):
    """Failure categories recognised by the synchronization and validation layers."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    """Malformed payload or certificate field."""

    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    """Remote service answered with a non-success HTTP status."""

    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    """Request timed out (HTTP 408 or transport timeout)."""

    NETWORK_ERROR = "NETWORK_ERROR"
    """Connection could not be established or was dropped."""

    CONSISTENCY_ERROR = "CONSISTENCY_ERROR"
    """Downloaded data does not match the requested version/chunk or the server totals."""

    DATABASE_ERROR = "DATABASE_ERROR"
    """Persistence failure; the transaction was rolled back."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    """Missing or unusable configuration."""

    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    """Anything else."""


@dataclass(frozen=True, slots=True)
class FailureDescription:
    """
    Immutable failure descriptor.

    >>> desc = FailureDescription(ErrorCode.EXTERNAL_SERVICE_ERROR, "chunk failed", http_status=404)
    >>> desc.http_status
    404
    """

    code: ErrorCode
    message: str
    exception: BaseException | None = field(default=None, repr=False)
    http_status: int | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_timeout(self) -> bool:
        """True for the 408 class: explicit HTTP 408 or a transport timeout."""
        return self.http_status == 408 or self.code is ErrorCode.TIMEOUT_ERROR

    def __str__(self) -> str:
        status = f" [HTTP {self.http_status}]" if self.http_status is not None else ""
        return f"{self.code.value}{status}: {self.message}"


class Result(Generic[T]):
    """
    Success(value) or Failure(error). Transformations short-circuit on failure.

        >>> Result.success(2).map(lambda x: x * 3).value()
        6
        >>> Result.failure(ErrorCode.NETWORK_ERROR, "down").map(lambda x: x).is_failure()
        True
    """

    # ──────────────────────── Introspection ────────────────────────

    def is_success(self) -> bool:
        return isinstance(self, Success)

    def is_failure(self) -> bool:
        return isinstance(self, Failure)

    def value(self) -> T:
        """Extract the success value. Raises ValueError on a Failure."""
        match self:
            case Success(v):
                return v
            case Failure(err):
                raise ValueError(f"Cannot get value from a Failure: {err.message}")
        raise TypeError("unreachable")  # pragma: no cover

    def error(self) -> FailureDescription:
        """Extract the failure description. Raises ValueError on a Success."""
        match self:
            case Failure(err):
                return err
            case Success(v):
                raise ValueError(f"Cannot get error from a Success: {v!r}")
        raise TypeError("unreachable")  # pragma: no cover

    # ──────────────────────── Transformations ────────────────────────

    def either(
        self,
        on_success: Callable[[T], R],
        on_failure: Callable[[FailureDescription], R],
    ) -> R:
        match self:
            case Success(v):
                return on_success(v)
            case Failure(err):
                return on_failure(err)
        raise TypeError("unreachable")  # pragma: no cover

    def map(self, mapper: Callable[[T], U]) -> Result[U]:
        match self:
            case Success(v):
                return Success(mapper(v))
            case Failure(err):
                return Failure(err)
        raise TypeError("unreachable")  # pragma: no cover

    def flat_map(self, mapper: Callable[[T], Result[U]]) -> Result[U]:
        """Chain a Result-returning step. The key railway connector."""
        match self:
            case Success(v):
                return mapper(v)
            case Failure(err):
                return Failure(err)
        raise TypeError("unreachable")  # pragma: no cover

    def ensure(
        self,
        predicate: Callable[[T], bool],
        code: ErrorCode,
        message: str,
    ) -> Result[T]:
        """Turn a Success into a Failure(code, message) when the predicate rejects it."""
        return self.flat_map(
            lambda v: Result.success(v) if predicate(v) else Result.failure(code, message)
        )

    def peek(self, action: Callable[[T], Any]) -> Result[T]:
        """Run a side effect on the success value (logging) and pass through."""
        match self:
            case Success(v):
                action(v)
        return self

    def peek_failure(self, action: Callable[[FailureDescription], Any]) -> Result[T]:
        match self:
            case Failure(err):
                action(err)
        return self

    def get_or_else(self, default: T) -> T:
        match self:
            case Success(v):
                return v
            case _:
                return default

    # ──────────────────────── Factories ────────────────────────

    @staticmethod
    def success(value: T) -> Result[T]:
        return Success(value)

    @staticmethod
    def failure(
        code: ErrorCode,
        message: str,
        exception: BaseException | None = None,
        http_status: int | None = None,
    ) -> Result[T]:
        return Failure(
            FailureDescription(
                code=code, message=message, exception=exception, http_status=http_status
            )
        )

    @staticmethod
    def failure_from(error: FailureDescription) -> Result[T]:
        return Failure(error)

    @staticmethod
    def from_computation(
        computation: Callable[[], T],
        error_code: ErrorCode,
        error_message: str,
    ) -> Result[T]:
        """
        Run a computation that may raise and capture the exception as a Failure.

            return Result.from_computation(
                lambda: self._transactional_delta(insertions, deletions),
                ErrorCode.DATABASE_ERROR,
                "Failed to apply revocation delta",
            )
        """
        try:
            return Result.success(computation())
        except Exception as e:
            return Result.failure(error_code, error_message, e)

    # ──────────────────────── Dunder methods ────────────────────────

    def __bool__(self) -> bool:
        return self.is_success()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Result):
            return NotImplemented
        match (self, other):
            case (Success(a), Success(b)):
                return a == b
            case (Failure(a), Failure(b)):
                return a.code == b.code and a.message == b.message
            case _:
                return False

    def __hash__(self) -> int:
        match self:
            case Success(v):
                return hash(("Success", v))
            case Failure(err):
                return hash(("Failure", err.code, err.message))
        raise TypeError("unreachable")  # pragma: no cover


class Success(Result[T]):
    """The success track. Values may be falsy (0, False, empty tuple) but not None."""

    __slots__ = ("_value",)
    __match_args__ = ("_value",)

    def __init__(self, value: T) -> None:
        if value is None:
            raise TypeError("Success value must not be None")
        self._value = value

    def __repr__(self) -> str:
        return f"Success({self._value!r})"


class Failure(Result[T]):
    """The failure track — wraps a FailureDescription."""

    __slots__ = ("_error",)
    __match_args__ = ("_error",)

    def __init__(self, error: FailureDescription) -> None:
        if error is None:
            raise TypeError("Failure error must not be None")
        self._error = error

    def __repr__(self) -> str:
        return f"Failure({self._error})"


# ──────────────────────── Execution context ────────────────────────


class LoggingExecutionContext:
    """
    Runs a Result-returning computation and logs its duration and outcome.

    An exception escaping the computation is captured as an UNKNOWN_ERROR
    Failure, so a scheduler job never dies on it.

        ctx = LoggingExecutionContext(operation="drl_sync")
        result = ctx.execute(lambda: Result.success(controller.trigger()))
    """

    def __init__(self, operation: str = "unknown") -> None:
        self._operation = operation

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]:
        log.debug("execution.started", operation=self._operation)
        start = time.monotonic()

        try:
            result = computation()
        except Exception as e:
            log.exception(
                "execution.failed",
                operation=self._operation,
                elapsed=round(time.monotonic() - start, 3),
                error=str(e),
            )
            return Failure(FailureDescription(ErrorCode.UNKNOWN_ERROR, f"Execution failed: {e}", e))

        log.debug(
            "execution.completed",
            operation=self._operation,
            elapsed=round(time.monotonic() - start, 3),
            state="SUCCESS" if result.is_success() else "FAILURE",
        )
        return result
