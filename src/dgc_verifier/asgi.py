"""
FastAPI + Uvicorn ASGI application.

Runs the DRL synchronization as a background scheduler and exposes the
validation engine over HTTP.

Architecture:
  - FastAPI: REST surface (probes, manual sync control, validation)
  - Uvicorn: ASGI server (handles signals, graceful shutdown)
  - APScheduler: runs in a background thread while Uvicorn serves requests
  - K8s probes: liveness (scheduler thread alive) + readiness (startup done)

Entry point: uvicorn dgc_verifier.asgi:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import asyncio
import threading
from collections import deque
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any

import structlog
from apscheduler.schedulers.base import BaseScheduler
from fastapi import FastAPI, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from dgc_verifier import __version__
from dgc_verifier.config import AppSettings
from dgc_verifier.domain.models import (
    CertificateStatement,
    CertificateType,
    ExemptionEntry,
    RecoveryEntry,
    ScanMode,
    SyncResult,
    TestEntry,
    TestType,
    VaccinationEntry,
)
from dgc_verifier.main import _create_services, configure_structlog
from dgc_verifier.scheduler import create_scheduler
from dgc_verifier.sync.controller import SyncController
from dgc_verifier.validation.engine import ValidationEngine

# ─────────────────────── Global State ───────────────────────
# Set during startup; read by the endpoints.

_scheduler_thread: threading.Thread | None = None
_scheduler_started = False
_scheduler_ready = False
_error_message: str | None = None
_controller: SyncController | None = None
_engine: ValidationEngine | None = None
log = structlog.get_logger()


class RecentResults:
    """SyncDelegate keeping the latest transitions for GET /sync/status."""

    def __init__(self, size: int = 20) -> None:
        self._results: deque[tuple[str, str]] = deque(maxlen=size)

    def status_did_change(self, result: SyncResult) -> None:
        self._results.append((datetime.now().astimezone().isoformat(), result.value))

    def as_list(self) -> list[dict[str, str]]:
        return [{"at": at, "result": result} for at, result in self._results]


_recent = RecentResults()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Startup: build services, start the scheduler thread.
    Shutdown: stop the scheduler and join the thread.
    """
    global _scheduler_thread, _scheduler_ready, _error_message, _controller, _engine

    log.info("asgi.startup", event="lifespan_startup")

    try:
        settings = AppSettings()
    except Exception as e:
        _error_message = f"Configuration error: {e}"
        log.error("asgi.startup_error", error=_error_message)
        raise

    configure_structlog(settings.log_level)

    log.info(
        "asgi.startup_config",
        version=__version__,
        log_level=settings.log_level,
        store=settings.store.value,
        interval_seconds=settings.scheduler.interval_seconds,
        run_on_startup=settings.run_on_startup,
    )

    try:
        controller, engine = _create_services(settings)
        controller.initialize(_recent)
        scheduler = create_scheduler(
            trigger_fn=controller.trigger,
            interval_seconds=settings.scheduler.interval_seconds,
            jitter_seconds=settings.scheduler.jitter_seconds,
            run_on_startup=False,
        )
    except Exception as e:
        _error_message = f"Failed to initialize services/scheduler: {e}"
        log.error("asgi.init_error", error=_error_message)
        raise

    _controller, _engine = controller, engine
    _scheduler_thread = threading.Thread(
        target=_run_scheduler,
        args=(scheduler, controller, settings.run_on_startup),
        daemon=True,
    )
    _scheduler_thread.start()

    await asyncio.sleep(0.1)
    _scheduler_ready = True
    log.info("asgi.startup_complete")

    yield

    log.info("asgi.shutdown", reason="SIGTERM or server stop")
    try:
        scheduler.shutdown(wait=True)
        log.info("asgi.scheduler_shutdown_complete")
    except Exception as e:
        log.warning("asgi.scheduler_shutdown_error", error=str(e))

    if _scheduler_thread and _scheduler_thread.is_alive():
        _scheduler_thread.join(timeout=5.0)
        if _scheduler_thread.is_alive():
            log.warning("asgi.scheduler_thread_timeout", timeout_seconds=5.0)

    log.info("asgi.shutdown_complete")


def _run_scheduler(scheduler: BaseScheduler, controller: SyncController, run_on_startup: bool) -> None:
    """Background thread body: optional first sync, then the blocking scheduler loop."""
    global _scheduler_started, _error_message
    try:
        _scheduler_started = True
        log.info("asgi.scheduler_thread_started")
        if run_on_startup:
            controller.trigger()
        scheduler.start()
    except KeyboardInterrupt:
        log.info("asgi.scheduler_interrupted")
    except Exception as e:
        _error_message = f"Scheduler error: {e}"
        log.error("asgi.scheduler_error", error=_error_message)


# ─────────────────────── Request models ───────────────────────


class _Vaccination(BaseModel):
    medicinal_product: str
    dose_description: str
    vaccination_date: date


class _Recovery(BaseModel):
    valid_from: date
    valid_until: date


class _Test(BaseModel):
    test_type: TestType
    sample_collected_at: datetime
    detected: bool = False


class _Exemption(BaseModel):
    valid_from: date
    valid_until: date | None = None


class StatementRequest(BaseModel):
    """Decoded certificate content as produced by the scanning front end."""

    extended_type: CertificateType
    country_code: str = Field(min_length=2, max_length=2)
    uvci: str = Field(min_length=1)
    vaccination: _Vaccination | None = None
    recovery: _Recovery | None = None
    test: _Test | None = None
    exemption: _Exemption | None = None

    def to_domain(self) -> CertificateStatement:
        return CertificateStatement(
            extended_type=self.extended_type,
            country_code=self.country_code,
            uvci=self.uvci,
            vaccination=VaccinationEntry(**self.vaccination.model_dump()) if self.vaccination else None,
            recovery=RecoveryEntry(**self.recovery.model_dump()) if self.recovery else None,
            test=TestEntry(**self.test.model_dump()) if self.test else None,
            exemption=ExemptionEntry(**self.exemption.model_dump()) if self.exemption else None,
        )


# ─────────────────────── FastAPI Application ───────────────────────

app = FastAPI(
    title="dgc-verifier",
    description="Offline certificate verification with a synchronized revocation list",
    version=__version__,
    lifespan=lifespan,
)


@app.get("/health")
async def health() -> JSONResponse:
    """Liveness: 200 while the scheduler thread runs and startup did not fail."""
    if _error_message:
        log.warning("health.check_failed", error=_error_message)
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "error": _error_message},
        )

    if not _scheduler_thread or not _scheduler_thread.is_alive():
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "reason": "scheduler thread not running"},
        )

    return JSONResponse(
        status_code=200,
        content={"status": "healthy", "scheduler_running": True},
    )


@app.get("/ready")
async def ready() -> JSONResponse:
    """
    Readiness: 202 while starting, 503 on error, 200 once the scheduler runs.

    `scans_allowed` reports whether validation is already possible (a first
    synchronization has completed, or synchronization is disabled).
    """
    if not _scheduler_ready or not _scheduler_started:
        return JSONResponse(
            status_code=202,
            content={"status": "starting", "scheduler_started": _scheduler_started},
        )

    if _error_message:
        return JSONResponse(
            status_code=503,
            content={"status": "error", "error": _error_message},
        )

    return JSONResponse(
        status_code=200,
        content={
            "status": "ready",
            "scheduler_running": _scheduler_thread is not None and _scheduler_thread.is_alive(),
            "scans_allowed": _engine.scan_allowed() if _engine else False,
        },
    )


@app.get("/info")
async def info() -> dict[str, Any]:
    return {
        "name": "dgc-verifier",
        "version": __version__,
        "scheduler_running": _scheduler_thread is not None and _scheduler_thread.is_alive(),
        "scheduler_started": _scheduler_started,
        "scheduler_ready": _scheduler_ready,
        "has_error": _error_message is not None,
    }


@app.post("/trigger")
async def trigger() -> JSONResponse:
    """
    Run one synchronization attempt now, ignoring the staleness window.

    Returns 409 when an attempt is already in flight, 503 before startup.
    """
    return await _run_sync("trigger", lambda controller: controller.start())


@app.post("/sync/download")
async def sync_download() -> JSONResponse:
    """User confirmation: download or resume the pending version whatever its size."""
    return await _run_sync("download", lambda controller: controller.start_download())


@app.get("/sync/status")
async def sync_status() -> JSONResponse:
    if _controller is None:
        return _unavailable("Sync controller not initialized")
    return JSONResponse(
        status_code=200,
        content={**_controller.snapshot(), "recent": _recent.as_list()},
    )


@app.post("/validate")
async def validate(
    statement: StatementRequest,
    scan_mode: ScanMode = Query(default=ScanMode.BASE),
) -> JSONResponse:
    """
    Validate a decoded certificate under `scan_mode`.

    423 while scans are not allowed yet (no completed synchronization).
    """
    if _engine is None:
        return _unavailable("Validation engine not initialized")
    if not _engine.scan_allowed():
        return JSONResponse(
            status_code=423,
            content={"status": "locked", "reason": "revocation list not synchronized yet"},
        )
    decision = _engine.validate(statement.to_domain(), scan_mode)
    return JSONResponse(
        status_code=200,
        content={
            "status": decision.status.value,
            "reason": decision.reason.value if decision.reason else None,
        },
    )


async def _run_sync(operation: str, action: Callable[[SyncController], bool]) -> JSONResponse:
    if _controller is None:
        return _unavailable("Sync controller not initialized")

    controller = _controller
    log.info("sync.manual_start", operation=operation, source="REST")
    try:
        ran = await asyncio.to_thread(action, controller)
    except Exception as e:
        log.error("sync.manual_exception", operation=operation, error=str(e))
        return JSONResponse(status_code=500, content={"status": "error", "error": str(e)})

    if not ran:
        return JSONResponse(
            status_code=409,
            content={"status": "busy", "reason": "synchronization already in progress"},
        )
    last = controller.last_result
    return JSONResponse(
        status_code=200,
        content={
            "status": "done",
            "result": last.value if last else None,
            "state": controller.state.value,
        },
    )


def _unavailable(reason: str) -> JSONResponse:
    return JSONResponse(status_code=503, content={"status": "unavailable", "reason": reason})


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "dgc_verifier.asgi:app",
        host="0.0.0.0",
        port=8000,
        reload=False,
        log_level="info",
    )
