"""
Application entry point — wires dependencies and starts the scheduler.

Composition root: creates concrete adapters, injects them into the
SyncController and the ValidationEngine, and hands the controller's
trigger to the scheduler.

This is the ONLY place where concrete classes are instantiated.
Everything else depends on Protocol interfaces.

Responsibilities:
  1. Configure structlog
  2. Load and validate configuration from environment
  3. Create concrete adapters (HTTP gateway + probe, store, progress repository)
  4. Load the rule catalog
  5. Create and start the scheduler
"""

from __future__ import annotations

import logging
import sys
from datetime import timedelta
from typing import TypeAlias

import structlog

from dgc_verifier import __version__
from dgc_verifier.adapters.http_gateway import HttpConnectivityProbe, HttpRevocationGateway
from dgc_verifier.adapters.memory import InMemoryProgressRepository, InMemoryRevocationStore
from dgc_verifier.adapters.repository import (
    PsycopgProgressRepository,
    PsycopgRevocationStore,
    create_schema,
)
from dgc_verifier.config import AppSettings, StoreBackend
from dgc_verifier.domain.ports import ProgressRepository, RevocationStore
from dgc_verifier.scheduler import create_scheduler, register_shutdown_signals
from dgc_verifier.sync.controller import SyncContext, SyncController
from dgc_verifier.validation.catalog import RuleCatalog
from dgc_verifier.validation.engine import ValidationEngine


def configure_structlog(log_level: str = "INFO") -> None:
    """Console-rendered structured logging, filtered at `log_level`."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


_Adapters: TypeAlias = tuple[
    HttpRevocationGateway,
    HttpConnectivityProbe,
    RevocationStore,
    ProgressRepository,
]


def _create_adapters(settings: AppSettings) -> _Adapters:
    """
    Instantiate all concrete adapters from application settings.

    The store backend decides between PostgreSQL (schema created on the
    fly) and the in-process store.
    """
    gateway = HttpRevocationGateway(
        base_url=settings.gateway.base_url,
        status_path=settings.gateway.status_path,
        chunk_path=settings.gateway.chunk_path,
        timeout=settings.http_timeout_seconds,
    )
    probe = HttpConnectivityProbe(url=settings.gateway.base_url)

    store: RevocationStore
    progress: ProgressRepository
    if settings.store is StoreBackend.POSTGRES:
        if settings.database is None:
            raise ValueError("STORE=postgres requires DATABASE__DSN or the DATABASE__* components")
        dsn = settings.database.get_dsn()
        create_schema(dsn)
        store = PsycopgRevocationStore(dsn=dsn)
        progress = PsycopgProgressRepository(dsn=dsn)
    else:
        store = InMemoryRevocationStore()
        progress = InMemoryProgressRepository()
    return gateway, probe, store, progress


def _create_services(settings: AppSettings) -> tuple[SyncController, ValidationEngine]:
    """Controller and engine sharing one catalog, store and progress repository."""
    gateway, probe, store, progress = _create_adapters(settings)
    catalog = RuleCatalog.from_file(settings.rules.settings_file, home_country=settings.rules.home_country)
    controller = SyncController(
        SyncContext(
            gateway=gateway,
            store=store,
            progress=progress,
            connectivity=probe,
            catalog=catalog,
            automatic_max_size_bytes=settings.sync.automatic_max_size_bytes,
            staleness=timedelta(hours=settings.sync.staleness_hours),
        )
    )
    engine = ValidationEngine(catalog=catalog, store=store, progress=progress)
    return controller, engine


def main() -> None:
    """Wire dependencies and launch the scheduled synchronization."""
    try:
        settings = AppSettings()
    except Exception as e:
        print(f"FATAL: Configuration error: {e}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    configure_structlog(settings.log_level)
    log = structlog.get_logger()

    log.info(
        "app.starting",
        version=__version__,
        log_level=settings.log_level,
        store=settings.store.value,
        interval_seconds=settings.scheduler.interval_seconds,
        run_on_startup=settings.run_on_startup,
    )

    controller, _ = _create_services(settings)
    controller.initialize()

    scheduler = create_scheduler(
        trigger_fn=controller.trigger,
        interval_seconds=settings.scheduler.interval_seconds,
        jitter_seconds=settings.scheduler.jitter_seconds,
        run_on_startup=settings.run_on_startup,
    )
    register_shutdown_signals(scheduler)

    log.info("app.scheduler_starting", interval_seconds=settings.scheduler.interval_seconds)

    try:
        scheduler.start()
    except KeyboardInterrupt:
        log.info("app.shutdown", reason="signal received")
    except SystemExit:
        log.info("app.shutdown", reason="signal received")
        raise
    except Exception as e:
        log.error("app.fatal_error", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
