"""
Scheduler — periodic DRL synchronization trigger.

Uses APScheduler (3.x) with an interval trigger plus jitter: every tick
calls `SyncController.trigger()` inside a LoggingExecutionContext; the
controller itself decides whether an attempt is due (in-flight guard, staleness window).

Graceful shutdown: SIGINT/SIGTERM stop the scheduler cleanly.
"""

from __future__ import annotations

import signal
import sys
from collections.abc import Callable

import structlog
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from dgc_verifier.domain.result import LoggingExecutionContext, Result

log = structlog.get_logger()

JOB_ID = "drl_sync"


def create_scheduler(
    trigger_fn: Callable[[], bool],
    interval_seconds: int = 60,
    jitter_seconds: int = 5,
    run_on_startup: bool = True,
    scheduler: BaseScheduler | None = None,
) -> BaseScheduler:
    """
    Register the sync job on a scheduler (a BlockingScheduler unless one is given).

    Args:
        trigger_fn: Zero-argument callable returning whether an attempt ran.
        interval_seconds: Tick period.
        jitter_seconds: Random delay added to each tick.
        run_on_startup: If True, tick once immediately before entering the loop.

    Returns:
        The configured scheduler (call .start() to begin).
    """
    scheduler = scheduler or BlockingScheduler()
    ctx = LoggingExecutionContext(operation="DrlSync")

    def _job() -> None:
        """Run one tick within the logging context and log the outcome."""
        result = ctx.execute(lambda: Result.success(trigger_fn()))
        if result.is_success():
            log.debug("scheduler.tick", attempted=result.value())
        else:
            log.error("scheduler.job_failed", failure=str(result.error()))

    scheduler.add_job(
        _job,
        trigger=IntervalTrigger(seconds=interval_seconds, jitter=jitter_seconds or None),
        id=JOB_ID,
        name="DRL synchronization",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    if run_on_startup:
        log.info("scheduler.startup_run", message="Triggering synchronization on startup")
        _job()

    return scheduler


def register_shutdown_signals(scheduler: BaseScheduler) -> None:
    """Register SIGINT and SIGTERM handlers for graceful shutdown."""

    def _shutdown(signum: int, frame: object) -> None:
        sig_name = signal.Signals(signum).name
        log.info("scheduler.shutdown_requested", signal=sig_name)
        scheduler.shutdown(wait=False)
        sys.exit(0)

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)
