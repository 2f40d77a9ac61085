"""Background scheduling for the periodic sheet sync."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.orm import Session, sessionmaker

from src.storage.database import session_scope
from src.sync.notifications import TaskNotifier
from src.sync.orchestrator import run_scheduled_sync

logger = logging.getLogger(__name__)

SHEET_SYNC_JOB_ID = "sheet_sync"
DEFAULT_INTERVAL_MINUTES = 6


@dataclass
class SchedulerState:
    """Process-wide scheduler handle, created once at startup."""

    scheduler: Any
    started: bool = False


def create_scheduler_state(timezone: Optional[str] = None, scheduler: Any = None) -> SchedulerState:
    return SchedulerState(scheduler=scheduler or BackgroundScheduler(timezone=timezone))


def start_sheet_sync(
    state: SchedulerState,
    job: Callable[[], Any],
    interval_minutes: int = DEFAULT_INTERVAL_MINUTES,
) -> bool:
    """Register the interval job and start the scheduler.

    Returns ``False`` without touching the scheduler when it was already
    started through ``state``.
    """

    if state.started:
        logger.info("Sheet sync scheduler already running; ignoring start request")
        return False

    state.scheduler.add_job(
        job,
        "interval",
        minutes=interval_minutes,
        id=SHEET_SYNC_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    if not state.scheduler.running:
        state.scheduler.start()
    state.started = True
    logger.info("Sheet sync scheduled", extra={"interval_minutes": interval_minutes})
    return True


def shutdown(state: SchedulerState) -> None:
    """Shut down the scheduler if running."""

    if state.scheduler.running:
        state.scheduler.shutdown()
    state.started = False


def build_sync_job(
    session_factory: sessionmaker[Session], sheets_client, notifier: TaskNotifier
) -> Callable[[], None]:
    """Return a job that runs one scheduled pass in its own session."""

    def _run() -> None:
        try:
            with session_scope(session_factory) as session:
                summary = run_scheduled_sync(session, sheets_client, notifier)
        except Exception:  # noqa: BLE001
            logger.exception("Scheduled sheet sync failed")
            return

        failures = [
            entry
            for entry in summary["properties"] + summary["companies"]
            if not entry.get("success")
        ]
        logger.info(
            "Scheduled sheet sync finished",
            extra={
                "properties": len(summary["properties"]),
                "companies": len(summary["companies"]),
                "failures": len(failures),
            },
        )

    return _run


def start_scheduler_from_config(
    config, session_factory: sessionmaker[Session], sheets_client, notifier: TaskNotifier
) -> Optional[SchedulerState]:
    """Start the periodic sync if configuration permits."""

    if not getattr(config, "sheet_sync_enabled", True):
        logger.info("Sheet sync is disabled via configuration")
        return None

    state = create_scheduler_state(timezone=getattr(config, "timezone", None))
    start_sheet_sync(
        state,
        build_sync_job(session_factory, sheets_client, notifier),
        interval_minutes=getattr(config, "sheet_sync_interval_minutes", DEFAULT_INTERVAL_MINUTES),
    )
    return state
