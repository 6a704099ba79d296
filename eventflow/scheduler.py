"""APScheduler integration.

The scheduler runs no periodic jobs. It hosts one-shot jobs submitted after a
transaction commits so outbound delivery never blocks a request.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from apscheduler.schedulers.background import BackgroundScheduler

logger = logging.getLogger("uvicorn.error")

_scheduler: BackgroundScheduler | None = None


def start_scheduler() -> BackgroundScheduler:
    global _scheduler
    if _scheduler and _scheduler.running:
        return _scheduler
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.start()
    _scheduler = scheduler
    return scheduler


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        _scheduler = None


def scheduler_running() -> bool:
    return bool(_scheduler and _scheduler.running)


def submit(func: Callable[..., Any], *args: Any) -> bool:
    """Queue ``func`` to run once in the background.

    Returns ``False`` when no scheduler is running so the caller can fall back
    to running it inline.
    """
    if not scheduler_running():
        return False
    _scheduler.add_job(func, args=list(args), misfire_grace_time=None)
    logger.debug("Queued background job %s", getattr(func, "__name__", func))
    return True
