"""
Background jobs.

Each job builds its collaborators per run and reads all state from MongoDB,
so a missed or crashed run is recovered by the next one.
"""

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from rpm_core.core.config import settings
from rpm_core.modules.alerts.service import build_escalation_scheduler

log = structlog.get_logger()

ESCALATION_JOB_ID = "alert_escalation"

_scheduler: AsyncIOScheduler | None = None


async def run_escalation_sweep() -> None:
    await build_escalation_scheduler().run_once()


def start_scheduler() -> AsyncIOScheduler:
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        return _scheduler

    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        run_escalation_sweep,
        IntervalTrigger(minutes=settings.ESCALATION_INTERVAL_MINUTES),
        id=ESCALATION_JOB_ID,
        name="Escalate unacknowledged alerts",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    log.info(
        "scheduler_started",
        jobs=[job.id for job in scheduler.get_jobs()],
        escalation_interval_minutes=settings.ESCALATION_INTERVAL_MINUTES,
    )
    _scheduler = scheduler
    return scheduler


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler is None:
        return
    if _scheduler.running:
        _scheduler.shutdown(wait=False)
    log.info("scheduler_stopped")
    _scheduler = None
