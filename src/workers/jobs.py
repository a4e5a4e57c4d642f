"""
Worker jobs for certification upkeep.

Level validity is reconciled on every dashboard load, but users who never
come back would keep stale achievements. The sweep job closes that gap and
reschedules itself on the worker's scheduler.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any

import structlog
from rq import Queue, get_current_job
from src.core.config import get_settings
from src.domain.services.level_validity import LevelValidityService
from src.infrastructure.db.session import dispose_engine, session_scope

logger = structlog.get_logger()


def reconcile_validity_job(user_id: str) -> dict[str, Any]:
    """Reconcile achievement validity for a single user."""
    return asyncio.run(_run(_reconcile_user(user_id)))


def reconcile_all_validity_job(reschedule: bool = False) -> dict[str, Any]:
    """
    Reconcile achievement validity for every user holding a level.

    Args:
        reschedule: When true, enqueue the next sweep after
            ``VALIDITY_SWEEP_INTERVAL_SECONDS`` on the same queue.
    """
    result = asyncio.run(_run(_reconcile_all()))
    if reschedule:
        _schedule_next_sweep()
    return result


async def _run(work: Any) -> dict[str, Any]:
    # Each job gets a fresh event loop, so pooled connections must not outlive it
    try:
        return await work
    finally:
        await dispose_engine()


async def _reconcile_user(user_id: str) -> dict[str, Any]:
    async with session_scope() as session:
        report = await LevelValidityService(session).reconcile_validity(user_id=user_id)
    result = {"user_id": user_id, "checked": report.checked, "changed": report.changed}
    logger.info("validity_reconcile_job_completed", **result)
    return result


async def _reconcile_all() -> dict[str, Any]:
    settings = get_settings()
    async with session_scope() as session:
        try:
            report = await LevelValidityService(session).reconcile_all(
                batch_size=settings.validity_sweep_batch_size
            )
        except Exception as e:
            logger.error("validity_sweep_job_failed", error=str(e), exc_info=True)
            raise
    return {"checked": report.checked, "changed": report.changed}


def _schedule_next_sweep() -> None:
    job = get_current_job()
    if job is None:
        return
    settings = get_settings()
    queue = Queue(job.origin, connection=job.connection)
    queue.enqueue_in(
        timedelta(seconds=settings.validity_sweep_interval_seconds),
        reconcile_all_validity_job,
        reschedule=True,
    )
    logger.info(
        "validity_sweep_rescheduled",
        queue=job.origin,
        delay_seconds=settings.validity_sweep_interval_seconds,
    )
