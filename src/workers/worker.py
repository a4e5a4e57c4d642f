from __future__ import annotations

import asyncio
from collections.abc import Sequence

import structlog
from redis import Redis
from rq import Queue, Worker
from rq.job import Job
from src.core.config import get_settings
from src.core.logging import setup_logging
from src.workers import jobs

logger = structlog.get_logger()

MAINTENANCE_QUEUE = "maintenance"
QUEUE_NAMES: Sequence[str] = ("default", MAINTENANCE_QUEUE)
REGISTERED_JOBS = {
    "reconcile_validity": jobs.reconcile_validity_job,
    "reconcile_all_validity": jobs.reconcile_all_validity_job,
}
SWEEP_FUNC_NAME = (
    f"{jobs.reconcile_all_validity_job.__module__}.{jobs.reconcile_all_validity_job.__qualname__}"
)


async def main() -> None:
    """Bootstrap the worker, seed the periodic validity sweep and start consuming."""
    setup_logging()
    settings = get_settings()
    redis_connection = Redis.from_url(settings.redis_url)
    logger.info(
        "worker_bootstrap",
        queues=list(QUEUE_NAMES),
        jobs=list(REGISTERED_JOBS.keys()),
        sweep_interval_seconds=settings.validity_sweep_interval_seconds,
    )

    schedule_validity_sweep(redis_connection)
    await asyncio.to_thread(_run_worker, redis_connection, QUEUE_NAMES)


def schedule_validity_sweep(connection: Redis) -> bool:
    """Seed the self-rescheduling sweep unless one is already queued or scheduled.

    Returns True when a new sweep was enqueued.
    """
    queue = Queue(MAINTENANCE_QUEUE, connection=connection)
    pending_ids = list(queue.job_ids) + list(queue.scheduled_job_registry.get_job_ids())
    for job in Job.fetch_many(pending_ids, connection=connection):
        if job is not None and job.func_name == SWEEP_FUNC_NAME:
            logger.info("validity_sweep_already_pending", job_id=job.id)
            return False

    job = queue.enqueue(jobs.reconcile_all_validity_job, reschedule=True)
    logger.info("validity_sweep_scheduled", queue=queue.name, job_id=job.id)
    return True


def enqueue_validity_reconcile(connection: Redis, user_id: str | None = None) -> Job:
    """Queue a one-off reconciliation for one user, or for every holder when no user is given."""
    queue = Queue(MAINTENANCE_QUEUE, connection=connection)
    if user_id:
        job = queue.enqueue(jobs.reconcile_validity_job, user_id)
    else:
        job = queue.enqueue(jobs.reconcile_all_validity_job)
    logger.info("validity_reconcile_enqueued", user_id=user_id, job_id=job.id)
    return job


def _run_worker(connection: Redis, queue_names: Sequence[str]) -> None:
    queues = [Queue(name, connection=connection) for name in queue_names]
    worker = Worker(queues, connection=connection, name="certification-worker")
    worker.work(with_scheduler=True)


if __name__ == "__main__":
    asyncio.run(main())
