#!/usr/bin/env python
"""
Reconcile certification level validity without going through the worker.

Usage:
    python scripts/reconcile_validity.py                      # every user holding a level
    python scripts/reconcile_validity.py <user_id>            # a single user
    python scripts/reconcile_validity.py --enqueue [user_id]  # hand the run to the worker
"""

import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from redis import Redis
from src.core.config import get_settings
from src.core.logging import setup_logging
from src.domain.services.level_validity import LevelValidityService
from src.infrastructure.db.session import dispose_engine, session_scope
from src.workers.worker import enqueue_validity_reconcile


async def reconcile(user_id: str | None) -> None:
    settings = get_settings()
    setup_logging()

    try:
        async with session_scope() as session:
            service = LevelValidityService(session)
            if user_id:
                report = await service.reconcile_validity(user_id=user_id)
            else:
                report = await service.reconcile_all(batch_size=settings.validity_sweep_batch_size)
    finally:
        await dispose_engine()

    print(f"Checked {report.checked} achievements, {report.changed} changed")


def enqueue(user_id: str | None) -> None:
    setup_logging()
    job = enqueue_validity_reconcile(Redis.from_url(get_settings().redis_url), user_id)
    print(f"Queued job {job.id} on the maintenance queue")


if __name__ == "__main__":
    args = sys.argv[1:]
    if args and args[0] == "--enqueue":
        enqueue(args[1] if len(args) > 1 else None)
    else:
        asyncio.run(reconcile(args[0] if args else None))
