"""HITL expiry worker: flips overdue ``awaiting_approval`` records to ``expired``.

Started as a background task by the API lifespan, or run standalone:

    python -m workers.hitl_expiry_worker
"""

from __future__ import annotations

import asyncio
import os
import sys
from typing import Optional

_BACKEND = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND not in sys.path:
    sys.path.insert(0, _BACKEND)

from config import settings
from models.database import AsyncSessionLocal, init_database
from services.hitl import ApprovalQueue
from utils.logger import get_logger, setup_logging

logger = get_logger("hitl_expiry_worker")


async def sweep_once(queue: ApprovalQueue) -> int:
    """One sweep; errors are logged and reported as zero expired."""
    try:
        return await queue.expire_stale()
    except Exception as exc:
        logger.exception("HITL expiry sweep failed", error=str(exc))
        return 0


async def run_worker_loop(queue: ApprovalQueue, interval_seconds: Optional[float] = None) -> None:
    """Sweep at startup, then every ``interval_seconds`` until cancelled."""
    interval = interval_seconds or settings.HITL_SWEEP_INTERVAL_SECONDS
    expired = await sweep_once(queue)
    logger.info("HITL expiry worker started", interval_seconds=interval, expired_on_startup=expired)
    while True:
        await asyncio.sleep(interval)
        await sweep_once(queue)


async def main() -> None:
    setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON, log_file=settings.LOG_FILE)
    await init_database()
    logger.info("Database initialized")
    try:
        await run_worker_loop(ApprovalQueue(AsyncSessionLocal))
    except asyncio.CancelledError:
        logger.info("HITL expiry worker shutting down")


if __name__ == "__main__":
    asyncio.run(main())
