"""Standalone runner for the monthly award scheduler.

Alternative to the arq worker for deployments without an arq process:
bootstraps DB and Redis, migrates legacy grades once, then keeps the
in-process scheduler ticking until SIGINT/SIGTERM.

Usage: python -m tarbiya.workers.awards_runner
"""

from __future__ import annotations

import asyncio
import logging
import signal

from tarbiya.awards.scheduler import MonthlyAwardScheduler
from tarbiya.config import get_settings
from tarbiya.database import close_db, get_session_factory, init_db
from tarbiya.engagement.legacy_sweep import sync_legacy_task_grade_points
from tarbiya.logging_config import setup_logging, tick_context
from tarbiya.redis_client import close_redis, get_redis, init_redis

logger = logging.getLogger(__name__)


async def main() -> None:
    """Run the monthly award scheduler until signalled."""
    settings = get_settings()
    setup_logging(settings, service="awards-runner")
    await init_db(settings.database_url)
    await init_redis(settings.redis_url, settings.redis_max_connections)
    session_factory = get_session_factory()

    try:
        with tick_context("legacy_grade_sweep"):
            async with session_factory() as db:
                result = await sync_legacy_task_grade_points(db, get_redis(), settings.legacy_sweep_batch_size)
            logger.info("Legacy grade sweep migrated %d assignments", result["migrated"])
    except Exception:
        logger.exception("Legacy grade sweep failed")

    scheduler = MonthlyAwardScheduler(session_factory, redis=get_redis(), settings=settings)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    scheduler.start()
    logger.info("Monthly award scheduler running (interval=%ss)", scheduler.interval_seconds)
    try:
        await stop_event.wait()
    finally:
        await scheduler.stop()
        await close_redis()
        await close_db()
        logger.info("Monthly award scheduler stopped")


if __name__ == "__main__":
    asyncio.run(main())
