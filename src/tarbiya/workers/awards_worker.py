"""arq worker for engagement housekeeping.

Runs the legacy grade sweep once on startup and the monthly award check on
a cron. The award pipeline is idempotent per month, so firing every few
hours is safe and lets a failed month retry on its own.

Usage: arq tarbiya.workers.awards_worker.AwardsWorkerSettings
"""

from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings
from sqlalchemy.ext.asyncio import AsyncSession

from tarbiya.awards.monthly_service import run_monthly_awards_if_due
from tarbiya.config import get_settings
from tarbiya.database import close_db, create_tables, get_session, init_db
from tarbiya.engagement.legacy_sweep import sync_legacy_task_grade_points
from tarbiya.logging_config import setup_logging, tick_context
from tarbiya.redis_client import close_redis, get_redis, init_redis

logger = logging.getLogger(__name__)


async def _get_db_session() -> AsyncSession:
    """Get a database session for the worker."""
    async for session in get_session():
        return session
    raise RuntimeError("Failed to get database session")


async def awards_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize DB + Redis and migrate legacy grades."""
    settings = get_settings()
    setup_logging(settings, service="awards-worker")
    await init_db(settings.database_url)
    if settings.environment == "development":
        await create_tables()
    await init_redis(settings.redis_url, settings.redis_max_connections)
    ctx["redis"] = get_redis()

    db = await _get_db_session()
    try:
        with tick_context("legacy_grade_sweep"):
            result = await sync_legacy_task_grade_points(db, ctx["redis"], settings.legacy_sweep_batch_size)
            logger.info("Legacy grade sweep migrated %d assignments", result["migrated"])
    except Exception:
        logger.exception("Legacy grade sweep failed")
    finally:
        await db.close()
    logger.info("Awards worker started")


async def awards_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    ctx.pop("redis", None)
    await close_redis()
    await close_db()
    logger.info("Awards worker shut down")


async def monthly_award_tick(ctx: dict, force: bool = False) -> dict | None:  # type: ignore[type-arg]
    """Award last month's winners if nobody has yet."""
    db = await _get_db_session()
    try:
        with tick_context("monthly_award_tick"):
            result = await run_monthly_awards_if_due(db, ctx.get("redis"), force=force)
            if result.get("processed"):
                logger.info(
                    "Monthly awards for %s: %d winners, %d certificates",
                    result["month_key"], len(result["winners"]), result["certificates_issued"],
                )
            return result
    except Exception:
        logger.exception("Monthly award tick failed")
        return None
    finally:
        await db.close()


class AwardsWorkerSettings:
    """arq worker settings for the monthly award scheduler."""

    functions = [monthly_award_tick]
    on_startup = awards_startup
    on_shutdown = awards_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    max_jobs = 1
    job_timeout = 600
    cron_jobs = [
        cron(monthly_award_tick, hour={0, 6, 12, 18}, minute=5, run_at_startup=True),
    ]
