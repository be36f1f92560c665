"""In-process periodic trigger for the monthly award pipeline.

The pipeline itself is idempotent per month, so the scheduler only has to
call it often enough. One tick runs at a time; overlapping pokes are
dropped rather than queued.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tarbiya.awards.monthly_service import run_monthly_awards_if_due
from tarbiya.awards.templates import CertificateTemplateResolver
from tarbiya.config import Settings, get_settings
from tarbiya.logging_config import tick_context

logger = structlog.get_logger()

AwardRunner = Callable[..., Awaitable[dict]]


class MonthlyAwardScheduler:
    """Runs the monthly award check on start and then every ``interval_seconds``."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis: object | None = None,
        interval_seconds: float | None = None,
        min_interval_seconds: float | None = None,
        clock: Callable[[], datetime] | None = None,
        settings: Settings | None = None,
        template_resolver: CertificateTemplateResolver | None = None,
        runner: AwardRunner = run_monthly_awards_if_due,
    ) -> None:
        self.settings = settings or get_settings()
        if interval_seconds is None:
            interval_seconds = self.settings.monthly_award_interval_seconds
        if min_interval_seconds is None:
            min_interval_seconds = self.settings.monthly_award_min_interval_seconds

        self.session_factory = session_factory
        self.redis = redis
        self.interval_seconds = max(float(min_interval_seconds), float(interval_seconds))
        self.template_resolver = template_resolver
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._runner = runner
        self._tick_lock = asyncio.Lock()
        self._stopping = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._pending: set[asyncio.Task] = set()
        self.last_result: dict | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def in_flight(self) -> bool:
        return self._tick_lock.locked()

    async def run_once(self, force: bool = False) -> dict | None:
        """Run one tick now. Returns None if a tick was already in flight.

        Errors are logged and swallowed so the loop keeps going.
        """
        if self._tick_lock.locked():
            logger.debug("monthly_award_tick_skipped", reason="in_flight")
            return None

        async with self._tick_lock:
            with tick_context("monthly_award_scheduler"):
                try:
                    async with self.session_factory() as db:
                        result = await self._runner(
                            db,
                            redis=self.redis,
                            now=self._clock(),
                            force=force,
                            settings=self.settings,
                            template_resolver=self.template_resolver,
                        )
                except Exception:
                    logger.exception("monthly_award_tick_failed")
                    return None

                self.last_result = result
                if result.get("processed"):
                    logger.info("monthly_award_tick", month_key=result.get("month_key"), processed=True)
                else:
                    logger.debug("monthly_award_tick", month_key=result.get("month_key"), reason=result.get("reason"))
        return result

    def poke(self) -> asyncio.Task | None:
        """Schedule an immediate tick unless one is already running.

        Callers may drop the returned task. The scheduler holds it until it
        finishes and ``stop()`` waits for it.
        """
        if self._tick_lock.locked() or self._stopping.is_set():
            return None
        task = asyncio.create_task(self.run_once())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def _loop(self) -> None:
        while not self._stopping.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    def start(self) -> None:
        """Start the background loop. The first tick runs immediately."""
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._loop())
        logger.info("monthly_award_scheduler_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Stop the loop and wait for the in-flight tick and any poked ticks."""
        self._stopping.set()
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        logger.info("monthly_award_scheduler_stopped")
