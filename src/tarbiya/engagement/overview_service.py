"""One-call engagement overview for a student's home screen."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tarbiya.awards.certificate_service import count_student_certificates
from tarbiya.db.models import Student
from tarbiya.engagement.leaderboard_service import get_leaderboard, get_student_rank
from tarbiya.engagement.ledger_service import get_student_progress
from tarbiya.engagement.reminder_service import get_pending_task_stats
from tarbiya.engagement.snapshot_service import sync_student_gamification
from tarbiya.engagement.week_utils import as_utc

if TYPE_CHECKING:
    from tarbiya.awards.scheduler import MonthlyAwardScheduler

OVERVIEW_TOP = 10
OVERVIEW_PROGRESS_MONTHS = 6


async def get_student_overview(
    db: AsyncSession,
    student_id: str,
    now: datetime | None = None,
    scheduler: MonthlyAwardScheduler | None = None,
) -> dict | None:
    """Snapshot, rank, top 10, progress, reminders and certificate count in one dict.

    Returns None for an unknown student. The snapshot resync may grant
    milestone badges, so this commits. When a scheduler is passed it is
    poked so a due monthly award run starts in the background.
    """
    if scheduler is not None:
        scheduler.poke()

    result = await db.execute(select(Student.full_name).where(Student.user_id == student_id).limit(1))
    full_name = result.scalar_one_or_none()
    if full_name is None:
        return None

    now = datetime.now(timezone.utc) if now is None else as_utc(now)
    snapshot = await sync_student_gamification(db, student_id, now)
    overview = {
        "student_id": student_id,
        "full_name": full_name or "Student",
        "score": snapshot["score"],
        "level": snapshot["level"],
        "weekly_streak": snapshot["streak"],
        "badges": snapshot["badges"],
        "rank": await get_student_rank(db, student_id),
        "leaderboard_top10": await get_leaderboard(db, limit=OVERVIEW_TOP),
        "progress": await get_student_progress(db, student_id, OVERVIEW_PROGRESS_MONTHS, now),
        "reminders": await get_pending_task_stats(db, student_id, now),
        "certificates_count": await count_student_certificates(db, student_id),
    }
    await db.commit()
    return overview
