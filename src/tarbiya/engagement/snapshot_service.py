"""Gamification snapshot: score, weekly streak, level and badges.

``sync_student_gamification`` is the single recomputation path. Every point
mutation, challenge review and certificate issuance ends by calling it so
the cached score, streak-derived badges and milestone badges stay in step.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select, union_all
from sqlalchemy.ext.asyncio import AsyncSession

from tarbiya.db.models import (
    PointsLedger,
    Student,
    TaskAssignment,
    TaskSubmission,
    WeeklyChallengeEntry,
)
from tarbiya.engagement.badge_service import ensure_milestone_badges, get_student_badges
from tarbiya.engagement.levels import compute_level
from tarbiya.engagement.week_utils import compute_weekly_streak

SNAPSHOT_BADGE_LIMIT = 50


def empty_snapshot() -> dict:
    """Snapshot for a missing student."""
    return {"score": 0, "streak": 0, "level": compute_level(0), "badges": []}


async def get_student_score(db: AsyncSession, student_id: str | None) -> int:
    """Cached score for a student, 0 when unknown."""
    if not student_id:
        return 0
    result = await db.execute(select(Student.score).where(Student.user_id == student_id).limit(1))
    score = result.scalar_one_or_none()
    return max(0, int(score or 0))


async def fetch_activity_times(db: AsyncSession, student_id: str) -> list[datetime]:
    """Every dated activity event: task submissions, challenge entries, ledger entries."""
    submissions = (
        select(TaskSubmission.submitted_at.label("activity_at"))
        .join(TaskAssignment, TaskAssignment.id == TaskSubmission.assignment_id)
        .where(TaskAssignment.student_id == student_id)
    )
    entries = select(WeeklyChallengeEntry.created_at.label("activity_at")).where(
        WeeklyChallengeEntry.student_id == student_id
    )
    ledger = select(PointsLedger.created_at.label("activity_at")).where(PointsLedger.student_id == student_id)

    activity = union_all(submissions, entries, ledger).subquery()
    result = await db.execute(
        select(activity.c.activity_at).where(activity.c.activity_at.isnot(None))
    )
    return [row[0] for row in result]


async def calculate_weekly_streak(
    db: AsyncSession,
    student_id: str | None,
    now: datetime | None = None,
) -> int:
    """Consecutive active weeks up to and including the current one."""
    if not student_id:
        return 0
    activity_times = await fetch_activity_times(db, student_id)
    return compute_weekly_streak(activity_times, now)


async def sync_student_gamification(
    db: AsyncSession,
    student_id: str | None,
    now: datetime | None = None,
) -> dict:
    """Recompute the snapshot and grant any milestone badges now earned."""
    if not student_id:
        return empty_snapshot()
    if now is None:
        now = datetime.now(timezone.utc)

    score = await get_student_score(db, student_id)
    streak = await calculate_weekly_streak(db, student_id, now)
    await ensure_milestone_badges(db, student_id, score, streak)
    badges = await get_student_badges(db, student_id, SNAPSHOT_BADGE_LIMIT)

    return {
        "score": score,
        "streak": streak,
        "level": compute_level(score),
        "badges": badges,
    }
