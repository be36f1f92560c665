"""Leaderboard over the cached student score.

Ordering is a total order: score desc, badge count desc, full name asc.
Ranks are positions in that order, never stored.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tarbiya.db.models import Student, StudentBadge, User
from tarbiya.engagement.levels import compute_level
from tarbiya.engagement.limits import normalize_limit, to_int

LEADERBOARD_MAX_LIMIT = 1000
PUBLIC_LEADERBOARD_MAX_LIMIT = 100


def _active_students(curator_id: str | None = None):
    """Students in leaderboard scope: active users with role 'student'."""
    conditions = [User.role == "student", User.status == "active"]
    if curator_id:
        conditions.append(Student.curator_id == curator_id)
    return conditions


async def get_leaderboard(
    db: AsyncSession,
    limit: int = 10,
    curator_id: str | None = None,
    include_all: bool = False,
    max_limit: int = LEADERBOARD_MAX_LIMIT,
) -> list[dict]:
    """Ranked active students, globally or within one curator's cohort."""
    badge_count = func.count(StudentBadge.id).label("badge_count")
    stmt = (
        select(Student.user_id, Student.full_name, Student.score, badge_count)
        .join(User, User.id == Student.user_id)
        .outerjoin(StudentBadge, StudentBadge.student_id == Student.user_id)
        .where(*_active_students(curator_id))
        .group_by(Student.user_id, Student.full_name, Student.score)
        .order_by(Student.score.desc(), badge_count.desc(), Student.full_name.asc())
    )
    if not include_all:
        stmt = stmt.limit(normalize_limit(limit, 1, max_limit))

    result = await db.execute(stmt)
    return [
        {
            "rank": index + 1,
            "student_id": row.user_id,
            "full_name": row.full_name,
            "score": to_int(row.score, 0),
            "badge_count": to_int(row.badge_count, 0),
            "level": compute_level(row.score)["level"],
        }
        for index, row in enumerate(result)
    ]


async def get_student_rank(
    db: AsyncSession,
    student_id: str | None,
    curator_id: str | None = None,
) -> int | None:
    """Competition rank: 1 + number of in-scope students with a strictly higher score.

    Ties share a rank. Badge count and name are ignored here, so under ties
    this can disagree with the position shown by ``get_leaderboard``.
    """
    if not student_id:
        return None

    own = await db.execute(select(Student.score).where(Student.user_id == student_id).limit(1))
    score = own.scalar_one_or_none()
    if score is None:
        return None

    ahead = await db.execute(
        select(func.count())
        .select_from(Student)
        .join(User, User.id == Student.user_id)
        .where(*_active_students(curator_id), Student.score > score)
    )
    return 1 + int(ahead.scalar_one() or 0)
