"""Score ledger: the single point-mutation entry point plus read-side helpers."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone

import structlog
from sqlalchemy import case, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tarbiya.awards.month_utils import month_key, shift_month
from tarbiya.db.models import LedgerSource, PointsLedger, Student, TaskAssignment, TaskSubmission
from tarbiya.engagement.exceptions import LedgerWriteError
from tarbiya.engagement.limits import normalize_limit, to_int
from tarbiya.engagement.snapshot_service import (
    empty_snapshot,
    get_student_score,
    sync_student_gamification,
)
from tarbiya.engagement.week_utils import as_utc

logger = structlog.get_logger()

__all__ = [
    "apply_points",
    "get_points_history",
    "get_student_progress",
    "get_student_score",
    "reconcile_student_score",
]


async def apply_points(
    db: AsyncSession,
    redis: object | None,
    student_id: str | None,
    points: int,
    source_type: LedgerSource | str = LedgerSource.MANUAL,
    source_id: str | None = None,
    note: str | None = None,
    actor_id: str | None = None,
    now: datetime | None = None,
) -> dict:
    """Apply a point delta to a student and return a fresh snapshot.

    1. score = max(0, score + delta) on the cached total
    2. append one ledger row carrying the raw, unclamped delta
    3. recompute streak, badges and level

    A zero delta skips 1-2 and only resyncs. Callers own the commit.
    """
    if not student_id:
        return {"delta": 0, **empty_snapshot()}

    if now is None:
        now = datetime.now(timezone.utc)
    delta = to_int(points, 0)
    source = source_type.value if isinstance(source_type, LedgerSource) else str(source_type)

    if delta != 0:
        new_score = Student.score + delta
        await db.execute(
            update(Student)
            .where(Student.user_id == student_id)
            .values(score=case((new_score < 0, 0), else_=new_score))
            .execution_options(synchronize_session="fetch")
        )
        db.add(PointsLedger(
            student_id=student_id,
            source_type=source,
            source_id=source_id,
            points=delta,
            note=note,
            created_by=actor_id,
            created_at=now,
        ))
        try:
            await db.flush()
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error("ledger_write_failed", student_id=student_id, delta=delta, source_type=source)
            raise LedgerWriteError(student_id, delta) from exc

        logger.info("points_applied", student_id=student_id, delta=delta, source_type=source, source_id=source_id)

    snapshot = await sync_student_gamification(db, student_id, now)
    return {"delta": delta, **snapshot}


async def reconcile_student_score(db: AsyncSession, student_id: str, fix: bool = False) -> dict:
    """Replay the ledger with per-step clamping and compare against the cached score.

    With ``fix=True`` a drifted cached score is overwritten by the replayed value.
    """
    cached = await get_student_score(db, student_id)
    result = await db.execute(
        select(PointsLedger.points)
        .where(PointsLedger.student_id == student_id)
        .order_by(PointsLedger.created_at.asc(), PointsLedger.id.asc())
    )
    replayed = 0
    for points in result.scalars():
        replayed = max(0, replayed + int(points))

    drifted = replayed != cached
    if drifted and fix:
        await db.execute(
            update(Student)
            .where(Student.user_id == student_id)
            .values(score=replayed)
            .execution_options(synchronize_session="fetch")
        )
        await db.flush()
        logger.warning("score_reconciled", student_id=student_id, cached=cached, replayed=replayed)

    return {
        "student_id": student_id,
        "cached_score": cached,
        "ledger_score": replayed,
        "drifted": drifted,
        "fixed": drifted and fix,
    }


async def get_points_history(
    db: AsyncSession,
    student_id: str,
    page: int = 1,
    per_page: int = 50,
) -> dict:
    """Ledger entries for a student, newest first (paginated)."""
    page = max(1, to_int(page, 1))
    per_page = normalize_limit(per_page, 1, 100, default=50)

    total_result = await db.execute(
        select(func.count()).select_from(PointsLedger).where(PointsLedger.student_id == student_id)
    )
    total = total_result.scalar_one()

    result = await db.execute(
        select(PointsLedger)
        .where(PointsLedger.student_id == student_id)
        .order_by(PointsLedger.created_at.desc(), PointsLedger.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return {
        "entries": [
            {
                "points": e.points,
                "source_type": e.source_type,
                "source_id": e.source_id,
                "note": e.note,
                "created_by": e.created_by,
                "created_at": e.created_at.isoformat() if e.created_at else None,
            }
            for e in result.scalars()
        ],
        "total": total,
        "page": page,
        "per_page": per_page,
    }


def _month_series(values: dict[str, int], start: datetime, months: int) -> dict:
    labels = [month_key(shift_month(start, i)) for i in range(months)]
    return {"labels": labels, "values": [values.get(label, 0) for label in labels]}


async def get_student_progress(
    db: AsyncSession,
    student_id: str,
    months: int = 6,
    now: datetime | None = None,
) -> dict:
    """Monthly points earned and tasks submitted over the last N months (N in [3, 18])."""
    now = datetime.now(timezone.utc) if now is None else as_utc(now)
    safe_months = normalize_limit(months, 3, 18, default=6)
    current_month = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    start = shift_month(current_month, -(safe_months - 1))

    points_by_month: dict[str, int] = defaultdict(int)
    ledger = await db.execute(
        select(PointsLedger.created_at, PointsLedger.points).where(
            PointsLedger.student_id == student_id,
            PointsLedger.created_at >= start,
            PointsLedger.created_at <= now,
        )
    )
    for created_at, points in ledger:
        points_by_month[month_key(created_at)] += int(points)

    submissions_by_month: dict[str, int] = defaultdict(int)
    submissions = await db.execute(
        select(TaskSubmission.submitted_at)
        .join(TaskAssignment, TaskAssignment.id == TaskSubmission.assignment_id)
        .where(
            TaskAssignment.student_id == student_id,
            TaskSubmission.submitted_at >= start,
            TaskSubmission.submitted_at <= now,
        )
    )
    for (submitted_at,) in submissions:
        submissions_by_month[month_key(submitted_at)] += 1

    return {
        "points": _month_series(points_by_month, start, safe_months),
        "submissions": _month_series(submissions_by_month, start, safe_months),
    }
