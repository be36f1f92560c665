"""One-shot sweep that moves pre-ledger task grades into the ledger.

Assignments graded before the ledger existed carry ``graded_score`` but no
``points_applied``. Each one found gets its grade posted as a
``task_grade_migration`` entry. Running the sweep again finds nothing.

Assignments that already went through grading (a ``task_grade`` ledger row
exists, for example graded then rejected) or are rejected are not legacy
and are never migrated.
"""

from __future__ import annotations

import structlog
from sqlalchemy import exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tarbiya.db.models import LedgerSource, PointsLedger, Task, TaskAssignment
from tarbiya.engagement.ledger_service import apply_points
from tarbiya.engagement.limits import normalize_limit, to_int

logger = structlog.get_logger()

SWEEP_MIN_BATCH = 50
SWEEP_MAX_BATCH = 5000


def _legacy_assignments_query(batch: int):
    graded_through_ledger = exists().where(
        PointsLedger.source_id == TaskAssignment.id,
        PointsLedger.source_type == LedgerSource.TASK_GRADE.value,
    )
    return (
        select(TaskAssignment.id, TaskAssignment.student_id, TaskAssignment.graded_score, Task.title)
        .join(Task, Task.id == TaskAssignment.task_id)
        .where(
            TaskAssignment.graded_score.isnot(None),
            TaskAssignment.graded_score > 0,
            TaskAssignment.status != "rejected",
            or_(TaskAssignment.points_applied.is_(None), TaskAssignment.points_applied == 0),
            ~graded_through_ledger,
        )
        .order_by(TaskAssignment.updated_at.asc())
        .limit(batch)
    )


async def sync_legacy_task_grade_points(
    db: AsyncSession,
    redis: object | None = None,
    limit: int = 500,
) -> dict:
    """Migrate up to ``limit`` (clamped to [50, 5000]) legacy grades, oldest first. Commits."""
    batch = normalize_limit(limit, SWEEP_MIN_BATCH, SWEEP_MAX_BATCH, default=500)
    result = await db.execute(_legacy_assignments_query(batch))
    rows = result.all()

    migrated = 0
    for row in rows:
        points = to_int(row.graded_score, 0)
        if points < 1:
            continue
        assignment = await db.get(TaskAssignment, row.id)
        assignment.points_applied = points
        await apply_points(
            db, redis, row.student_id, points,
            source_type=LedgerSource.TASK_GRADE_MIGRATION,
            source_id=row.id,
            note=f"{row.title or 'Task'} legacy grade migration",
        )
        migrated += 1

    await db.commit()
    if migrated:
        logger.info("legacy_grades_migrated", migrated=migrated, batch=batch)
    return {"migrated": migrated}
