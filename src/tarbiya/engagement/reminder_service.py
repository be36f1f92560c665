"""Pending-task reminders.

A task is pending for a student when it belongs to the student's curator,
is active (or has no status) and the student has not turned anything in
for it yet. Pending tasks whose deadline falls within the next 72 hours
are "due soon".
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tarbiya.db.models import Student, Task, TaskAssignment
from tarbiya.engagement.notification_service import add_notification
from tarbiya.engagement.week_utils import as_utc

logger = structlog.get_logger()

DUE_SOON_WINDOW = timedelta(hours=72)
DUE_SOON_TITLE_LIMIT = 5
TURNED_IN_STATUSES = ("under_review", "graded", "rejected", "approved", "submitted")


def _reminder_lines(pending: int, due_soon: int, titles: list[str]) -> list[str]:
    lines = []
    if pending > 0:
        lines.append(f"You have {pending} pending tasks")
    if due_soon > 0:
        lines.append(f"{due_soon} tasks are due within 72 hours")
    if titles:
        lines.append(f"Due soon: {', '.join(titles)}")
    return lines


async def get_pending_task_stats(db: AsyncSession, student_id: str, now: datetime | None = None) -> dict:
    """Pending and due-soon counts for one student, plus ready-made reminder lines."""
    now = datetime.now(timezone.utc) if now is None else as_utc(now)
    due_soon_until = now + DUE_SOON_WINDOW

    result = await db.execute(
        select(Task.title, Task.deadline_at, TaskAssignment.id, TaskAssignment.status)
        .select_from(Student)
        .join(Task, Task.curator_id == Student.curator_id)
        .outerjoin(
            TaskAssignment,
            and_(TaskAssignment.task_id == Task.id, TaskAssignment.student_id == Student.user_id),
        )
        .where(Student.user_id == student_id, or_(Task.status.is_(None), Task.status == "active"))
        .order_by(Task.deadline_at.asc().nulls_last(), Task.created_at.desc())
    )

    pending = 0
    due_soon = 0
    titles: list[str] = []
    for title, deadline_at, assignment_id, status in result:
        if assignment_id is not None and (status or "").lower() in TURNED_IN_STATUSES:
            continue
        pending += 1
        if deadline_at is not None and now <= as_utc(deadline_at) <= due_soon_until:
            due_soon += 1
            if len(titles) < DUE_SOON_TITLE_LIMIT:
                titles.append(title or "Task")

    return {
        "pending_count": pending,
        "due_soon_count": due_soon,
        "reminders": _reminder_lines(pending, due_soon, titles),
    }


async def _students_in_scope(db: AsyncSession, curator_id: str | None) -> list[tuple[str, str]]:
    stmt = select(Student.user_id, Student.full_name).order_by(Student.full_name.asc())
    if curator_id:
        stmt = stmt.where(Student.curator_id == curator_id)
    result = await db.execute(stmt)
    return [(row.user_id, row.full_name) for row in result]


async def list_cohort_reminders(
    db: AsyncSession,
    curator_id: str | None = None,
    now: datetime | None = None,
) -> list[dict]:
    """Pending-task stats for every student, or one curator's students, by name."""
    rows = []
    for student_id, full_name in await _students_in_scope(db, curator_id):
        stats = await get_pending_task_stats(db, student_id, now)
        rows.append({"student_id": student_id, "full_name": full_name, **stats})
    return rows


async def send_task_reminders(
    db: AsyncSession,
    redis: object | None,
    curator_id: str | None = None,
    now: datetime | None = None,
) -> dict:
    """Notify every in-scope student who has pending tasks. Commits."""
    sent = 0
    for student_id, _ in await _students_in_scope(db, curator_id):
        stats = await get_pending_task_stats(db, student_id, now)
        if stats["pending_count"] < 1:
            continue
        body = f"You have {stats['pending_count']} pending tasks"
        if stats["due_soon_count"] > 0:
            body += f", {stats['due_soon_count']} due soon"
        await add_notification(db, redis, student_id, "Task reminder", body, "reminder")
        sent += 1

    await db.commit()
    logger.info("task_reminders_sent", curator_id=curator_id, sent=sent)
    return {"sent": sent}
