"""Monthly award pipeline.

Run lifecycle per month key::

    (absent) -> processing -> completed | failed

The run row is the distributed lock: inserting it is the claim, and
UNIQUE(month_key) makes every other worker back off. ``completed`` is
terminal. ``failed`` can be reopened by a forced rerun.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy import delete, exists, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tarbiya.awards.certificate_service import (
    create_monthly_rank_certificate,
    find_award_certificate,
    insert_award_certificate,
)
from tarbiya.awards.month_utils import is_consecutive_month_keys, month_bounds, month_key, previous_month
from tarbiya.awards.templates import CertificateTemplateResolver, resolve_monthly_certificate_templates
from tarbiya.config import Settings, get_settings
from tarbiya.db.models import (
    AwardType,
    Certificate,
    MonthlyAwardRun,
    MonthlyLeaderboard,
    PointsLedger,
    RunStatus,
    Student,
    User,
)
from tarbiya.engagement.badge_rules import TOP_STREAK_BADGE
from tarbiya.engagement.badge_service import award_badge
from tarbiya.engagement.limits import to_int
from tarbiya.engagement.notification_service import add_notification
from tarbiya.engagement.snapshot_service import sync_student_gamification
from tarbiya.engagement.week_utils import as_utc

logger = structlog.get_logger()

STREAK_LENGTH = 3


async def acquire_monthly_award_run(db: AsyncSession, month_key_value: str) -> bool:
    """Claim the month by inserting its run row. Commits immediately.

    Returns False when the row already exists (another worker claimed it, or
    the month is already done).
    """
    db.add(MonthlyAwardRun(
        month_key=month_key_value,
        status=RunStatus.PROCESSING.value,
        message="Auto monthly award run",
    ))
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        return False
    return True


async def get_monthly_award_run(db: AsyncSession, month_key_value: str) -> MonthlyAwardRun | None:
    result = await db.execute(
        select(MonthlyAwardRun).where(MonthlyAwardRun.month_key == month_key_value).limit(1)
    )
    return result.scalars().first()


async def reopen_failed_run(db: AsyncSession, month_key_value: str) -> bool:
    """Move a failed run back to processing. Completed and in-flight runs are left alone.

    The status check and the write are one conditional UPDATE, so of two
    concurrent forced reruns only one gets the row.
    """
    result = await db.execute(
        update(MonthlyAwardRun)
        .where(
            MonthlyAwardRun.month_key == month_key_value,
            MonthlyAwardRun.status == RunStatus.FAILED.value,
        )
        .values(status=RunStatus.PROCESSING.value, message="Force rerun", processed_at=None)
    )
    await db.commit()
    if result.rowcount != 1:
        return False
    logger.info("monthly_award_run_reopened", month_key=month_key_value)
    return True


async def finalize_monthly_award_run(
    db: AsyncSession,
    month_key_value: str,
    status: RunStatus,
    message: str | None,
) -> None:
    run = await get_monthly_award_run(db, month_key_value)
    if run is None:
        return
    run.status = status.value
    run.message = message
    run.processed_at = datetime.now(timezone.utc)
    await db.commit()


async def resolve_award_issuer_id(db: AsyncSession, fallback_id: str | None = None) -> str | None:
    """Configured issuer, else the earliest super user, else the earliest admin or super."""
    if fallback_id:
        return fallback_id

    for roles in (("super",), ("admin", "super")):
        result = await db.execute(
            select(User.id).where(User.role.in_(roles)).order_by(User.created_at.asc()).limit(1)
        )
        issuer = result.scalar_one_or_none()
        if issuer:
            return issuer
    return None


def _top_students_query(limit: int, *conditions):
    return (
        select(Student.user_id, Student.full_name, Student.score)
        .join(User, User.id == Student.user_id)
        .where(User.role == "student", User.status == "active", Student.score > 0, *conditions)
        .order_by(Student.score.desc(), Student.full_name.asc())
        .limit(limit)
    )


async def fetch_monthly_top_students(db: AsyncSession, month_start: datetime, limit: int = 3) -> list[dict]:
    """Top students who earned ledger points during the month.

    When nobody has ledger activity in the month, falls back to the global
    top by score so awards still post for sparse or migrated months.
    """
    start, end = month_bounds(month_start)
    active_in_month = exists().where(
        PointsLedger.student_id == Student.user_id,
        PointsLedger.created_at >= start,
        PointsLedger.created_at < end,
    )
    result = await db.execute(_top_students_query(limit, active_in_month))
    rows = result.all()
    if not rows:
        logger.info("monthly_top_fallback_global", month_start=start.isoformat())
        result = await db.execute(_top_students_query(limit))
        rows = result.all()

    return [
        {"student_id": row.user_id, "full_name": row.full_name, "score": to_int(row.score, 0)}
        for row in rows
    ]


async def store_monthly_leaderboard(db: AsyncSession, month_key_value: str, rows: list[dict]) -> None:
    """Replace the month's ranked rows. Rank is the 1-based position in ``rows``."""
    await db.execute(delete(MonthlyLeaderboard).where(MonthlyLeaderboard.month_key == month_key_value))
    for index, item in enumerate(rows):
        db.add(MonthlyLeaderboard(
            month_key=month_key_value,
            student_id=item["student_id"],
            rank_position=index + 1,
            score_value=to_int(item.get("score"), 0),
        ))
    await db.flush()


async def list_monthly_leaderboard(db: AsyncSession, month_key_value: str) -> list[dict]:
    result = await db.execute(
        select(MonthlyLeaderboard, Student.full_name)
        .outerjoin(Student, Student.user_id == MonthlyLeaderboard.student_id)
        .where(MonthlyLeaderboard.month_key == month_key_value)
        .order_by(MonthlyLeaderboard.rank_position.asc())
    )
    return [
        {
            "month_key": row.month_key,
            "rank": row.rank_position,
            "student_id": row.student_id,
            "full_name": full_name,
            "score": row.score_value,
        }
        for row, full_name in result
    ]


async def maybe_award_top_streak(
    db: AsyncSession,
    redis: object | None,
    student_id: str | None,
    issued_by: str,
    templates: dict | None,
    month_key_value: str,
) -> bool:
    """Grand certificate when the last three #1 rows are the same student in consecutive months."""
    if not student_id:
        return False

    result = await db.execute(
        select(MonthlyLeaderboard.month_key, MonthlyLeaderboard.student_id)
        .where(MonthlyLeaderboard.rank_position == 1)
        .order_by(MonthlyLeaderboard.month_key.desc())
        .limit(STREAK_LENGTH)
    )
    rows = result.all()
    if len(rows) < STREAK_LENGTH:
        return False

    month_keys = [row.month_key for row in rows]
    if any(row.student_id != student_id for row in rows) or not is_consecutive_month_keys(month_keys):
        return False

    if await find_award_certificate(db, student_id, AwardType.TOP_STREAK, month_key_value):
        return False

    template_url = (templates or {}).get("top")
    created = await insert_award_certificate(db, Certificate(
        student_id=student_id,
        issued_by=issued_by,
        title="Grand certificate",
        rank_label=f"Top 1 ({STREAK_LENGTH} months in a row)",
        award_type=AwardType.TOP_STREAK.value,
        award_month_key=month_key_value,
        award_rank=1,
        note=f"#1 for {STREAK_LENGTH} consecutive months, {month_keys[-1]} to {month_keys[0]}.",
        template_name="grand-certificate",
        template_url=template_url,
        pdf_url=template_url,
        issued_at=datetime.now(timezone.utc),
    ))
    if not created:
        return False

    await award_badge(db, redis, student_id, {
        **TOP_STREAK_BADGE,
        "code": f"{TOP_STREAK_BADGE['code']}_{month_key_value}",
    })
    await add_notification(
        db, redis, student_id,
        "Grand certificate",
        f"Grand certificate awarded for {STREAK_LENGTH} months in a row at #1.",
        "monthly_award",
    )
    logger.info("top_streak_awarded", student_id=student_id, month_key=month_key_value)
    return True


async def _claim_run(db: AsyncSession, month_key_value: str, force: bool) -> bool:
    if await acquire_monthly_award_run(db, month_key_value):
        return True
    if force:
        return await reopen_failed_run(db, month_key_value)
    return False


async def run_monthly_awards_if_due(
    db: AsyncSession,
    redis: object | None = None,
    now: datetime | None = None,
    force: bool = False,
    settings: Settings | None = None,
    template_resolver: CertificateTemplateResolver | None = None,
) -> dict:
    """Award the previous calendar month's top students, at most once per month.

    Never raises once the run is claimed: failures are recorded on the run
    row as ``failed`` and reported in the returned dict.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    if not isinstance(now, datetime):
        return {"processed": False, "reason": "invalid_date"}
    now = as_utc(now)
    settings = settings or get_settings()

    target_month = previous_month(now)
    month_key_value = month_key(target_month)

    if not await _claim_run(db, month_key_value, force):
        logger.info("monthly_awards_skipped", month_key=month_key_value, reason="already_processed")
        return {"processed": False, "reason": "already_processed", "month_key": month_key_value}

    try:
        issued_by = await resolve_award_issuer_id(db, settings.award_issuer_id)
        if not issued_by:
            await finalize_monthly_award_run(db, month_key_value, RunStatus.FAILED, "Award issuer not found")
            logger.warning("monthly_awards_no_issuer", month_key=month_key_value)
            return {"processed": False, "reason": "issuer_not_found", "month_key": month_key_value}

        if template_resolver is not None:
            templates = template_resolver.resolve()
        else:
            templates = resolve_monthly_certificate_templates()

        winners = await fetch_monthly_top_students(db, target_month, settings.monthly_award_winners)
        await store_monthly_leaderboard(db, month_key_value, winners)

        certificates_issued = 0
        streak_issued = False
        for rank, student in enumerate(winners, start=1):
            created = await create_monthly_rank_certificate(
                db, redis, month_key_value, rank,
                student["student_id"], student["full_name"], student["score"],
                issued_by, templates,
            )
            if created:
                certificates_issued += 1
            if rank == 1:
                streak_issued = await maybe_award_top_streak(
                    db, redis, student["student_id"], issued_by, templates, month_key_value
                )

        for student in winners:
            await sync_student_gamification(db, student["student_id"], now)

        await finalize_monthly_award_run(
            db, month_key_value, RunStatus.COMPLETED,
            f"Winners: {len(winners)}. Certificates: {certificates_issued}. "
            f"Streak: {'yes' if streak_issued else 'no'}",
        )
    except Exception as exc:
        await db.rollback()
        message = str(exc) or exc.__class__.__name__
        logger.exception("monthly_awards_failed", month_key=month_key_value)
        try:
            await finalize_monthly_award_run(db, month_key_value, RunStatus.FAILED, message)
        except Exception:
            await db.rollback()
            logger.exception("monthly_award_run_finalize_failed", month_key=month_key_value)
        return {"processed": False, "reason": "failed", "month_key": month_key_value, "error": message}

    logger.info(
        "monthly_awards_completed",
        month_key=month_key_value,
        winners=len(winners),
        certificates_issued=certificates_issued,
        streak_issued=streak_issued,
    )
    return {
        "processed": True,
        "month_key": month_key_value,
        "winners": winners,
        "certificates_issued": certificates_issued,
        "streak_issued": streak_issued,
    }
