"""Badge grants with duplicate prevention, milestone sweep and listing."""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tarbiya.db.models import Certificate, StudentBadge, WeeklyChallengeEntry
from tarbiya.engagement.badge_rules import BADGE_RULES, BadgeRule, rules_met
from tarbiya.engagement.limits import normalize_limit
from tarbiya.engagement.notification_service import add_notification

logger = structlog.get_logger()

WINNING_ENTRY_STATUSES = ("approved", "graded")


async def has_badge(db: AsyncSession, student_id: str, badge_code: str) -> bool:
    """Check if the student already holds a badge."""
    result = await db.execute(
        select(StudentBadge.id).where(
            StudentBadge.student_id == student_id,
            StudentBadge.badge_code == badge_code,
        ).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def award_badge(
    db: AsyncSession,
    redis: object | None,
    student_id: str | None,
    badge: dict | BadgeRule,
    notify: bool = False,
) -> bool:
    """Grant a badge once. Returns True if newly granted, False if already held.

    The existence check keeps the common path cheap; the UNIQUE constraint on
    (student_id, badge_code) settles concurrent grants inside a savepoint.
    """
    if isinstance(badge, BadgeRule):
        badge = badge.as_badge()
    if not student_id or not badge.get("code") or not badge.get("name"):
        return False

    if await has_badge(db, student_id, badge["code"]):
        return False

    try:
        async with db.begin_nested():
            db.add(StudentBadge(
                student_id=student_id,
                badge_code=badge["code"],
                badge_name=badge["name"],
                badge_icon=badge.get("icon"),
                badge_description=badge.get("description"),
                awarded_at=datetime.now(timezone.utc),
            ))
    except IntegrityError:
        logger.info("badge_already_granted", student_id=student_id, badge_code=badge["code"])
        return False

    logger.info("badge_granted", student_id=student_id, badge_code=badge["code"])
    if notify:
        await add_notification(
            db, redis, student_id,
            "New badge",
            f"{badge['name']} badge awarded",
            "badge",
        )
    return True


async def fetch_badge_metrics(db: AsyncSession, student_id: str) -> dict[str, int]:
    """Count challenge wins and certificates for badge evaluation."""
    wins = await db.execute(
        select(func.count()).select_from(WeeklyChallengeEntry).where(
            WeeklyChallengeEntry.student_id == student_id,
            WeeklyChallengeEntry.rank_position == 1,
            WeeklyChallengeEntry.status.in_(WINNING_ENTRY_STATUSES),
        )
    )
    certificates = await db.execute(
        select(func.count()).select_from(Certificate).where(Certificate.student_id == student_id)
    )
    return {
        "wins": int(wins.scalar_one() or 0),
        "certificates": int(certificates.scalar_one() or 0),
    }


async def ensure_milestone_badges(
    db: AsyncSession,
    student_id: str | None,
    score: int,
    streak: int,
) -> list[str]:
    """Grant every milestone badge the student currently qualifies for.

    Returns the codes granted by this call (empty when nothing changed).
    """
    if not student_id:
        return []

    metrics = await fetch_badge_metrics(db, student_id)
    metrics["score"] = max(0, score)
    metrics["streak"] = max(0, streak)

    granted = []
    for rule in rules_met(metrics, BADGE_RULES):
        if await award_badge(db, None, student_id, rule):
            granted.append(rule.code)
    return granted


async def get_student_badges(db: AsyncSession, student_id: str, limit: int = 20) -> list[dict]:
    """Return the student's badges, newest first."""
    safe_limit = normalize_limit(limit, 1, 100)
    result = await db.execute(
        select(StudentBadge)
        .where(StudentBadge.student_id == student_id)
        .order_by(StudentBadge.awarded_at.desc(), StudentBadge.badge_code.asc())
        .limit(safe_limit)
    )
    return [
        {
            "code": row.badge_code,
            "name": row.badge_name,
            "icon": row.badge_icon,
            "description": row.badge_description,
            "awarded_at": row.awarded_at.isoformat() if row.awarded_at else None,
        }
        for row in result.scalars()
    ]
