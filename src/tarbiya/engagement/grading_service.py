"""Point-affecting grading transitions for task assignments and challenge entries.

Both transitions follow the same pattern: recompute what the row should
have contributed (``points_applied``), write the new value, and send only
the difference through the ledger. Re-grading therefore never double
counts.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tarbiya.awards.certificate_service import create_challenge_rank_certificate
from tarbiya.db.models import LedgerSource, TaskAssignment, WeeklyChallengeEntry
from tarbiya.engagement.badge_rules import CHALLENGE_WIN_BADGE
from tarbiya.engagement.badge_service import award_badge
from tarbiya.engagement.exceptions import InvalidScoreError, InvalidStatusError
from tarbiya.engagement.ledger_service import apply_points
from tarbiya.engagement.limits import clamp, to_int
from tarbiya.engagement.notification_service import add_notification
from tarbiya.engagement.snapshot_service import sync_student_gamification

logger = structlog.get_logger()


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET = _Unset()

ASSIGNMENT_STATUSES = ("under_review", "graded", "rejected", "submitted", "approved", "not_submitted")
ENTRY_STATUSES = ("submitted", "under_review", "approved", "graded", "rejected")
SCORED_ENTRY_STATUSES = ("approved", "graded")

TASK_SCORE_MAX = 10
CHALLENGE_SCORE_MAX = 100


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def challenge_rank_bonus(bonus_points: object, rank: object) -> int:
    """Share of the challenge bonus earned by a rank: 100% / 70% / 40% for 1st-3rd."""
    bonus = max(0, to_int(bonus_points, 0))
    position = to_int(rank, 0)
    if bonus < 1 or position < 1:
        return 0
    if position == 1:
        return bonus
    if position == 2:
        return _round_half_up(bonus * 0.7)
    if position == 3:
        return _round_half_up(bonus * 0.4)
    return 0


def _normalize_status(raw: object, allowed: tuple[str, ...]) -> str | None:
    status = str(raw or "").strip().lower()
    if not status:
        return None
    if status not in allowed:
        raise InvalidStatusError(status, allowed)
    return status


def _parse_task_score(raw: object) -> int | None:
    if raw is None or raw == "":
        return None
    try:
        score = float(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise InvalidScoreError(raw, 0, TASK_SCORE_MAX) from None
    if not math.isfinite(score) or score < 0 or score > TASK_SCORE_MAX:
        raise InvalidScoreError(raw, 0, TASK_SCORE_MAX)
    return int(score)


async def update_assignment_grade(
    db: AsyncSession,
    redis: object | None,
    assignment_id: str,
    status: object = UNSET,
    graded_score: object = UNSET,
    feedback: object = UNSET,
    actor_id: str | None = None,
) -> dict | None:
    """Apply a curator's grade to a task assignment.

    Returns None when the assignment does not exist, otherwise the ledger
    delta plus the fresh snapshot. Commits.
    """
    result = await db.execute(select(TaskAssignment).where(TaskAssignment.id == assignment_id))
    assignment = result.scalars().first()
    if assignment is None:
        return None

    next_status = (assignment.status or "").lower()
    if status is not UNSET:
        candidate = _normalize_status(status, ASSIGNMENT_STATUSES)
        if candidate:
            next_status = candidate

    previous_applied = to_int(assignment.points_applied, 0)
    next_applied = previous_applied
    if graded_score is not UNSET:
        parsed = _parse_task_score(graded_score)
        if parsed is not None and status is UNSET:
            next_status = "graded"
        assignment.graded_score = parsed
        next_applied = parsed or 0
    elif next_status == "rejected":
        next_applied = 0

    assignment.status = next_status
    if feedback is not UNSET:
        assignment.feedback = str(feedback).strip() if feedback else None
    assignment.points_applied = next_applied
    assignment.updated_at = datetime.now(timezone.utc)
    await db.flush()

    delta = next_applied - previous_applied
    if delta != 0:
        snapshot = await apply_points(
            db, redis, assignment.student_id, delta,
            source_type=LedgerSource.TASK_GRADE,
            source_id=assignment.id,
            note=f"Grade for {assignment.task.title if assignment.task else 'task'}",
            actor_id=actor_id,
        )
    else:
        snapshot = {"delta": 0, **await sync_student_gamification(db, assignment.student_id)}

    await db.commit()
    logger.info("assignment_graded", assignment_id=assignment.id, status=next_status, delta=delta)
    return snapshot


async def review_challenge_entry(
    db: AsyncSession,
    redis: object | None,
    entry_id: str,
    status: object = UNSET,
    score: object = UNSET,
    rank_position: object = UNSET,
    feedback: object = UNSET,
    actor_id: str | None = None,
) -> dict | None:
    """Review a weekly challenge entry: score, rank bonus, rank certificate and win badge.

    Returns None when the entry does not exist. Commits.
    """
    result = await db.execute(select(WeeklyChallengeEntry).where(WeeklyChallengeEntry.id == entry_id))
    entry = result.scalars().first()
    if entry is None:
        return None

    next_status = (entry.status or "").lower()
    if status is not UNSET:
        next_status = _normalize_status(status, ENTRY_STATUSES) or next_status

    next_score = (
        clamp(to_int(score, 0), 0, CHALLENGE_SCORE_MAX) if score is not UNSET else to_int(entry.score, 0)
    )
    if rank_position is UNSET:
        next_rank = entry.rank_position
    else:
        next_rank = None if rank_position is None else to_int(rank_position, 0) or None

    challenge = entry.challenge
    bonus = challenge_rank_bonus(challenge.bonus_points if challenge else 0, next_rank)

    previous_applied = to_int(entry.points_applied, 0)
    next_applied = previous_applied
    if next_status in SCORED_ENTRY_STATUSES:
        next_applied = next_score + bonus
    elif next_status == "rejected":
        next_applied = 0

    entry.status = next_status
    if score is not UNSET:
        entry.score = next_score
    if rank_position is not UNSET:
        entry.rank_position = next_rank
    if feedback is not UNSET:
        entry.feedback = str(feedback).strip() if feedback else None
    entry.points_applied = next_applied
    entry.updated_at = datetime.now(timezone.utc)
    await db.flush()

    delta = next_applied - previous_applied
    if delta != 0:
        await apply_points(
            db, redis, entry.student_id, delta,
            source_type=LedgerSource.WEEKLY_CHALLENGE,
            source_id=entry.id,
            note=f"{challenge.title if challenge else 'Weekly challenge'} result",
            actor_id=actor_id,
        )

    if next_status in SCORED_ENTRY_STATUSES and next_rank in (1, 2, 3):
        if actor_id or (challenge and challenge.created_by):
            await create_challenge_rank_certificate(
                db, entry.student_id, entry.challenge_id, next_rank, actor_id or challenge.created_by
            )
        if next_rank == 1:
            await award_badge(db, redis, entry.student_id, {
                **CHALLENGE_WIN_BADGE,
                "code": f"{CHALLENGE_WIN_BADGE['code']}_{entry.challenge_id}",
            })

    await add_notification(
        db, redis, entry.student_id,
        "Challenge result",
        f"Status: {next_status}. Score: {next_score}.",
        "challenge_result",
    )

    snapshot = await sync_student_gamification(db, entry.student_id)
    await db.commit()
    logger.info("challenge_entry_reviewed", entry_id=entry.id, status=next_status, rank=next_rank, delta=delta)
    return {"delta": delta, **snapshot}
