"""Certificate issuance: monthly rank awards, challenge ranks and ad hoc grants."""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tarbiya.awards.templates import monthly_rank_template_url
from tarbiya.db.models import AwardType, Certificate, LedgerSource
from tarbiya.engagement.ledger_service import apply_points
from tarbiya.engagement.limits import normalize_limit, to_int
from tarbiya.engagement.notification_service import add_notification
from tarbiya.engagement.snapshot_service import sync_student_gamification

logger = structlog.get_logger()


def format_rank_label(rank: int) -> str:
    return f"{rank}-o'rin"


async def find_award_certificate(
    db: AsyncSession,
    student_id: str,
    award_type: AwardType | str,
    month_key: str,
    award_rank: int | None = None,
) -> Certificate | None:
    """Look up an award certificate by its natural key (rank optional)."""
    award_type = award_type.value if isinstance(award_type, AwardType) else award_type
    conditions = [
        Certificate.student_id == student_id,
        Certificate.award_type == award_type,
        Certificate.award_month_key == month_key,
    ]
    if award_rank is not None:
        conditions.append(Certificate.award_rank == award_rank)
    result = await db.execute(select(Certificate).where(*conditions).limit(1))
    return result.scalars().first()


async def insert_award_certificate(db: AsyncSession, certificate: Certificate) -> bool:
    """Insert inside a savepoint. A duplicate award key means it was already issued."""
    try:
        async with db.begin_nested():
            db.add(certificate)
    except IntegrityError:
        logger.info(
            "certificate_already_issued",
            student_id=certificate.student_id,
            award_type=certificate.award_type,
            month_key=certificate.award_month_key,
            award_rank=certificate.award_rank,
        )
        return False
    return True


async def create_monthly_rank_certificate(
    db: AsyncSession,
    redis: object | None,
    month_key: str,
    rank: int,
    student_id: str,
    full_name: str | None,
    score: int,
    issued_by: str,
    templates: dict | None,
) -> bool:
    """Issue the monthly rank certificate once per (student, month, rank)."""
    if await find_award_certificate(db, student_id, AwardType.MONTHLY_RANK, month_key, rank):
        return False

    template_url = monthly_rank_template_url(templates, rank)
    label = format_rank_label(rank)
    created = await insert_award_certificate(db, Certificate(
        student_id=student_id,
        issued_by=issued_by,
        title="Monthly winner",
        rank_label=label,
        award_type=AwardType.MONTHLY_RANK.value,
        award_month_key=month_key,
        award_rank=rank,
        note=f"{month_key} results. Score: {to_int(score, 0)}.",
        template_name=f"monthly-rank-{rank}",
        template_url=template_url,
        pdf_url=template_url,
        issued_at=datetime.now(timezone.utc),
    ))
    if not created:
        return False

    await add_notification(
        db, redis, student_id,
        "Monthly award certificate",
        f"Congratulations {full_name or 'student'}: {label} certificate awarded.",
        "monthly_award",
    )
    logger.info("monthly_rank_certificate_issued", student_id=student_id, month_key=month_key, rank=rank)
    return True


async def create_challenge_rank_certificate(
    db: AsyncSession,
    student_id: str,
    challenge_id: str,
    rank_position: int,
    issued_by: str,
) -> bool:
    """Certificate for placing 1st-3rd in a weekly challenge, once per (student, challenge, rank)."""
    rank = to_int(rank_position, 0)
    if rank not in (1, 2, 3):
        return False

    label = format_rank_label(rank)
    existing = await db.execute(
        select(Certificate.id).where(
            Certificate.student_id == student_id,
            Certificate.challenge_id == challenge_id,
            Certificate.rank_label == label,
        ).limit(1)
    )
    if existing.scalar_one_or_none() is not None:
        return False

    db.add(Certificate(
        student_id=student_id,
        challenge_id=challenge_id,
        issued_by=issued_by,
        title="Weekly challenge winner",
        rank_label=label,
        note="Issued automatically. PDF template attached later.",
        template_name="weekly_challenge_default",
        issued_at=datetime.now(timezone.utc),
    ))
    await db.flush()
    return True


async def issue_certificate(
    db: AsyncSession,
    redis: object | None,
    student_id: str,
    issued_by: str,
    title: str,
    rank_label: str | None = None,
    note: str | None = None,
    challenge_id: str | None = None,
    template_name: str | None = None,
    template_url: str | None = None,
    pdf_url: str | None = None,
    bonus_points: int = 0,
) -> dict:
    """Ad hoc certificate issued by an admin, with an optional point bonus.

    The bonus goes through the ledger as ``certificate_bonus``; without one
    the snapshot is still resynced so the ``certified`` badge lands.
    """
    certificate = Certificate(
        student_id=student_id,
        challenge_id=challenge_id,
        issued_by=issued_by,
        title=title.strip(),
        rank_label=rank_label.strip() if rank_label else None,
        note=note.strip() if note else None,
        template_name=template_name.strip() if template_name else None,
        template_url=template_url.strip() if template_url else None,
        pdf_url=pdf_url.strip() if pdf_url else None,
        issued_at=datetime.now(timezone.utc),
    )
    db.add(certificate)
    await db.flush()

    bonus = max(0, to_int(bonus_points, 0))
    if bonus > 0:
        snapshot = await apply_points(
            db, redis, student_id, bonus,
            source_type=LedgerSource.CERTIFICATE_BONUS,
            source_id=certificate.id,
            note=f"Certificate bonus: {certificate.title}",
            actor_id=issued_by,
        )
    else:
        snapshot = {"delta": 0, **await sync_student_gamification(db, student_id)}

    await add_notification(
        db, redis, student_id,
        "New certificate",
        f"{certificate.title} certificate awarded",
        "certificate",
    )
    logger.info("certificate_issued", student_id=student_id, certificate_id=certificate.id, bonus=bonus)
    return {"id": certificate.id, **snapshot}


async def count_student_certificates(db: AsyncSession, student_id: str) -> int:
    result = await db.execute(
        select(func.count()).select_from(Certificate).where(Certificate.student_id == student_id)
    )
    return int(result.scalar_one() or 0)


async def list_student_certificates(db: AsyncSession, student_id: str, limit: int = 50) -> list[dict]:
    """Certificates for a student, newest first."""
    result = await db.execute(
        select(Certificate)
        .where(Certificate.student_id == student_id)
        .order_by(Certificate.issued_at.desc())
        .limit(normalize_limit(limit, 1, 200, default=50))
    )
    return [
        {
            "id": c.id,
            "title": c.title,
            "rank_label": c.rank_label,
            "award_type": c.award_type,
            "award_month_key": c.award_month_key,
            "award_rank": c.award_rank,
            "challenge_id": c.challenge_id,
            "issued_by": c.issued_by,
            "note": c.note,
            "template_name": c.template_name,
            "template_url": c.template_url,
            "pdf_url": c.pdf_url,
            "issued_at": c.issued_at.isoformat() if c.issued_at else None,
        }
        for c in result.scalars()
    ]
