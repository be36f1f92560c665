"""ORM models for the engagement engine and the CRUD rows it reads.

Users, students, tasks and challenges are owned by the surrounding CRUD
layer; the engine only reads them (and writes back ``points_applied``
through the grading service). Ledger, badges, certificates and the
monthly award tables are owned here.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tarbiya.db.base import Base


def new_id() -> str:
    """Generate a string primary key."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerSource(str, enum.Enum):
    """What caused a ledger entry."""

    TASK_GRADE = "task_grade"
    TASK_GRADE_MIGRATION = "task_grade_migration"
    WEEKLY_CHALLENGE = "weekly_challenge"
    CERTIFICATE_BONUS = "certificate_bonus"
    MANUAL = "manual"


class RunStatus(str, enum.Enum):
    """Monthly award run lifecycle: processing -> completed | failed."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class AwardType(str, enum.Enum):
    MONTHLY_RANK = "monthly_rank"
    TOP_STREAK = "top_streak"


# ---------------------------------------------------------------------------
# Identity (CRUD-owned)
# ---------------------------------------------------------------------------


class User(Base):
    """Maps to the 'users' table. Role is one of student, admin, super."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class Student(Base):
    """Student profile with the cached running score."""

    __tablename__ = "students"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    curator_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


# ---------------------------------------------------------------------------
# Tasks & challenges (CRUD-owned, read for activity / wins)
# ---------------------------------------------------------------------------


class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    curator_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str | None] = mapped_column(String(50), nullable=True, default="active")
    deadline_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class TaskAssignment(Base):
    """One task handed to one student; ``points_applied`` mirrors what reached the ledger."""

    __tablename__ = "task_assignments"
    __table_args__ = (UniqueConstraint("task_id", "student_id", name="uq_task_assignments_task_student"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    student_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="under_review")
    graded_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    points_applied: Mapped[int | None] = mapped_column(Integer, nullable=True, default=0)
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    task: Mapped[Task] = relationship("Task", lazy="joined")


class TaskSubmission(Base):
    __tablename__ = "task_submissions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    assignment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("task_assignments.id", ondelete="CASCADE"), nullable=False
    )
    text: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class WeeklyChallenge(Base):
    __tablename__ = "weekly_challenges"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    created_by: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    bonus_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class WeeklyChallengeEntry(Base):
    __tablename__ = "weekly_challenge_entries"
    __table_args__ = (
        UniqueConstraint("challenge_id", "student_id", name="uq_challenge_entries_challenge_student"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    challenge_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("weekly_challenges.id", ondelete="CASCADE"), nullable=False
    )
    student_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="submitted")
    score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rank_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    points_applied: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    challenge: Mapped[WeeklyChallenge] = relationship("WeeklyChallenge", lazy="joined")


# ---------------------------------------------------------------------------
# Engagement (engine-owned)
# ---------------------------------------------------------------------------


class PointsLedger(Base):
    """Immutable point delta log. Source of truth for the cached student score."""

    __tablename__ = "student_points_ledger"
    __table_args__ = (
        Index("idx_points_ledger_student_created", "student_id", "created_at"),
        Index("idx_points_ledger_created", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    student_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    source_type: Mapped[str] = mapped_column(String(50), nullable=False)
    source_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class StudentBadge(Base):
    """Granted badges. UNIQUE(student_id, badge_code) makes a duplicate grant a rejected write."""

    __tablename__ = "student_badges"
    __table_args__ = (UniqueConstraint("student_id", "badge_code", name="uq_student_badges_student_code"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    student_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    badge_code: Mapped[str] = mapped_column(String(100), nullable=False)
    badge_name: Mapped[str] = mapped_column(String(255), nullable=False)
    badge_icon: Mapped[str | None] = mapped_column(String(100), nullable=True)
    badge_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    awarded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class Certificate(Base):
    """Awarded certificate. The award tuple is the monthly idempotency guard."""

    __tablename__ = "certificates"
    __table_args__ = (
        UniqueConstraint(
            "student_id", "award_type", "award_month_key", "award_rank",
            name="uq_certificates_award",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    student_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    challenge_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("weekly_challenges.id", ondelete="SET NULL"), nullable=True
    )
    issued_by: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    rank_label: Mapped[str | None] = mapped_column(String(50), nullable=True)
    award_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    award_month_key: Mapped[str | None] = mapped_column(String(7), nullable=True)
    award_rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    template_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    template_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    pdf_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class MonthlyLeaderboard(Base):
    """Top-N snapshot per month, read back for the 3-month #1 streak."""

    __tablename__ = "monthly_leaderboard"
    __table_args__ = (
        UniqueConstraint("month_key", "rank_position", name="uq_monthly_leaderboard_month_rank"),
        UniqueConstraint("month_key", "student_id", name="uq_monthly_leaderboard_month_student"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    month_key: Mapped[str] = mapped_column(String(7), nullable=False)
    student_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    rank_position: Mapped[int] = mapped_column(Integer, nullable=False)
    score_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class MonthlyAwardRun(Base):
    """One row per month. UNIQUE(month_key) is the run claim."""

    __tablename__ = "monthly_award_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    month_key: Mapped[str] = mapped_column(String(7), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=RunStatus.PROCESSING.value)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class Notification(Base):
    """Persisted user notifications. The engine only ever writes these."""

    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
