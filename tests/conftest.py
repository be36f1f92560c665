"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tarbiya.database import close_db, create_tables, get_session_factory, init_db
from tarbiya.db.models import (
    Student,
    Task,
    TaskAssignment,
    TaskSubmission,
    User,
    WeeklyChallenge,
    WeeklyChallengeEntry,
)

TEST_DATABASE_URL = "sqlite+aiosqlite://"

# Wednesday, mid-March 2024. The previous award month is 2024-02.
FIXED_NOW = datetime(2024, 3, 13, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory database per test."""
    await init_db(TEST_DATABASE_URL)
    await create_tables()
    async with get_session_factory()() as session:
        yield session
    await close_db()


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Redis stand-in that records pub/sub publishes."""
    redis = AsyncMock()
    redis.publish = AsyncMock(return_value=1)
    return redis


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


class Factory:
    """Row builders for the CRUD-owned tables the engine reads.

    Builders take and return plain ids where a later rollback could expire
    the ORM instance.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self._seq = 0
        self._curator_id: str | None = None

    def _next(self) -> int:
        self._seq += 1
        return self._seq

    async def user(self, role: str = "student", status: str = "active", created_at: datetime | None = None) -> str:
        n = self._next()
        user = User(
            role=role,
            email=f"{role}{n}@example.com",
            status=status,
            created_at=created_at or FIXED_NOW - timedelta(days=365) + timedelta(minutes=n),
        )
        self.db.add(user)
        await self.db.flush()
        return user.id

    async def curator(self) -> str:
        if self._curator_id is None:
            self._curator_id = await self.user(role="admin")
        return self._curator_id

    async def student(
        self,
        full_name: str = "Student",
        score: int = 0,
        status: str = "active",
        curator_id: str | None = None,
    ) -> str:
        user_id = await self.user(role="student", status=status)
        self.db.add(Student(
            user_id=user_id,
            curator_id=curator_id or await self.curator(),
            full_name=full_name,
            score=score,
        ))
        await self.db.flush()
        return user_id

    async def task(
        self,
        title: str = "Essay",
        deadline_at: datetime | None = None,
        status: str | None = "active",
        curator_id: str | None = None,
    ) -> str:
        task = Task(curator_id=curator_id or await self.curator(), title=title, deadline_at=deadline_at, status=status)
        self.db.add(task)
        await self.db.flush()
        return task.id

    async def assignment(
        self,
        student_id: str,
        graded_score: int | None = None,
        points_applied: int | None = 0,
        status: str = "under_review",
        title: str = "Essay",
        updated_at: datetime | None = None,
        task_id: str | None = None,
    ) -> str:
        task = await self.db.get(Task, task_id or await self.task(title=title))
        assignment = TaskAssignment(
            task=task,
            student_id=student_id,
            graded_score=graded_score,
            points_applied=points_applied,
            status=status,
            updated_at=updated_at or FIXED_NOW,
        )
        self.db.add(assignment)
        await self.db.flush()
        return assignment.id

    async def submission(self, assignment_id: str, submitted_at: datetime) -> str:
        submission = TaskSubmission(assignment_id=assignment_id, text="answer", submitted_at=submitted_at)
        self.db.add(submission)
        await self.db.flush()
        return submission.id

    async def challenge_entry(
        self,
        student_id: str,
        bonus_points: int = 0,
        status: str = "submitted",
        rank_position: int | None = None,
        created_at: datetime | None = None,
    ) -> str:
        challenge = WeeklyChallenge(created_by=await self.curator(), title="Weekly quiz", bonus_points=bonus_points)
        entry = WeeklyChallengeEntry(
            challenge=challenge,
            student_id=student_id,
            status=status,
            rank_position=rank_position,
            created_at=created_at or FIXED_NOW,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry.id


@pytest.fixture
def factory(db_session: AsyncSession) -> Factory:
    return Factory(db_session)


@pytest_asyncio.fixture
async def file_db(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """File-backed database for tests that race several real connections."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'tarbiya.db'}")
    await create_tables()
    yield get_session_factory()
    await close_db()
