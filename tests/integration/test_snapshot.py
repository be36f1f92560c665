"""Snapshot sync tests: streak sources, idempotence, badge duplicates."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from tarbiya.db.models import StudentBadge
from tarbiya.engagement.badge_service import award_badge, get_student_badges, has_badge
from tarbiya.engagement.snapshot_service import calculate_weekly_streak, sync_student_gamification

pytestmark = pytest.mark.asyncio


async def _badge_count(db, student_id: str) -> int:
    result = await db.execute(
        select(func.count()).select_from(StudentBadge).where(StudentBadge.student_id == student_id)
    )
    return result.scalar_one()


class TestWeeklyStreakSources:
    """Submissions, challenge entries and ledger rows all count as activity."""

    async def test_submissions_and_entries(self, db_session, factory, fixed_now):
        """A submission this week and an entry last week make a streak of 2."""
        sid = await factory.student("Ali")
        aid = await factory.assignment(sid)
        await factory.submission(aid, fixed_now)
        await factory.challenge_entry(sid, created_at=fixed_now - timedelta(weeks=1))
        await factory.submission(aid, fixed_now - timedelta(weeks=3))

        assert await calculate_weekly_streak(db_session, sid, fixed_now) == 2

    async def test_unknown_student(self, db_session, fixed_now):
        """An empty id has no streak."""
        assert await calculate_weekly_streak(db_session, "", fixed_now) == 0


class TestSyncStudentGamification:
    async def test_idempotent(self, db_session, factory, fixed_now):
        """A second sync grants nothing new and returns the same snapshot."""
        sid = await factory.student("Ali", score=35)
        aid = await factory.assignment(sid)
        for weeks in range(4):
            await factory.submission(aid, fixed_now - timedelta(weeks=weeks))

        first = await sync_student_gamification(db_session, sid, fixed_now)
        count_after_first = await _badge_count(db_session, sid)
        second = await sync_student_gamification(db_session, sid, fixed_now)

        assert first == second
        assert await _badge_count(db_session, sid) == count_after_first
        codes = {badge["code"] for badge in first["badges"]}
        assert codes == {"score_10", "score_30", "streak_2", "streak_4"}
        assert first["streak"] == 4
        assert first["level"]["level"] == 2

    async def test_missing_student(self, db_session):
        """A None id yields the empty snapshot."""
        snapshot = await sync_student_gamification(db_session, None)
        assert snapshot["score"] == 0
        assert snapshot["badges"] == []

    async def test_challenge_win_badge_rule(self, db_session, factory, fixed_now):
        """An approved first place counts as a win."""
        sid = await factory.student("Ali")
        await factory.challenge_entry(sid, status="approved", rank_position=1)
        snapshot = await sync_student_gamification(db_session, sid, fixed_now)
        assert "challenge_winner" in {badge["code"] for badge in snapshot["badges"]}

    async def test_unapproved_first_place_is_not_a_win(self, db_session, factory, fixed_now):
        """Rank 1 without approval is not a win."""
        sid = await factory.student("Ali")
        await factory.challenge_entry(sid, status="submitted", rank_position=1)
        await sync_student_gamification(db_session, sid, fixed_now)
        assert not await has_badge(db_session, sid, "challenge_winner")


class TestAwardBadge:
    async def test_duplicate_grant_is_noop(self, db_session, factory, mock_redis):
        """The second grant is refused and sends no push."""
        sid = await factory.student("Ali")
        badge = {"code": "special", "name": "Special", "icon": "star"}

        assert await award_badge(db_session, mock_redis, sid, badge, notify=True) is True
        assert await award_badge(db_session, mock_redis, sid, badge, notify=True) is False
        assert await _badge_count(db_session, sid) == 1
        assert mock_redis.publish.await_count == 1
        channel = mock_redis.publish.await_args.args[0]
        assert channel == f"ws:user:{sid}"

    async def test_incomplete_badge_rejected(self, db_session, factory):
        """A badge needs a code, a name and a student."""
        sid = await factory.student("Ali")
        assert await award_badge(db_session, None, sid, {"code": "x"}) is False
        assert await award_badge(db_session, None, None, {"code": "x", "name": "X"}) is False

    async def test_listing_limit_clamped(self, db_session, factory):
        """Listing limit is kept at 1 or above."""
        sid = await factory.student("Ali")
        for i in range(3):
            await award_badge(db_session, None, sid, {"code": f"b{i}", "name": f"B{i}"})
        assert len(await get_student_badges(db_session, sid, limit=0)) == 1
        assert len(await get_student_badges(db_session, sid, limit=500)) == 3
