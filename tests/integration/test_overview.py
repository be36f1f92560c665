"""Student engagement overview tests."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import Mock

import pytest

from tarbiya.awards.certificate_service import issue_certificate
from tarbiya.engagement.ledger_service import apply_points
from tarbiya.engagement.overview_service import get_student_overview

pytestmark = pytest.mark.asyncio


class TestStudentOverview:
    async def test_aggregates_everything(self, db_session, factory, fixed_now):
        """One call returns snapshot, rank, top 10, progress, reminders and certificate count."""
        ali = await factory.student("Ali")
        await factory.student("Bea", score=90)
        await apply_points(db_session, None, ali, 25, now=fixed_now)
        await issue_certificate(db_session, None, ali, await factory.curator(), "Olympiad")
        await factory.task("Essay", deadline_at=fixed_now + timedelta(hours=12))

        overview = await get_student_overview(db_session, ali, fixed_now)

        assert overview["student_id"] == ali
        assert overview["full_name"] == "Ali"
        assert overview["score"] == 25
        assert overview["level"]["level"] == 2
        assert overview["weekly_streak"] == 1
        assert {"score_10", "certified"} <= {badge["code"] for badge in overview["badges"]}
        assert overview["rank"] == 2
        assert [row["full_name"] for row in overview["leaderboard_top10"]] == ["Bea", "Ali"]
        assert overview["progress"]["points"]["labels"][-1] == "2024-03"
        assert overview["progress"]["points"]["values"][-1] == 25
        assert overview["reminders"]["pending_count"] == 1
        assert overview["reminders"]["due_soon_count"] == 1
        assert overview["certificates_count"] == 1

    async def test_unknown_student(self, db_session, fixed_now):
        """A missing student yields None."""
        assert await get_student_overview(db_session, "missing", fixed_now) is None

    async def test_pokes_scheduler(self, db_session, factory, fixed_now):
        """A passed scheduler gets poked so a due award run starts."""
        ali = await factory.student("Ali")
        scheduler = Mock()

        await get_student_overview(db_session, ali, fixed_now, scheduler=scheduler)

        scheduler.poke.assert_called_once_with()
