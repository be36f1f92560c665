"""Notification persistence and pub/sub push tests."""

from __future__ import annotations

import json

import pytest

from tarbiya.engagement.notification_service import add_notification

pytestmark = pytest.mark.asyncio


class TestAddNotification:
    async def test_persists_and_pushes(self, db_session, factory, mock_redis):
        """The row is stored and the payload goes to ws:user:{id}."""
        sid = await factory.student("Ali")
        notification = await add_notification(db_session, mock_redis, sid, "Hello", "Body", "badge")

        assert notification.id
        channel, payload = mock_redis.publish.await_args.args
        assert channel == f"ws:user:{sid}"
        data = json.loads(payload)
        assert data["event"] == "notification"
        assert data["data"]["type"] == "badge"
        assert data["data"]["title"] == "Hello"

    async def test_redis_failure_is_not_fatal(self, db_session, factory, mock_redis):
        """A dead Redis still leaves the stored notification."""
        sid = await factory.student("Ali")
        mock_redis.publish.side_effect = ConnectionError("redis down")
        notification = await add_notification(db_session, mock_redis, sid, "Hello", "Body")
        assert notification is not None
        assert notification.type == "engagement"

    async def test_without_redis(self, db_session, factory):
        """No client means store only."""
        sid = await factory.student("Ali")
        assert await add_notification(db_session, None, sid, "Hello", "Body") is not None

    async def test_missing_user(self, db_session, mock_redis):
        """No user id means nothing stored or pushed."""
        assert await add_notification(db_session, mock_redis, None, "Hello", "Body") is None
        mock_redis.publish.assert_not_awaited()
