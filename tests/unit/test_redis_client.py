"""Redis client helper tests (client faked)."""

import json
from unittest.mock import AsyncMock, Mock

import pytest

from tarbiya import redis_client
from tarbiya.redis_client import close_redis, get_redis, init_redis, publish_to_user, user_channel

pytestmark = pytest.mark.asyncio


class TestPublishToUser:
    async def test_publishes_event_envelope(self):
        """Payload is the event/data envelope on the user's channel."""
        client = AsyncMock()
        client.publish = AsyncMock(return_value=2)

        receivers = await publish_to_user(client, "u1", "notification", {"id": "n1"})

        assert receivers == 2
        channel, payload = client.publish.await_args.args
        assert channel == user_channel("u1") == "ws:user:u1"
        assert json.loads(payload) == {"event": "notification", "data": {"id": "n1"}}

    async def test_errors_propagate(self):
        """A dead connection is the caller's problem."""
        client = AsyncMock()
        client.publish = AsyncMock(side_effect=ConnectionError("redis down"))
        with pytest.raises(ConnectionError):
            await publish_to_user(client, "u1", "notification", {})


class TestClientLifecycle:
    async def test_get_before_init_raises(self, monkeypatch):
        """The client must be initialised first."""
        monkeypatch.setattr(redis_client, "_client", None)
        with pytest.raises(RuntimeError):
            get_redis()

    async def test_init_get_close(self, monkeypatch):
        """init builds one client from the URL and close releases it."""
        fake = AsyncMock()
        from_url = Mock(return_value=fake)
        monkeypatch.setattr(redis_client, "_client", None)
        monkeypatch.setattr(redis_client.redis, "from_url", from_url)

        client = await init_redis("redis://example:6379/1", max_connections=5)

        assert client is fake
        assert get_redis() is fake
        assert from_url.call_args.kwargs["max_connections"] == 5
        await close_redis()
        fake.aclose.assert_awaited_once()
        with pytest.raises(RuntimeError):
            get_redis()
