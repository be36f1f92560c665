"""Redis client used for live pushes to connected users.

The engine only publishes. Each user has one pub/sub channel and whatever
holds that user's websocket relays the JSON payloads it receives.
"""

import json

import redis.asyncio as redis

USER_CHANNEL_PREFIX = "ws:user:"

_client: redis.Redis | None = None


async def init_redis(url: str, max_connections: int = 20) -> redis.Redis:
    """Create the process-wide client. Calling it again replaces the old one."""
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
    _client = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=max_connections,
    )
    return _client


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client:
        await _client.aclose()
        _client = None


def get_redis() -> redis.Redis:
    if _client is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _client


def user_channel(user_id: str) -> str:
    return f"{USER_CHANNEL_PREFIX}{user_id}"


async def publish_to_user(client: object, user_id: str, event: str, data: dict) -> int:
    """Publish ``{"event": ..., "data": ...}`` on the user's channel.

    Returns the number of subscribers that received it. Connection errors
    propagate; callers decide whether a lost push matters.
    """
    payload = json.dumps({"event": event, "data": data}, default=str)
    return await client.publish(user_channel(user_id), payload)  # type: ignore[attr-defined]
