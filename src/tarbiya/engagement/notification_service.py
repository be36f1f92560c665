"""Fire-and-forget user notifications: DB row plus Redis pub/sub push."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from tarbiya.db.models import Notification
from tarbiya.redis_client import publish_to_user, user_channel

logger = logging.getLogger(__name__)


async def push_notification_to_user(redis: object | None, notification: Notification) -> None:
    """Publish a formatted notification to the user's live channel.

    The notification must already be flushed (have an ``id``). A failed
    push is logged and dropped; the stored row is the source of truth.
    """
    if redis is None:
        return

    data = {
        "id": notification.id,
        "type": notification.type,
        "title": notification.title,
        "body": notification.body,
        "timestamp": notification.created_at.isoformat() if notification.created_at else None,
        "read": False,
    }
    try:
        await publish_to_user(redis, notification.user_id, "notification", data)
    except Exception:
        logger.warning(
            "Failed to push notification via %s",
            user_channel(notification.user_id),
            exc_info=True,
        )


async def add_notification(
    db: AsyncSession,
    redis: object | None,
    user_id: str | None,
    title: str | None,
    body: str | None,
    type: str = "engagement",  # noqa: A002
) -> Notification | None:
    """Persist a notification and push it to the user's live connections."""
    if not user_id:
        return None

    notification = Notification(
        user_id=user_id,
        type=type,
        title=title,
        body=body,
        created_at=datetime.now(timezone.utc),
    )
    db.add(notification)
    await db.flush()

    await push_notification_to_user(redis, notification)
    return notification
