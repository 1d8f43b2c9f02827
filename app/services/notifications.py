from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Protocol

from redis.asyncio import Redis

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class NotificationSink(Protocol):
    async def send(self, message: dict[str, Any]) -> None: ...


class RedisNotificationSink:
    """Publishes notification requests on ``notif:<user_id>``.

    Email and Discord delivery subscribe to that channel; formatting and
    delivery guarantees are theirs.
    """

    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    async def send(self, message: dict[str, Any]) -> None:
        user_id = str(message.get("user_id") or "")
        if not user_id:
            raise ValueError("notification requires a user_id")
        body = {**message, "created_at": _now_iso()}
        await self._redis.publish(f"notif:{user_id}", json.dumps(body, default=str))
        logger.info("Notification %s queued for user %s", message.get("type"), user_id)
