"""
Notification Delivery

User-facing change notifications and the reminder outbox, both on Redis.

- RedisNotificationSink publishes calendar changes on
  calendar:v1:user:{user_id} for the realtime gateway.
- ReminderDispatcher pushes due reminders onto
  calendar:v1:outbox:{channel}, drained by the SMS, email, push and
  WhatsApp senders.
"""

import json
import logging
from typing import Any, Optional, Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.core.calendar.types import Reminder
from app.infra.redis import APP_PREFIX

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    """Receives calendar change notifications for a user."""

    async def send_to_user(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        ...


class NullNotificationSink:
    """Sink that drops everything. Used when Redis is down and in tests."""

    async def send_to_user(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        logger.debug(f"Dropped '{event}' notification for user {user_id}")


class RedisNotificationSink:
    """Publishes notifications to a per-user Redis channel. Never raises."""

    CHANNEL_PREFIX = f"{APP_PREFIX}user:"

    def __init__(self, redis_client: Optional[Redis]):
        self.redis = redis_client

    def _channel(self, user_id: str) -> str:
        return f"{self.CHANNEL_PREFIX}{user_id}"

    async def send_to_user(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        if self.redis is None:
            logger.warning(f"Redis unavailable - '{event}' notification for {user_id} dropped")
            return

        try:
            await self.redis.publish(
                self._channel(user_id),
                json.dumps({"event": event, "data": payload}),
            )
        except RedisError as e:
            logger.error(f"Failed to publish '{event}' to user {user_id}: {e}")


class DeliveryError(Exception):
    """Raised when a reminder could not be handed to its channel."""
    pass


class ReminderDispatcher:
    """
    Hands reminders to channel senders through Redis lists.

    Keys:
    - calendar:v1:outbox:{channel} -> list of JSON reminder payloads
    """

    OUTBOX_PREFIX = f"{APP_PREFIX}outbox:"

    def __init__(self, redis_client: Optional[Redis]):
        self.redis = redis_client

    def _outbox_key(self, reminder: Reminder) -> str:
        return f"{self.OUTBOX_PREFIX}{reminder.channel.value}"

    async def dispatch(self, reminder: Reminder) -> None:
        """
        Queue a reminder for its channel.

        Raises:
            DeliveryError: Redis unavailable or the push failed
        """
        if self.redis is None:
            raise DeliveryError("Redis unavailable - reminder outbox unreachable")

        try:
            await self.redis.rpush(self._outbox_key(reminder), json.dumps(reminder.to_dict()))
        except RedisError as e:
            raise DeliveryError(f"Failed to queue reminder {reminder.id}: {e}") from e

        logger.debug(f"Queued reminder {reminder.id} on {self._outbox_key(reminder)}")
