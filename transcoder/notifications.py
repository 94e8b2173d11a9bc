"""
Job status events on a Redis pub/sub channel.

Delivery is fire-and-forget: PUBLISH returns once Redis has fanned the message
out to whoever is subscribed, which may be nobody.
"""
import logging
from abc import ABC, abstractmethod

import redis

from .errors import NotificationError
from .models import JobStatus
from .serializers import encode_status_event

logger = logging.getLogger(__name__)


class NotificationPublisher(ABC):
    @abstractmethod
    def publish(self, job_id: str, status: JobStatus) -> None:
        """Emit one status event; raises NotificationError on failure."""


class NullNotificationPublisher(NotificationPublisher):
    """Used when no notification channel is configured."""

    def publish(self, job_id: str, status: JobStatus) -> None:
        logger.debug(f"[job {job_id}] notifications disabled, dropping {status.value}")


class RedisNotificationPublisher(NotificationPublisher):
    def __init__(self, client: redis.Redis, channel: str):
        self.client = client
        self.channel = channel

    def publish(self, job_id: str, status: JobStatus) -> None:
        payload = encode_status_event(job_id, status)
        try:
            receivers = self.client.publish(self.channel, payload)
        except redis.exceptions.RedisError as exc:
            raise NotificationError(f"failed to publish {status.value} for job {job_id}: {exc}") from exc
        logger.debug(f"[job {job_id}] published {status.value} to {self.channel} ({receivers} receivers)")


def redis_url(dsn: str) -> str:
    """Accept either a bare host:port address or a full redis:// URL."""
    if "://" in dsn:
        return dsn
    return f"redis://{dsn}"


def build_notification_publisher(settings) -> NotificationPublisher:
    if not settings.notifications_enabled:
        logger.info("REDIS_DSN not set, job notifications disabled")
        return NullNotificationPublisher()
    client = redis.Redis.from_url(
        redis_url(settings.redis_dsn),
        socket_timeout=5,
        socket_connect_timeout=5,
        retry_on_timeout=True,
    )
    logger.info(f"publishing job notifications to redis channel {settings.redis_channel!r}")
    return RedisNotificationPublisher(client, settings.redis_channel)
