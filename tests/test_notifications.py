"""Tests for status event publishers."""

import json
from unittest.mock import Mock

import pytest
import redis

from media_worker.settings import Settings
from transcoder.errors import NotificationError
from transcoder.models import JobStatus
from transcoder.notifications import (
    NullNotificationPublisher,
    RedisNotificationPublisher,
    build_notification_publisher,
    redis_url,
)


def make_settings(**overrides):
    values = dict(s3_bucket="b", s3_access_key="a", s3_secret_key="s")
    values.update(overrides)
    return Settings(**values)


class TestRedisPublisher:
    def test_publishes_status_event_json(self):
        client = Mock()
        client.publish.return_value = 1

        RedisNotificationPublisher(client, "jobs").publish("j1", JobStatus.UPLOADING)

        channel, payload = client.publish.call_args.args
        assert channel == "jobs"
        assert json.loads(payload) == {"job_id": "j1", "status": "UPLOADING"}

    def test_redis_error_becomes_notification_error(self):
        client = Mock()
        client.publish.side_effect = redis.exceptions.ConnectionError("connection refused")

        with pytest.raises(NotificationError, match="QUEUED"):
            RedisNotificationPublisher(client, "jobs").publish("j1", JobStatus.QUEUED)


class TestNullPublisher:
    def test_publish_is_a_no_op(self):
        assert NullNotificationPublisher().publish("j1", JobStatus.FINISHED) is None


class TestBuild:
    def test_no_dsn_disables_notifications(self):
        publisher = build_notification_publisher(make_settings())

        assert isinstance(publisher, NullNotificationPublisher)

    def test_dsn_builds_redis_publisher(self):
        publisher = build_notification_publisher(make_settings(redis_dsn="cache:6380", redis_channel="events"))

        assert isinstance(publisher, RedisNotificationPublisher)
        assert publisher.channel == "events"
        kwargs = publisher.client.connection_pool.connection_kwargs
        assert kwargs["host"] == "cache"
        assert kwargs["port"] == 6380

    @pytest.mark.parametrize("dsn,expected", [
        ("localhost:6379", "redis://localhost:6379"),
        ("redis://localhost:6379/2", "redis://localhost:6379/2"),
        ("rediss://user:pw@host:6380", "rediss://user:pw@host:6380"),
    ])
    def test_redis_url(self, dsn, expected):
        assert redis_url(dsn) == expected
