"""
RabbitMQ side of the worker, built on kombu (Celery's messaging layer).

Messages are consumed one at a time (prefetch 1) with manual acks. Failed
attempts are counted in a message header: a retry republishes the body to the
source queue with the counter bumped and acks the original, and an exhausted
message is moved to the dead-letter queue the same way. With max_attempts=0
a retry is a plain basic.reject(requeue=True) and nothing is counted.
"""
import logging
import socket

from kombu import Connection, Consumer, Producer, Queue
from kombu.exceptions import MessageStateError, OperationalError

from transcoder.errors import AcknowledgeError, BrokerUnavailable
from transcoder.pipeline import Delivery, JobPipeline

logger = logging.getLogger(__name__)

ATTEMPTS_HEADER = "x-transcode-attempts"
ERROR_HEADER = "x-transcode-error"
MAX_ERROR_HEADER_LENGTH = 1000


def connect(url: str, max_retries: int = 3) -> Connection:
    """
    Open the broker connection or raise BrokerUnavailable.
    Heartbeats stay off: a transform blocks this thread for minutes at a time.
    """
    connection = Connection(url, heartbeat=0)
    try:
        connection.ensure_connection(max_retries=max_retries)
    except (OperationalError, OSError) as exc:
        raise BrokerUnavailable(f"cannot connect to {connection.as_uri()}: {exc}") from exc
    logger.info(f"connected to {connection.as_uri()}")
    return connection


def make_queue(name: str) -> Queue:
    return Queue(name, routing_key=name, durable=True)


class KombuDelivery(Delivery):
    def __init__(
        self,
        message,
        producer: Producer,
        queue: Queue,
        dead_letter_queue: Queue,
        max_attempts: int = 0,
        recoverable_errors: tuple = (),
    ):
        self.message = message
        self.producer = producer
        self.queue = queue
        self.dead_letter_queue = dead_letter_queue
        self.max_attempts = max_attempts
        self.errors = (MessageStateError, OperationalError) + tuple(recoverable_errors)

    @property
    def body(self) -> bytes:
        return self.message.body

    @property
    def attempts(self) -> int:
        headers = self.message.headers or {}
        try:
            return max(0, int(headers.get(ATTEMPTS_HEADER, 0)))
        except (TypeError, ValueError):
            return 0

    def ack(self) -> None:
        try:
            self.message.ack()
        except self.errors as exc:
            raise AcknowledgeError(f"ack failed: {exc}") from exc

    def requeue(self, reason: str) -> None:
        try:
            if not self.max_attempts:
                self.message.requeue()
                return
            self._republish(self.queue, reason)
            self.message.ack()
        except self.errors as exc:
            raise AcknowledgeError(f"requeue failed: {exc}") from exc

    def dead_letter(self, reason: str) -> None:
        try:
            self._republish(self.dead_letter_queue, reason)
            self.message.ack()
        except self.errors as exc:
            raise AcknowledgeError(f"dead-letter failed: {exc}") from exc

    def _republish(self, queue: Queue, reason: str) -> None:
        headers = dict(self.message.headers or {})
        headers[ATTEMPTS_HEADER] = self.attempts + 1
        headers[ERROR_HEADER] = reason[:MAX_ERROR_HEADER_LENGTH]
        self.producer.publish(
            self.message.body,
            exchange="",
            routing_key=queue.name,
            headers=headers,
            content_type=self.message.content_type or "application/json",
            content_encoding=self.message.content_encoding or "utf-8",
            delivery_mode=2,
            declare=[queue],
        )


class TranscodeConsumer:
    """Feeds queue messages to the pipeline, one at a time."""

    def __init__(
        self,
        connection: Connection,
        pipeline: JobPipeline,
        queue_name: str = "transcode",
        dead_letter_queue: str = "transcode.dead",
        max_attempts: int = 0,
    ):
        self.connection = connection
        self.pipeline = pipeline
        self.queue = make_queue(queue_name)
        self.dead_letter_queue = make_queue(dead_letter_queue)
        self.max_attempts = max_attempts
        self.processed = 0
        self._stopping = False
        self._producer = None

    def on_message(self, message) -> None:
        delivery = KombuDelivery(
            message,
            self._producer,
            self.queue,
            self.dead_letter_queue,
            max_attempts=self.max_attempts,
            recoverable_errors=self.connection.recoverable_connection_errors,
        )
        outcome = self.pipeline.handle(delivery)
        self.processed += 1
        logger.info(f"message handled: {outcome.value}")

    def stop(self, *args) -> None:
        logger.info("stop requested, finishing current job")
        self._stopping = True

    def run(self, limit: int | None = None, timeout: float = 1.0) -> None:
        """
        Consume until stop() is called, or until `limit` messages were handled.
        """
        channel = self.connection.default_channel
        self._producer = Producer(channel)
        self.dead_letter_queue(channel).declare()

        with Consumer(channel, queues=[self.queue], on_message=self.on_message, prefetch_count=1):
            logger.info(f"waiting for messages on {self.queue.name!r}")
            while not self._stopping:
                if limit is not None and self.processed >= limit:
                    break
                try:
                    self.connection.drain_events(timeout=timeout)
                except socket.timeout:
                    continue
