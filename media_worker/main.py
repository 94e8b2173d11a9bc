import argparse
import logging
import signal

from kombu.exceptions import OperationalError

from transcoder.errors import BrokerUnavailable, ImproperlyConfigured
from transcoder.executors import get_executor
from transcoder.notifications import build_notification_publisher
from transcoder.pipeline import JobPipeline
from transcoder.s3 import ArtifactUploader, get_s3_client
from transcoder.workspace import WorkspaceManager

from .broker import TranscodeConsumer, connect
from .settings import Settings, load_env_file

logger = logging.getLogger("media_worker")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
QUIET_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3", "kombu", "amqp")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def build_pipeline(settings: Settings) -> JobPipeline:
    """
    Wire the pipeline's collaborators from settings.
    Raises ImproperlyConfigured when the transcode backend is unknown or missing.
    """
    executor = get_executor(settings.backend, timeout=settings.transcode_timeout)
    logger.info(f"using {executor.name} backend")
    if not executor.is_available():
        raise ImproperlyConfigured(f"{executor.name} backend is not available")

    uploader = ArtifactUploader(get_s3_client(settings), settings.s3_bucket)
    return JobPipeline(
        executor=executor,
        uploader=uploader,
        notifier=build_notification_publisher(settings),
        workspaces=WorkspaceManager(settings.workspace_root),
        max_attempts=settings.max_attempts,
    )


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="media-worker",
        description="Consume transcode jobs from RabbitMQ, publish HLS renditions to S3.",
    )
    parser.add_argument("--env-file", help="Path to a .env file (default: ./.env next to the project)")
    parser.add_argument("--log-level", help="Override LOG_LEVEL (DEBUG, INFO, WARNING, ...)")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    load_env_file(args.env_file)

    try:
        settings = Settings.from_env()
    except ImproperlyConfigured as exc:
        configure_logging(args.log_level or "INFO")
        logger.critical(str(exc))
        return 1

    configure_logging(args.log_level or settings.log_level)

    try:
        pipeline = build_pipeline(settings)
        connection = connect(settings.rabbitmq_url)
    except (ImproperlyConfigured, BrokerUnavailable, ValueError) as exc:
        # botocore reports a malformed endpoint URL as ValueError
        logger.critical(str(exc))
        return 1

    consumer = TranscodeConsumer(
        connection,
        pipeline,
        queue_name=settings.queue_name,
        dead_letter_queue=settings.dead_letter_queue,
        max_attempts=settings.max_attempts,
    )
    signal.signal(signal.SIGTERM, consumer.stop)
    signal.signal(signal.SIGINT, consumer.stop)

    try:
        with connection:
            consumer.run()
    except (OperationalError, *connection.connection_errors) as exc:
        logger.critical(f"lost broker connection: {exc}")
        return 1
    logger.info(f"worker stopped after {consumer.processed} message(s)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
