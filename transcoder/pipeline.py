"""
Job pipeline: drives one queue message from receipt to its queue decision.

    decode -> workspace -> QUEUED -> TRANSCODING -> transform
           -> UPLOADING -> upload -> ack -> release -> FINISHED

Any stage failure before the ack sends the message down the retry path
(requeue, or dead-letter once attempts are exhausted). The ack is the commit
point: nothing after it can change the queue's view of the job.
Status notifications are best-effort and never influence the queue decision.
"""
import logging
from abc import ABC, abstractmethod

from .errors import RETRYABLE_ERRORS, AcknowledgeError, NotificationError, ResourceError
from .executors import TranscodeExecutor
from .models import JobStatus, Outcome, WorkItem
from .notifications import NotificationPublisher, NullNotificationPublisher
from .s3 import ArtifactUploader
from .serializers import decode_work_item
from .workspace import WorkspaceHandle, WorkspaceManager

logger = logging.getLogger(__name__)


class Delivery(ABC):
    """Queue-side handle for one received message."""

    body: bytes
    # failed attempts recorded before this delivery
    attempts: int = 0

    @abstractmethod
    def ack(self) -> None:
        ...

    @abstractmethod
    def requeue(self, reason: str) -> None:
        ...

    @abstractmethod
    def dead_letter(self, reason: str) -> None:
        ...


class JobPipeline:
    def __init__(
        self,
        executor: TranscodeExecutor,
        uploader: ArtifactUploader,
        notifier: NotificationPublisher | None = None,
        workspaces: WorkspaceManager | None = None,
        max_attempts: int = 5,
    ):
        self.executor = executor
        self.uploader = uploader
        self.notifier = notifier or NullNotificationPublisher()
        self.workspaces = workspaces or WorkspaceManager()
        self.max_attempts = max_attempts

    def handle(self, delivery: Delivery) -> Outcome:
        try:
            item = decode_work_item(delivery.body)
        except RETRYABLE_ERRORS as exc:
            logger.error(f"failed to decode message: {exc}")
            return self._fail(delivery, None, exc)

        logger.info(f"[job {item.job_id}] received (attempt {delivery.attempts + 1})")
        try:
            with self.workspaces.scoped(item.job_id) as workspace:
                outcome = self._process(delivery, item, workspace)
        except ResourceError as exc:
            # only acquisition gets here, stage errors are handled in _process
            logger.error(f"[job {item.job_id}] {exc}")
            return self._fail(delivery, item, exc)

        if outcome is Outcome.ACKNOWLEDGED:
            self._notify(item, JobStatus.FINISHED)
        return outcome

    def _process(self, delivery: Delivery, item: WorkItem, workspace: WorkspaceHandle) -> Outcome:
        try:
            self._notify(item, JobStatus.QUEUED)

            self._notify(item, JobStatus.TRANSCODING)
            self.executor.run(item.raw_url, workspace.path)
            logger.info(f"[job {item.job_id}] {self.executor.name} finished")

            self._notify(item, JobStatus.UPLOADING)
            artifacts = self.workspaces.list_artifacts(workspace)
            logger.info(f"[job {item.job_id}] uploading {len(artifacts)} artifact(s) under {item.key!r}")
            self.uploader.upload_all(artifacts, item.key)
        except RETRYABLE_ERRORS as exc:
            self._log_stage_error(item, exc)
            return self._fail(delivery, item, exc)
        return self._commit(delivery, item)

    def _commit(self, delivery: Delivery, item: WorkItem) -> Outcome:
        try:
            delivery.ack()
        except AcknowledgeError as exc:
            # outputs are stored; a redelivery will overwrite them
            logger.error(f"[job {item.job_id}] failed to ack the message: {exc}")
        else:
            logger.info(f"[job {item.job_id}] acknowledged")
        return Outcome.ACKNOWLEDGED

    def _fail(self, delivery: Delivery, item: WorkItem | None, exc: Exception) -> Outcome:
        attempt = delivery.attempts + 1
        reason = f"{type(exc).__name__}: {exc}"
        job = f"[job {item.job_id}] " if item else ""

        if self.max_attempts and attempt >= self.max_attempts:
            logger.error(f"{job}attempt {attempt}/{self.max_attempts} failed, dead-lettering")
            try:
                delivery.dead_letter(reason)
            except AcknowledgeError as ack_exc:
                # still unacked, the broker redelivers it after the disconnect
                logger.error(f"{job}failed to dead-letter the message: {ack_exc}")
            if item is not None:
                self._notify(item, JobStatus.FAILED)
            return Outcome.DEAD_LETTERED

        limit = self.max_attempts or "unbounded"
        logger.warning(f"{job}attempt {attempt}/{limit} failed, requeueing")
        try:
            delivery.requeue(reason)
        except AcknowledgeError as ack_exc:
            logger.error(f"{job}failed to requeue the message: {ack_exc}")
        return Outcome.REQUEUED

    def _notify(self, item: WorkItem, status: JobStatus) -> None:
        try:
            self.notifier.publish(item.job_id, status)
        except NotificationError as exc:
            logger.warning(f"[job {item.job_id}] {exc}")

    def _log_stage_error(self, item: WorkItem, exc: Exception) -> None:
        logger.error(f"[job {item.job_id}] {exc}")
        diagnostics = getattr(exc, "diagnostics", "")
        if diagnostics:
            logger.error(f"[job {item.job_id}] backend output:\n{diagnostics}")
