"""
Shared fakes for the pipeline tests.

The fakes stand in for the queue message, the transcode backend, the S3 client
and the notification channel so a full pipeline run needs only a temp dir.
"""
import json
from pathlib import Path

import pytest
from botocore.exceptions import ClientError

from transcoder.errors import NotificationError, TranscodeError
from transcoder.executors import TranscodeExecutor
from transcoder.notifications import NotificationPublisher
from transcoder.pipeline import Delivery
from transcoder.s3 import ArtifactUploader
from transcoder.workspace import WorkspaceManager

BUCKET = "media-test"


def work_item_body(job_id="j1", raw_url="https://x/raw.mp4", key="out/j1") -> bytes:
    return json.dumps({"job_id": job_id, "raw_url": raw_url, "key": key}).encode()


class FakeDelivery(Delivery):
    def __init__(self, body: bytes, attempts: int = 0):
        self.body = body
        self.attempts = attempts
        self.calls = []

    def ack(self):
        self.calls.append("ack")

    def requeue(self, reason):
        self.calls.append("requeue")
        self.reason = reason

    def dead_letter(self, reason):
        self.calls.append("dead_letter")
        self.reason = reason


class FakeExecutor(TranscodeExecutor):
    """Writes a fixed set of files into the working directory."""

    name = "fake"

    def __init__(self, files=None, error: TranscodeError | None = None):
        self.files = files if files is not None else {
            "master.m3u8": b"#EXTM3U\n#EXTINF:4.0,\nsegment_000.ts\n",
            "segment_000.ts": b"\x47" * 188,
        }
        self.error = error
        self.runs = []

    def is_available(self):
        return True

    def run(self, source_reference, working_directory):
        self.runs.append((source_reference, Path(working_directory)))
        if self.error is not None:
            raise self.error
        for name, content in self.files.items():
            path = Path(working_directory) / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)


class FakeS3Client:
    """Records uploads in memory; keys in `fail_keys` raise a ClientError."""

    def __init__(self, fail_keys=()):
        self.objects = {}
        self.extra_args = {}
        self.fail_keys = set(fail_keys)
        self.attempted = []

    def upload_file(self, filename, bucket, key, ExtraArgs=None):
        self.attempted.append(key)
        if key in self.fail_keys:
            raise ClientError({"Error": {"Code": "500", "Message": "internal error"}}, "PutObject")
        self.objects[(bucket, key)] = Path(filename).read_bytes()
        self.extra_args[key] = ExtraArgs

    def keys(self, bucket=BUCKET):
        return sorted(k for b, k in self.objects if b == bucket)


class RecordingNotifier(NotificationPublisher):
    def __init__(self, fail_on=()):
        self.events = []
        self.fail_on = set(fail_on)

    def publish(self, job_id, status):
        if status in self.fail_on:
            raise NotificationError(f"channel down while publishing {status.value}")
        self.events.append((job_id, status))

    @property
    def statuses(self):
        return [status for _, status in self.events]


@pytest.fixture
def workspace_root(tmp_path):
    return tmp_path / "workspaces"


@pytest.fixture
def workspaces(workspace_root):
    return WorkspaceManager(workspace_root)


@pytest.fixture
def s3_client():
    return FakeS3Client()


@pytest.fixture
def uploader(s3_client):
    return ArtifactUploader(s3_client, BUCKET)


@pytest.fixture
def notifier():
    return RecordingNotifier()
