import logging
from typing import Iterable

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .errors import UploadError
from .models import Artifact
from .utils import guess_content_type

logger = logging.getLogger(__name__)

# Playlists go last so a reader never sees one that points at missing segments.
DEFERRED_SUFFIXES = (".m3u8",)


def get_s3_client(settings):
    """
    SDK client for server-side uploads (S3 or MinIO).
    """
    session = boto3.session.Session(
        aws_access_key_id=settings.s3_access_key,
        aws_secret_access_key=settings.s3_secret_key,
        region_name=settings.s3_region,
    )
    return session.client(
        "s3",
        endpoint_url=settings.s3_endpoint or None,  # e.g. http://127.0.0.1:9000
        config=BotoConfig(
            s3={"addressing_style": "path" if settings.s3_path_style else "auto"},
            signature_version="s3v4",
        ),
    )


class ArtifactUploader:
    def __init__(self, client, bucket: str, deferred_suffixes: tuple[str, ...] = DEFERRED_SUFFIXES):
        self.client = client
        self.bucket = bucket
        self.deferred_suffixes = tuple(s.lower() for s in deferred_suffixes)

    def order(self, artifacts: Iterable[Artifact]) -> list[Artifact]:
        """Enumeration order, except deferred (manifest) artifacts move to the end."""
        artifacts = list(artifacts)
        if not self.deferred_suffixes:
            return artifacts
        head = [a for a in artifacts if not self._deferred(a)]
        last = [a for a in artifacts if self._deferred(a)]
        return head + last

    def upload_file(self, artifact: Artifact, key: str) -> None:
        """
        Upload a single artifact with a Content-Type hint when one is known.
        """
        extra = {}
        content_type = guess_content_type(artifact.name)
        if content_type:
            extra["ContentType"] = content_type
        self.client.upload_file(str(artifact.path), self.bucket, key, ExtraArgs=extra or None)

    def upload_all(self, artifacts: Iterable[Artifact], key_prefix: str) -> list[str]:
        """
        Upload every artifact to <key_prefix>/<name>, stopping at the first failure.

        Objects stored before the failure are left in place; a retry of the same
        job writes the same keys again.
        """
        uploaded = []
        for artifact in self.order(artifacts):
            key = artifact.object_key(key_prefix)
            try:
                self.upload_file(artifact, key)
            except (ClientError, BotoCoreError, S3UploadFailedError, OSError) as exc:
                raise UploadError(artifact.name, key, exc) from exc
            logger.info(f"uploaded {artifact.name} to s3://{self.bucket}/{key}")
            uploaded.append(key)
        return uploaded

    def _deferred(self, artifact: Artifact) -> bool:
        return artifact.name.lower().endswith(self.deferred_suffixes)
