class TranscoderError(Exception):
    """Base class for every error raised by the worker."""


class ImproperlyConfigured(TranscoderError):
    """Settings are missing or invalid; fatal at startup."""


class BrokerUnavailable(TranscoderError):
    """The queue broker could not be reached; fatal at startup."""


class MessageDecodeError(TranscoderError):
    """Inbound message body is not a valid work item."""


class ResourceError(TranscoderError):
    """Workspace could not be allocated or read."""


class TranscodeError(TranscoderError):
    """
    The external transform failed, could not start, or ran past its deadline.
    `diagnostics` holds the tail of the backend's stderr.
    """

    def __init__(self, message: str, diagnostics: str = "", returncode: int | None = None):
        super().__init__(message)
        self.diagnostics = diagnostics
        self.returncode = returncode


class UploadError(TranscoderError):
    """An artifact could not be stored; earlier uploads are left in place."""

    def __init__(self, artifact_name: str, key: str, cause: Exception | None = None):
        super().__init__(f"failed to upload {artifact_name!r} to {key!r}: {cause}")
        self.artifact_name = artifact_name
        self.key = key
        self.cause = cause


class NotificationError(TranscoderError):
    """A status event could not be published."""


class AcknowledgeError(TranscoderError):
    """The broker rejected an ack/requeue/dead-letter operation."""


# Stage failures that send a message down the retry path.
RETRYABLE_ERRORS = (MessageDecodeError, ResourceError, TranscodeError, UploadError)
