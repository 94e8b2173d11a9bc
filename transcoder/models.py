from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator


class JobStatus(str, Enum):
    QUEUED = "QUEUED"
    TRANSCODING = "TRANSCODING"
    UPLOADING = "UPLOADING"
    FINISHED = "FINISHED"
    # Only published once a job is dead-lettered.
    FAILED = "FAILED"

    @property
    def rank(self) -> int:
        """Position in pipeline progress (QUEUED=0 ... FINISHED=3, FAILED last)."""
        return list(JobStatus).index(self)


class WorkItem(BaseModel):
    """
    One transcode request as delivered on the queue:
      job_id  -> opaque job identifier
      raw_url -> locator of the source media (usually a signed URL)
      key     -> object-key prefix for every output of the job
    """
    model_config = ConfigDict(frozen=True, extra="ignore")

    job_id: str = Field(min_length=1)
    raw_url: str = Field(min_length=1)
    key: str = Field(min_length=1)

    @field_validator("job_id", "raw_url", "key")
    @classmethod
    def not_padded(cls, value: str) -> str:
        # values are used verbatim as keys and arguments, never trimmed
        if value != value.strip():
            raise ValueError("must not have leading or trailing whitespace")
        return value


class StatusEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_id: str
    status: JobStatus


@dataclass(frozen=True)
class Artifact:
    """A file produced by the transform, `name` relative to the workspace root."""
    name: str
    path: Path

    def object_key(self, prefix: str) -> str:
        return f"{prefix}/{self.name}"


class Outcome(str, Enum):
    ACKNOWLEDGED = "ACKNOWLEDGED"
    REQUEUED = "REQUEUED"
    DEAD_LETTERED = "DEAD_LETTERED"
