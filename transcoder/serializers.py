from pydantic import ValidationError

from .errors import MessageDecodeError
from .models import JobStatus, StatusEvent, WorkItem


def decode_work_item(body: bytes | str) -> WorkItem:
    """
    Parse a queue message body into a WorkItem.
    Invalid JSON and schema violations both surface as MessageDecodeError.
    """
    try:
        return WorkItem.model_validate_json(body)
    except ValidationError as exc:
        raise MessageDecodeError(f"invalid work item ({exc.error_count()} error(s)): {exc}") from exc
    except ValueError as exc:
        raise MessageDecodeError(f"invalid work item: {exc}") from exc


def encode_status_event(job_id: str, status: JobStatus) -> bytes:
    """JSON payload for the notification channel: {"job_id": ..., "status": ...}."""
    event = StatusEvent(job_id=job_id, status=status)
    return event.model_dump_json().encode("utf-8")
