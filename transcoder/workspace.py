"""
Per-job scratch directories.

Every pipeline run gets a fresh directory from mkdtemp, so two runs never share
a workspace even when a message is redelivered for the same job.
"""
import logging
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from .errors import ResourceError
from .models import Artifact
from .utils import safe_fragment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkspaceHandle:
    job_id: str
    path: Path


class WorkspaceManager:
    def __init__(self, root: str | Path | None = None):
        self.root = Path(root) if root else None

    def acquire(self, job_id: str) -> WorkspaceHandle:
        """Create an empty, exclusively owned directory for `job_id`."""
        try:
            if self.root is not None:
                self.root.mkdir(parents=True, exist_ok=True)
            path = tempfile.mkdtemp(prefix=f"transcode-{safe_fragment(job_id)}-", dir=self.root)
        except OSError as exc:
            raise ResourceError(f"cannot allocate workspace for job {job_id}: {exc}") from exc
        logger.debug(f"[job {job_id}] workspace created at {path}")
        return WorkspaceHandle(job_id=job_id, path=Path(path))

    def list_artifacts(self, handle: WorkspaceHandle) -> list[Artifact]:
        """
        Every regular file under the workspace, named by its POSIX path
        relative to the workspace root, sorted by name.
        """
        base = handle.path
        if not base.is_dir():
            raise ResourceError(f"workspace {base} is missing")
        try:
            artifacts = [
                Artifact(name=p.relative_to(base).as_posix(), path=p)
                for p in base.rglob("*")
                if p.is_file()
            ]
        except OSError as exc:
            raise ResourceError(f"cannot read workspace {base}: {exc}") from exc
        return sorted(artifacts, key=lambda a: a.name)

    def release(self, handle: WorkspaceHandle) -> None:
        """Remove the workspace. Safe to call twice; failures are only logged."""
        if not handle.path.exists():
            return
        try:
            shutil.rmtree(handle.path)
        except OSError as exc:
            logger.warning(f"[job {handle.job_id}] failed to clean up workspace {handle.path}: {exc}")
        else:
            logger.debug(f"[job {handle.job_id}] workspace {handle.path} removed")

    @contextmanager
    def scoped(self, job_id: str):
        handle = self.acquire(job_id)
        try:
            yield handle
        finally:
            self.release(handle)
