"""
Workspace Manager - Per-job scratch directories with guaranteed cleanup.
"""

import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Workspace:
    """An exclusively-owned scratch directory bound to one job."""

    job_id: str
    path: str

    def file(self, name: str) -> str:
        """Absolute path for a file inside the workspace."""
        return os.path.join(self.path, name)

    def subdir(self, name: str) -> str:
        """Create (if needed) and return a subdirectory of the workspace."""
        path = os.path.join(self.path, name)
        os.makedirs(path, exist_ok=True)
        return path


class WorkspaceManager:
    """
    Allocates uniquely-named scratch directories under a temp root.

    Every job gets its own directory, so concurrent jobs never share files.
    Release never raises: a failed cleanup is logged and the job's real
    outcome is reported unchanged.
    """

    def __init__(self, root: Optional[str] = None, prefix: str = "media-job-"):
        self.root = root
        self.prefix = prefix

    def acquire(self, job_id: str) -> Workspace:
        """
        Create a fresh workspace for a job.

        Raises:
            ResourceError: If the directory cannot be created
        """
        try:
            if self.root:
                os.makedirs(self.root, exist_ok=True)
            path = tempfile.mkdtemp(prefix=self.prefix, dir=self.root)
        except OSError as e:
            raise ResourceError(f"Failed to allocate workspace for job {job_id}: {e}") from e

        logger.info(f"Workspace created for job {job_id}: {path}")
        return Workspace(job_id=job_id, path=path)

    def release(self, workspace: Workspace) -> None:
        """Recursively delete a workspace. Failures are logged, not raised."""
        if not os.path.isdir(workspace.path):
            return
        try:
            shutil.rmtree(workspace.path)
            logger.info(f"Workspace removed for job {workspace.job_id}: {workspace.path}")
        except OSError as e:
            logger.warning(f"Failed to clean up workspace {workspace.path}: {e}")

    @contextmanager
    def scoped(self, job_id: str) -> Iterator[Workspace]:
        """Acquire a workspace and release it on every exit path."""
        workspace = self.acquire(job_id)
        try:
            yield workspace
        finally:
            self.release(workspace)


class ResourceError(Exception):
    """Exception raised when a workspace cannot be allocated."""
    pass
