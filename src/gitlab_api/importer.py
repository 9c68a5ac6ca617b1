"""
GitLab Backup - Project Import Module

Uploads an export archive and waits for GitLab to finish importing it:

    scheduled -> started -> finished | failed

Any other status fails closed.
"""

import logging
from typing import BinaryIO, Optional

from cancellation import CancelToken, DeadlineExceeded
from exceptions import ImportFailedError, UnexpectedStatusError
from gitlab_api.models import ImportJob, JobStatus
from gitlab_api.rate_limiter import OperationClass, RateLimiters
from gitlab_api.services import ImportExportService

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_IMPORT_TIMEOUT = 10 * 60


class ImportPoller:
    """Submits a project import and polls it to a terminal state."""

    def __init__(
        self,
        service: ImportExportService,
        limiters: RateLimiters,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = DEFAULT_IMPORT_TIMEOUT,
        logger: Optional[logging.Logger] = None,
    ):
        self.service = service
        self.limiters = limiters
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.log = logger or logging.getLogger(__name__)

    def import_project(
        self, cancel: CancelToken, archive: BinaryIO, namespace: str, path: str
    ) -> ImportJob:
        """Upload ``archive`` as ``namespace/path`` and wait until it is imported.

        Raises:
            ImportFailedError: GitLab reported the import as failed (reason kept verbatim).
            UnexpectedStatusError: GitLab reported a status outside the import lifecycle.
            DeadlineExceeded: The import did not finish within ``timeout``.
        """
        self.limiters.acquire(cancel, OperationClass.IMPORT)
        job = self.service.import_from_file(cancel, archive, namespace, path)
        self.log.info(f"Import of {namespace}/{path} submitted (project {job.project_id})")
        return self.wait_for_import(cancel, job.project_id)

    def wait_for_import(self, cancel: CancelToken, project_id: int) -> ImportJob:
        """Poll the import status until 'finished'."""
        scoped = cancel.with_timeout(self.timeout)
        try:
            return self._poll(scoped, project_id)
        except DeadlineExceeded as e:
            if cancel.cancelled:
                raise
            raise DeadlineExceeded(
                f"import of project {project_id} timed out after {self.timeout:.0f}s"
            ) from e

    def _poll(self, cancel: CancelToken, project_id: int) -> ImportJob:
        while True:
            self.limiters.acquire(cancel, OperationClass.IMPORT)
            job = self.service.import_status(cancel, project_id)

            if job.status is JobStatus.FINISHED:
                return job
            if job.status is JobStatus.FAILED:
                raise ImportFailedError(job.error or "no reason given")
            if job.status not in (JobStatus.SCHEDULED, JobStatus.STARTED):
                raise UnexpectedStatusError("import", job.raw_status or "<empty>")

            self.log.debug(f"Import of project {project_id} is {job.status.value}")
            cancel.wait(self.poll_interval)
