"""
GitLab Backup - Project Export Module

Drives a project export from request to download:

    request (until HTTP 202) -> poll status (none/scheduled/started)
        -> finished -> download
        -> failed   -> ExportError

Every status request takes a token from the export limiter and every
download a token from the download limiter.
"""

import logging
from pathlib import Path
from typing import Optional

from cancellation import CancelToken, DeadlineExceeded
from exceptions import ExportError, StaleExportError
from gitlab_api.models import ExportJob, JobStatus
from gitlab_api.rate_limiter import OperationClass, RateLimiters
from gitlab_api.services import ImportExportService

HTTP_ACCEPTED = 202
TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_STALE_RETRIES = 5
DEFAULT_EXPORT_TIMEOUT = 10 * 60


class ExportPoller:
    """Requests, waits for and downloads a single project export."""

    def __init__(
        self,
        service: ImportExportService,
        limiters: RateLimiters,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        stale_retries: int = DEFAULT_STALE_RETRIES,
        timeout: float = DEFAULT_EXPORT_TIMEOUT,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize the export poller.

        Args:
            service: GitLab import/export API.
            limiters: Shared rate limiters.
            poll_interval: Seconds between status checks.
            stale_retries: Consecutive 'none' statuses tolerated after the request was accepted.
            timeout: Overall seconds allowed for request + polling.
            logger: Logger to use (module logger by default).
        """
        self.service = service
        self.limiters = limiters
        self.poll_interval = poll_interval
        self.stale_retries = stale_retries
        self.timeout = timeout
        self.log = logger or logging.getLogger(__name__)

    def request(self, cancel: CancelToken, project_id: int) -> None:
        """Ask GitLab to export the project until it accepts (HTTP 202).

        Transient answers (429, 5xx) are retried after the poll interval;
        any other status is fatal.
        """
        while True:
            self.limiters.acquire(cancel, OperationClass.EXPORT)
            status_code = self.service.request_export(cancel, project_id)
            if status_code == HTTP_ACCEPTED:
                self.log.info(f"Export of project {project_id} accepted")
                return
            if status_code not in TRANSIENT_STATUS_CODES:
                raise ExportError(
                    f"export request for project {project_id} rejected with HTTP {status_code}"
                )
            self.log.debug(f"Export request for project {project_id} got HTTP {status_code}, retrying")
            cancel.wait(self.poll_interval)

    def poll(self, cancel: CancelToken, project_id: int) -> ExportJob:
        """Sample the export status until it reaches 'finished'.

        Raises:
            ExportError: GitLab reported the export as failed.
            StaleExportError: Status stayed 'none' for ``stale_retries`` checks in a row.
        """
        none_count = 0
        while True:
            self.limiters.acquire(cancel, OperationClass.EXPORT)
            job = self.service.export_status(cancel, project_id)

            if job.status is JobStatus.FINISHED:
                return job
            if job.status is JobStatus.FAILED:
                raise ExportError(f"export of project {project_id} failed: {job.error or 'unknown error'}")

            if job.status is JobStatus.NONE:
                none_count += 1
                if none_count >= self.stale_retries:
                    raise StaleExportError(
                        f"project {project_id} not exported "
                        f"(status 'none' {none_count} times in a row)"
                    )
            else:
                none_count = 0
                if job.status is None:
                    self.log.warning(f"Unknown export status '{job.raw_status}' for project {project_id}")

            self.log.info(f"Waiting for GitLab to create the archive of project {project_id}")
            cancel.wait(self.poll_interval)

    def download(self, cancel: CancelToken, project_id: int, dest: Path) -> int:
        """Download the finished export. Returns the archive size in bytes."""
        self.limiters.acquire(cancel, OperationClass.DOWNLOAD)
        return self.service.download_export(cancel, project_id, dest)

    def export_project(self, cancel: CancelToken, project_id: int, dest: Path) -> int:
        """Request, wait for and download an export within the overall timeout.

        Returns:
            Size of the downloaded archive in bytes.

        Raises:
            DeadlineExceeded: The export did not finish within ``timeout``.
        """
        scoped = cancel.with_timeout(self.timeout)
        try:
            self.request(scoped, project_id)
            self.poll(scoped, project_id)
        except DeadlineExceeded as e:
            if cancel.cancelled:
                raise
            raise DeadlineExceeded(
                f"export of project {project_id} timed out after {self.timeout:.0f}s"
            ) from e

        self.log.info(f"Archive of project {project_id} ready, download is beginning")
        return self.download(cancel, project_id, dest)
