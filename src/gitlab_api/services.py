"""
GitLab Backup - GitLab Services Module

GitLab API operations grouped by service family.

Each family is a Protocol so that the pollers, the validator and the
orchestrator can be exercised against in-memory fakes.
"""

import logging
import os
from pathlib import Path
from typing import BinaryIO, Optional, Protocol, Union
from urllib.parse import quote

from cancellation import CancelToken
from exceptions import GitLabAPIError
from gitlab_api.client import GitLabClient
from gitlab_api.models import ExportJob, Group, ImportJob, Page, Project
from gitlab_api.pagination import PaginatedFetcher

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 1024 * 1024

ProjectRef = Union[int, str]


# ═══════════════════════════════════════════════════════════════════════════════
# Service Families
# ═══════════════════════════════════════════════════════════════════════════════


class GroupsService(Protocol):
    def get_group(self, cancel: CancelToken, group_id: int) -> Group: ...

    def list_subgroups(self, cancel: CancelToken, group_id: int) -> list[Group]: ...

    def list_projects(self, cancel: CancelToken, group_id: int) -> list[Project]: ...


class ProjectsService(Protocol):
    def get_project(self, cancel: CancelToken, project: ProjectRef) -> Project: ...

    def find_project(self, cancel: CancelToken, project: ProjectRef) -> Optional[Project]: ...


class CommitsService(Protocol):
    def list_commits(self, cancel: CancelToken, project_id: int, per_page: int = 1) -> Page: ...


class IssuesService(Protocol):
    def list_issues(self, cancel: CancelToken, project_id: int, per_page: int = 1) -> Page: ...


class LabelsService(Protocol):
    def list_labels(self, cancel: CancelToken, project_id: int, per_page: int = 1) -> Page: ...


class ImportExportService(Protocol):
    def request_export(self, cancel: CancelToken, project_id: int) -> int: ...

    def export_status(self, cancel: CancelToken, project_id: int) -> ExportJob: ...

    def download_export(self, cancel: CancelToken, project_id: int, dest: Path) -> int: ...

    def import_from_file(
        self, cancel: CancelToken, archive: BinaryIO, namespace: str, path: str
    ) -> ImportJob: ...

    def import_status(self, cancel: CancelToken, project_id: int) -> ImportJob: ...


def project_ref(project: ProjectRef) -> str:
    """Numeric ID, or URL-encoded 'namespace/path'."""
    if isinstance(project, int):
        return str(project)
    return quote(project, safe="")


# ═══════════════════════════════════════════════════════════════════════════════
# REST Implementation
# ═══════════════════════════════════════════════════════════════════════════════


class GitLabServices:
    """All service families backed by the GitLab REST API."""

    def __init__(self, client: GitLabClient, fetcher: Optional[PaginatedFetcher] = None):
        self.client = client
        self.fetcher = fetcher or PaginatedFetcher(client)

    # --- Groups ---

    def get_group(self, cancel: CancelToken, group_id: int) -> Group:
        return Group.from_api(self.client.get_json(f"groups/{group_id}", cancel))

    def list_subgroups(self, cancel: CancelToken, group_id: int) -> list[Group]:
        items = self.fetcher.fetch_all(cancel, f"groups/{group_id}/subgroups")
        return [Group.from_api(item) for item in items]

    def list_projects(self, cancel: CancelToken, group_id: int) -> list[Project]:
        items = self.fetcher.fetch_all(cancel, f"groups/{group_id}/projects")
        return [Project.from_api(item) for item in items]

    # --- Projects ---

    def get_project(self, cancel: CancelToken, project: ProjectRef) -> Project:
        return Project.from_api(self.client.get_json(f"projects/{project_ref(project)}", cancel))

    def find_project(self, cancel: CancelToken, project: ProjectRef) -> Optional[Project]:
        """Like get_project, but None when the project does not exist."""
        try:
            return self.get_project(cancel, project)
        except GitLabAPIError as e:
            if e.is_not_found:
                return None
            raise

    # --- Content listings (emptiness checks) ---

    def _first_page(self, cancel: CancelToken, path: str, per_page: int) -> Page:
        return self.fetcher.fetch_page(cancel, path, params={"per_page": per_page, "page": 1})

    def list_commits(self, cancel: CancelToken, project_id: int, per_page: int = 1) -> Page:
        return self._first_page(cancel, f"projects/{project_id}/repository/commits", per_page)

    def list_issues(self, cancel: CancelToken, project_id: int, per_page: int = 1) -> Page:
        return self._first_page(cancel, f"projects/{project_id}/issues", per_page)

    def list_labels(self, cancel: CancelToken, project_id: int, per_page: int = 1) -> Page:
        return self._first_page(cancel, f"projects/{project_id}/labels", per_page)

    # --- Import / Export ---

    def request_export(self, cancel: CancelToken, project_id: int) -> int:
        """Ask GitLab to start an export. Returns the HTTP status (202 = accepted)."""
        response = self.client.request(
            "POST", f"projects/{project_id}/export", cancel, raise_for_status=False
        )
        response.close()
        return response.status_code

    def export_status(self, cancel: CancelToken, project_id: int) -> ExportJob:
        data = self.client.get_json(f"projects/{project_id}/export", cancel)
        return ExportJob.from_api(project_id, data)

    def download_export(self, cancel: CancelToken, project_id: int, dest: Path) -> int:
        """Stream the finished export into ``dest``. Returns bytes written.

        The archive is written to ``dest.tmp`` first and renamed when complete.
        """
        tmp_path = dest.with_name(dest.name + ".tmp")
        response = self.client.request(
            "GET", f"projects/{project_id}/export/download", cancel, stream=True
        )
        written = 0
        try:
            with open(tmp_path, "wb") as f:
                for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                    cancel.raise_if_cancelled()
                    f.write(chunk)
                    written += len(chunk)
            os.replace(tmp_path, dest)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
        finally:
            response.close()

        logger.debug(f"Downloaded export of project {project_id} ({written} bytes) to {dest}")
        return written

    def import_from_file(
        self, cancel: CancelToken, archive: BinaryIO, namespace: str, path: str
    ) -> ImportJob:
        """Upload an export archive as a new project in ``namespace``."""
        filename = os.path.basename(getattr(archive, "name", "") or "project.tar.gz")
        data = self.client.request(
            "POST",
            "projects/import",
            cancel,
            data={"namespace": namespace, "path": path},
            files={"file": (filename, archive, "application/gzip")},
        ).json()
        return ImportJob.from_api(data)

    def import_status(self, cancel: CancelToken, project_id: int) -> ImportJob:
        return ImportJob.from_api(self.client.get_json(f"projects/{project_id}/import", cancel))
