"""
GitLab Backup - Backup Dispatcher Module

Walks a group tree and exports every active project with a bounded pool
of workers. Archived projects are skipped. A failed export is recorded and
does not stop the others.
"""

import logging
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from cancellation import CancelToken
from exceptions import BackupErrors
from gitlab_api.export import ExportPoller
from gitlab_api.models import Project
from gitlab_api.rate_limiter import OperationClass, RateLimiters
from gitlab_api.services import GroupsService, ProjectsService
from hooks import Hooks
from storage.base import Storage

MAX_GROUP_DEPTH = 20


@dataclass
class BackupSummary:
    """Result of a backup run."""

    exported: list[str] = field(default_factory=list)
    skipped_archived: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    total_bytes: int = 0
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return not self.failed


def project_label(project: Project) -> str:
    return project.path_with_namespace or project.name or str(project.id)


class BackupDispatcher:
    """Exports a group (recursively) or a single project to storage."""

    def __init__(
        self,
        groups: GroupsService,
        projects: ProjectsService,
        exporter: ExportPoller,
        storage: Storage,
        tmp_dir: Union[str, Path],
        hooks: Optional[Hooks] = None,
        workers: int = 4,
        limiters: Optional[RateLimiters] = None,
        max_depth: int = MAX_GROUP_DEPTH,
        logger: Optional[logging.Logger] = None,
    ):
        if workers < 1:
            raise ValueError("workers must be at least 1")

        self.groups = groups
        self.projects = projects
        self.exporter = exporter
        self.storage = storage
        self.tmp_dir = Path(tmp_dir)
        self.hooks = hooks or Hooks()
        self.workers = workers
        self.limiters = limiters
        self.max_depth = max_depth
        self.log = logger or logging.getLogger(__name__)

        self._lock = threading.Lock()
        self._active = 0
        self.peak_concurrency = 0

    def _metadata_token(self, cancel: CancelToken) -> None:
        cancel.raise_if_cancelled()
        if self.limiters is not None:
            self.limiters.acquire(cancel, OperationClass.METADATA)

    # --- Enumeration ---

    def collect_projects(self, cancel: CancelToken, group_id: int) -> list[Project]:
        """All projects of ``group_id`` and its subgroups, in discovery order.

        Groups are walked iteratively; a group already visited is not visited
        again and groups deeper than ``max_depth`` are not descended into.
        """
        queue: deque[tuple[int, int]] = deque([(group_id, 0)])
        seen_groups: set[int] = set()
        seen_projects: set[int] = set()
        projects: list[Project] = []

        while queue:
            current, depth = queue.popleft()
            if current in seen_groups:
                continue
            seen_groups.add(current)

            self._metadata_token(cancel)
            for project in self.groups.list_projects(cancel, current):
                if project.id not in seen_projects:
                    seen_projects.add(project.id)
                    projects.append(project)

            self._metadata_token(cancel)
            subgroups = self.groups.list_subgroups(cancel, current)
            if subgroups and depth + 1 > self.max_depth:
                self.log.warning(
                    f"Group {current} has subgroups deeper than {self.max_depth} levels, not descending"
                )
                continue
            for subgroup in subgroups:
                queue.append((subgroup.id, depth + 1))

        self.log.info(f"Found {len(projects)} projects in {len(seen_groups)} groups")
        return projects

    # --- Export ---

    def export_one(self, cancel: CancelToken, project: Project) -> int:
        """Export a single project and save it to storage.

        Returns:
            Size of the saved archive in bytes.
        """
        with self._lock:
            self._active += 1
            self.peak_concurrency = max(self.peak_concurrency, self._active)

        archive = self.tmp_dir / project.archive_name
        try:
            self.hooks.run_prebackup()
            size = self.exporter.export_project(cancel, project.id, archive)
            self.hooks.run_postbackup(str(archive))
            self.storage.save(cancel, archive, archive.name)
            return size
        finally:
            with self._lock:
                self._active -= 1
            try:
                archive.unlink(missing_ok=True)
            except OSError as e:
                self.log.warning(f"Failed to remove temporary archive {archive}: {e}")

    def run(self, cancel: CancelToken, group_id: int = 0, project_id: int = 0) -> BackupSummary:
        """Back up a group (with subgroups) or a single project.

        Raises:
            BackupErrors: At least one export failed (the summary is attached).
            GitLabAPIError: The group or project could not be listed.
        """
        started = time.monotonic()
        summary = BackupSummary()

        if group_id > 0:
            self._metadata_token(cancel)
            group = self.groups.get_group(cancel, group_id)
            self.log.info(f"Backing up group {group.full_path or group.name} ({group.id}) with subgroups")
            candidates = self.collect_projects(cancel, group_id)
        elif project_id > 0:
            self._metadata_token(cancel)
            candidates = [self.projects.get_project(cancel, project_id)]
        else:
            raise ValueError("either group_id or project_id is required")

        active = []
        for project in candidates:
            if project.archived:
                self.log.info(f"Skipping archived project {project_label(project)}")
                summary.skipped_archived.append(project_label(project))
            else:
                active.append(project)

        self.log.info(f"Exporting {len(active)} projects with {self.workers} workers")
        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="export") as pool:
            futures = {pool.submit(self.export_one, cancel, p): p for p in active}
            for future in as_completed(futures):
                label = project_label(futures[future])
                try:
                    size = future.result()
                except Exception as e:
                    self.log.error(f"Export of {label} failed: {e}")
                    summary.failed[label] = str(e) or type(e).__name__
                else:
                    self.log.info(f"Exported {label}")
                    summary.exported.append(label)
                    summary.total_bytes += size

        summary.duration_seconds = time.monotonic() - started
        if summary.failed:
            raise BackupErrors(summary.failed, summary=summary)
        return summary
