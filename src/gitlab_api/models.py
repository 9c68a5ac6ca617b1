"""
GitLab Backup - GitLab Models Module

Plain data types returned by the GitLab services.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class JobStatus(str, Enum):
    """Normalized status of an asynchronous export or import job."""

    NONE = "none"
    SCHEDULED = "scheduled"
    STARTED = "started"
    FINISHED = "finished"
    FAILED = "failed"

    @classmethod
    def from_remote(cls, raw: Optional[str]) -> Optional["JobStatus"]:
        """Map a GitLab status string to a JobStatus.

        Returns None for strings GitLab may add in the future.
        """
        if raw is None:
            return None
        return _REMOTE_STATUSES.get(raw.strip().lower())


_REMOTE_STATUSES = {
    "none": JobStatus.NONE,
    "queued": JobStatus.SCHEDULED,
    "scheduled": JobStatus.SCHEDULED,
    "started": JobStatus.STARTED,
    "regeneration_in_progress": JobStatus.STARTED,
    "finished": JobStatus.FINISHED,
    "failed": JobStatus.FAILED,
}


@dataclass
class Group:
    """GitLab group (or subgroup)."""

    id: int
    name: str
    full_path: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Group":
        return cls(
            id=int(data["id"]),
            name=data.get("name", ""),
            full_path=data.get("full_path", ""),
        )


@dataclass
class Project:
    """GitLab project information used for export and restore."""

    id: int
    name: str
    path: str = ""
    path_with_namespace: str = ""
    archived: bool = False
    web_url: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Project":
        return cls(
            id=int(data["id"]),
            name=data.get("name", ""),
            path=data.get("path", ""),
            path_with_namespace=data.get("path_with_namespace", ""),
            archived=bool(data.get("archived", False)),
            web_url=data.get("web_url", ""),
        )

    @property
    def archive_name(self) -> str:
        """Archive file name by convention: <name>-<id>.tar.gz"""
        return f"{self.name}-{self.id}.tar.gz"


@dataclass
class ExportJob:
    """State of a project export as reported by GitLab."""

    project_id: int
    status: Optional[JobStatus]
    raw_status: str = ""
    error: str = ""
    started_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_api(cls, project_id: int, data: dict[str, Any]) -> "ExportJob":
        raw = data.get("export_status") or ""
        return cls(
            project_id=project_id,
            status=JobStatus.from_remote(raw),
            raw_status=raw,
            error=data.get("export_error") or data.get("message") or "",
        )


@dataclass
class ImportJob:
    """State of a project import as reported by GitLab."""

    project_id: int
    status: Optional[JobStatus]
    raw_status: str = ""
    error: str = ""
    path_with_namespace: str = ""
    started_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ImportJob":
        raw = data.get("import_status") or ""
        return cls(
            project_id=int(data["id"]),
            status=JobStatus.from_remote(raw),
            raw_status=raw,
            error=data.get("import_error") or "",
            path_with_namespace=data.get("path_with_namespace", ""),
        )


@dataclass
class Page:
    """One page of a list endpoint."""

    items: list[dict[str, Any]]
    total: Optional[int] = None
    next_url: Optional[str] = None

    @property
    def count(self) -> int:
        """Total from the X-Total header when GitLab sent it, else the page length."""
        if self.total is not None and self.total > 0:
            return self.total
        return len(self.items)
