"""GitLab Backup - GitLab API Module"""

from .client import GitLabClient
from .export import ExportPoller
from .importer import ImportPoller
from .models import ExportJob, Group, ImportJob, JobStatus, Page, Project
from .pagination import PaginatedFetcher
from .rate_limiter import OperationClass, RateLimiter, RateLimiters
from .services import GitLabServices

__all__ = [
    "GitLabClient",
    "GitLabServices",
    "PaginatedFetcher",
    "ExportPoller",
    "ImportPoller",
    "RateLimiter",
    "RateLimiters",
    "OperationClass",
    "ExportJob",
    "ImportJob",
    "JobStatus",
    "Group",
    "Project",
    "Page",
]
