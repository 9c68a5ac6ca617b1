"""
GitLab Backup - Exceptions Module

Custom exceptions raised by the export, import and restore machinery.
"""

from typing import Optional


class GitLabBackupError(Exception):
    """Base exception for all gitlab-backup errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(GitLabBackupError):
    """Raised when configuration is invalid."""


# ═══════════════════════════════════════════════════════════════════════════════
# GitLab API
# ═══════════════════════════════════════════════════════════════════════════════


class GitLabAPIError(GitLabBackupError):
    """Raised when the GitLab API answers with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class ExportError(GitLabBackupError):
    """Raised when a project export cannot be requested or completed."""


class StaleExportError(ExportError):
    """Raised when GitLab keeps reporting export status 'none'."""


class ImportFailedError(GitLabBackupError):
    """Raised when GitLab reports an import as failed.

    The remote failure reason is kept verbatim in ``reason``.
    """

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"import failed: {reason}")


class UnexpectedStatusError(GitLabBackupError):
    """Raised when a job reports a status the poller does not know."""

    def __init__(self, kind: str, status: str):
        self.status = status
        super().__init__(f"unexpected {kind} status: {status}")


# ═══════════════════════════════════════════════════════════════════════════════
# Archives
# ═══════════════════════════════════════════════════════════════════════════════


class ArchiveError(GitLabBackupError):
    """Base class for archive validation and extraction failures."""


class ArchiveNotFoundError(ArchiveError):
    """Archive file does not exist."""


class ArchiveIsDirectoryError(ArchiveError):
    """Archive path points to a directory."""


class ArchiveEmptyError(ArchiveError):
    """Archive file has zero bytes."""


class InvalidGzipError(ArchiveError):
    """Archive does not start with a readable gzip header."""


class InvalidTarError(ArchiveError):
    """Archive gzip stream does not contain a readable tar header."""


class PathTraversalError(ArchiveError):
    """Archive member would be written outside the extraction directory."""


class MissingExportError(ArchiveError):
    """Legacy archive has no GitLab export member."""


# ═══════════════════════════════════════════════════════════════════════════════
# Restore / Backup
# ═══════════════════════════════════════════════════════════════════════════════


class ProjectNotEmptyError(GitLabBackupError):
    """Raised when the restore target already has commits, issues or labels."""


class StorageError(GitLabBackupError):
    """Raised when saving or fetching an archive from storage fails."""


class HookError(GitLabBackupError):
    """Raised when a pre/post backup hook exits unsuccessfully."""


class BackupErrors(GitLabBackupError):
    """Aggregate error raised when at least one project export failed."""

    def __init__(self, failures: dict[str, str], summary=None):
        self.failures = failures
        self.summary = summary
        names = ", ".join(sorted(failures))
        super().__init__(f"errors occurred during backup ({len(failures)} failed: {names})")
