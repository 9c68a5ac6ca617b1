"""
GitLab Backup - Storage Base Module

Contract shared by the local and S3 storage backends.
"""

from pathlib import Path
from typing import Protocol

from cancellation import CancelToken


class Storage(Protocol):
    """Where archives are saved by backups and fetched from by restores."""

    def save(self, token: CancelToken, local_path: Path, dest_key: str) -> None:
        """Store the file at ``local_path`` under ``dest_key``."""
        ...

    def get(self, token: CancelToken, key: str) -> Path:
        """Make the archive stored under ``key`` available as a local file."""
        ...
