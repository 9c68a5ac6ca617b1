"""GitLab Backup - Backup Module"""

from .dispatcher import BackupDispatcher, BackupSummary

__all__ = ["BackupDispatcher", "BackupSummary"]
