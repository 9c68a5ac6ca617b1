"""GitLab Backup - UI Module"""

from .console import console, print_backup_summary, print_restore_result, setup_logging

__all__ = ["console", "print_backup_summary", "print_restore_result", "setup_logging"]
