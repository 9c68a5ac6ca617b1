"""
GitLab Backup - Hooks Module

Optional commands run around each project export.
"""

import logging
import shlex
import subprocess
from dataclasses import dataclass
from typing import Optional

from exceptions import HookError

logger = logging.getLogger(__name__)

INPUT_FILE_PLACEHOLDER = "%INPUTFILE%"


@dataclass
class Hooks:
    """Pre- and post-backup commands.

    The post-backup command may reference the archive with %INPUTFILE%.
    Commands are split with shell quoting rules but never run through a shell.
    """

    prebackup: str = ""
    postbackup: str = ""
    timeout: Optional[float] = None

    @property
    def has_prebackup(self) -> bool:
        return bool(self.prebackup.strip())

    @property
    def has_postbackup(self) -> bool:
        return bool(self.postbackup.strip())

    def postbackup_command(self, archive_path: str) -> str:
        return self.postbackup.replace(INPUT_FILE_PLACEHOLDER, archive_path)

    def run_prebackup(self) -> None:
        """Run the pre-backup command, if any.

        Raises:
            HookError: If the command cannot be started or exits non-zero.
        """
        self._execute(self.prebackup)

    def run_postbackup(self, archive_path: str) -> None:
        """Run the post-backup command for ``archive_path``, if any."""
        self._execute(self.postbackup_command(archive_path))

    def _execute(self, command: str) -> None:
        if not command.strip():
            return

        try:
            args = shlex.split(command)
        except ValueError as e:
            raise HookError(f"failed to parse command '{command}': {e}") from e
        if not args:
            return

        logger.debug(f"Running hook: {args[0]}")
        try:
            result = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise HookError(f"failed to execute {command}: {e}") from e

        if result.returncode != 0:
            raise HookError(
                f"failed to execute {command}: exit status {result.returncode}",
                details={"stderr": result.stderr.strip()} if result.stderr.strip() else None,
            )
