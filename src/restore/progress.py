"""
GitLab Backup - Restore Progress Module

Reports restore phase transitions.
"""

import logging
from typing import Optional, Protocol

from restore.types import Phase


class ProgressReporter(Protocol):
    def start(self, phase: Phase) -> None: ...

    def complete(self, phase: Phase) -> None: ...

    def fail(self, phase: Phase, error: BaseException) -> None: ...

    def skip(self, phase: Phase, reason: str) -> None: ...


class ConsoleProgressReporter:
    """Logs each phase transition as a [RESTORE] line."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.log = logger or logging.getLogger(__name__)

    def start(self, phase: Phase) -> None:
        self.log.info(f"[RESTORE] {phase.description}...")

    def complete(self, phase: Phase) -> None:
        self.log.info(f"[RESTORE] {phase.description} ✓")

    def fail(self, phase: Phase, error: BaseException) -> None:
        self.log.error(f"[RESTORE] {phase.description} ✗ {error}")

    def skip(self, phase: Phase, reason: str) -> None:
        self.log.info(f"[RESTORE] {phase.description} (skipped: {reason})")


class NoOpProgressReporter:
    """Discards progress events."""

    def start(self, phase: Phase) -> None:
        pass

    def complete(self, phase: Phase) -> None:
        pass

    def fail(self, phase: Phase, error: BaseException) -> None:
        pass

    def skip(self, phase: Phase, reason: str) -> None:
        pass
