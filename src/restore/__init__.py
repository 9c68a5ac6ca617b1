"""GitLab Backup - Restore Module"""

from .orchestrator import RestoreOrchestrator
from .progress import ConsoleProgressReporter, NoOpProgressReporter, ProgressReporter
from .types import (
    EmptinessChecks,
    Metrics,
    Phase,
    PhaseError,
    PhaseRecord,
    PhaseState,
    RestoreOptions,
    RestoreResult,
)
from .validator import EmptinessValidator

__all__ = [
    "RestoreOrchestrator",
    "EmptinessValidator",
    "ProgressReporter",
    "ConsoleProgressReporter",
    "NoOpProgressReporter",
    "EmptinessChecks",
    "Metrics",
    "Phase",
    "PhaseError",
    "PhaseRecord",
    "PhaseState",
    "RestoreOptions",
    "RestoreResult",
]
