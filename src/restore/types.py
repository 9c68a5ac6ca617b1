"""
GitLab Backup - Restore Types Module

Data types produced by a restore attempt.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from cancellation import OperationCancelled
from storage.archive import Archive


class Phase(str, Enum):
    """Restore phases in execution order."""

    VALIDATION = "validation"
    DOWNLOAD = "download"
    EXTRACTION = "extraction"
    IMPORT = "import"
    CLEANUP = "cleanup"
    COMPLETE = "complete"

    @property
    def description(self) -> str:
        return PHASE_DESCRIPTIONS[self]


PHASE_DESCRIPTIONS = {
    Phase.VALIDATION: "Validating project emptiness",
    Phase.DOWNLOAD: "Downloading archive from S3",
    Phase.EXTRACTION: "Extracting archive",
    Phase.IMPORT: "Importing repository",
    Phase.CLEANUP: "Cleaning up temporary files",
    Phase.COMPLETE: "Restore complete",
}


class PhaseState(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    NOT_RUN = "not_run"


@dataclass(frozen=True)
class PhaseRecord:
    """Outcome of a single phase."""

    phase: Phase
    state: PhaseState
    reason: str = ""


@dataclass(frozen=True)
class PhaseError:
    """A failure attributed to the phase and component that produced it."""

    phase: Phase
    component: str
    message: str
    fatal: bool = True
    timestamp: datetime = field(default_factory=datetime.now)
    cause: Optional[BaseException] = field(default=None, compare=False, repr=False)


@dataclass
class Metrics:
    bytes_downloaded: int = 0
    bytes_extracted: int = 0
    duration_seconds: float = 0.0


@dataclass(frozen=True)
class EmptinessChecks:
    """Snapshot of the content found in a restore target.

    Counts come from GitLab's X-Total header when present, otherwise from the
    length of a single-item page, so they can be lower than the true totals.
    The has_* flags are always exact.
    """

    has_commits: bool = False
    has_issues: bool = False
    has_labels: bool = False
    commit_count: int = 0
    issue_count: int = 0
    label_count: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.has_commits or self.has_issues or self.has_labels)


@dataclass
class RestoreOptions:
    """What to restore and where."""

    archive: str
    namespace: str
    project: str
    overwrite: bool = False
    storage_type: str = "local"
    tmp_dir: str = "/tmp"
    gitlab_uri: str = "https://gitlab.com"

    @property
    def full_path(self) -> str:
        return f"{self.namespace}/{self.project}"

    @property
    def is_remote(self) -> bool:
        return self.storage_type != "local"


@dataclass
class RestoreResult:
    """Outcome of a restore attempt.

    Built up by the orchestrator; treat as read-only once returned.
    """

    success: bool = False
    project_id: Optional[int] = None
    project_url: str = ""
    metrics: Metrics = field(default_factory=Metrics)
    errors: list[PhaseError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    phases: dict[Phase, PhaseRecord] = field(default_factory=dict)
    archive: Optional[Archive] = None

    def add_error(
        self,
        phase: Phase,
        component: str,
        message: str,
        fatal: bool = True,
        cause: Optional[BaseException] = None,
    ) -> None:
        self.errors.append(
            PhaseError(phase=phase, component=component, message=message, fatal=fatal, cause=cause)
        )

    def add_warning(self, warning: str) -> None:
        self.warnings.append(warning)

    def record(self, phase: Phase, state: PhaseState, reason: str = "") -> None:
        self.phases[phase] = PhaseRecord(phase=phase, state=state, reason=reason)

    def state_of(self, phase: Phase) -> PhaseState:
        record = self.phases.get(phase)
        return record.state if record else PhaseState.NOT_RUN

    @property
    def has_fatal_errors(self) -> bool:
        return any(e.fatal for e in self.errors)

    @property
    def fatal_errors(self) -> list[PhaseError]:
        return [e for e in self.errors if e.fatal]

    @property
    def interrupted(self) -> bool:
        """True when a fatal error came from cancellation or a timeout rather than GitLab."""
        return any(isinstance(e.cause, OperationCancelled) for e in self.fatal_errors)
