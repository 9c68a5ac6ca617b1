"""
GitLab Backup - Restore Orchestrator Module

Runs a restore as a fixed sequence of phases:

    Validation -> Download -> Extraction -> Import -> Cleanup

A phase completes, is skipped with a reason, or fails. A failure is fatal:
the remaining phases do not run, but Cleanup always does.
"""

import logging
import shutil
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from cancellation import CancelToken
from exceptions import ProjectNotEmptyError, StorageError
from gitlab_api.importer import ImportPoller
from gitlab_api.services import ProjectsService
from restore.progress import NoOpProgressReporter, ProgressReporter
from restore.types import Phase, PhaseState, RestoreOptions, RestoreResult
from restore.validator import EmptinessValidator
from storage.archive import Archive, extract_archive
from storage.base import Storage


class _PhaseAborted(Exception):
    """Internal signal: a phase failed fatally, skip to Cleanup."""


@dataclass
class _Workspace:
    """Temporary files owned by one restore attempt."""

    workdir: Optional[Path] = None
    downloaded: Optional[Path] = None


class RestoreOrchestrator:
    """Sequences one restore at a time."""

    def __init__(
        self,
        projects: ProjectsService,
        validator: EmptinessValidator,
        importer: ImportPoller,
        storage: Optional[Storage] = None,
        progress: Optional[ProgressReporter] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize the orchestrator.

        Args:
            projects: Used to look up the restore target.
            validator: Emptiness checks for an existing target.
            importer: Uploads the archive and waits for the import.
            storage: Where remote archives are fetched from (not needed for local archives).
            progress: Receives phase transitions (silent by default).
            logger: Logger to use (module logger by default).
        """
        self.projects = projects
        self.validator = validator
        self.importer = importer
        self.storage = storage
        self.progress = progress or NoOpProgressReporter()
        self.log = logger or logging.getLogger(__name__)

    def restore(self, cancel: CancelToken, options: RestoreOptions) -> RestoreResult:
        """Restore ``options.archive`` into ``options.namespace/options.project``.

        Returns:
            The result; ``success`` is True iff no fatal error was recorded.
        """
        started = time.monotonic()
        result = RestoreResult(archive=Archive(path=options.archive, storage_type=options.storage_type))
        workspace = _Workspace()

        try:
            self._validate(cancel, options, result)
            archive_path = self._download(cancel, options, result, workspace)
            export_path = self._extract(cancel, options, result, workspace, archive_path)
            self._import(cancel, options, result, export_path)
        except _PhaseAborted:
            self.log.debug("Restore aborted, running cleanup")
        finally:
            self._cleanup(result, workspace)
            result.metrics.duration_seconds = time.monotonic() - started

        result.success = not result.has_fatal_errors
        if result.success:
            result.record(Phase.COMPLETE, PhaseState.COMPLETED)
            self.progress.complete(Phase.COMPLETE)
        return result

    def _fail(
        self, result: RestoreResult, phase: Phase, component: str, error: Exception
    ) -> _PhaseAborted:
        message = str(error) or type(error).__name__
        self.progress.fail(phase, error)
        result.add_error(phase, component, message, cause=error)
        result.record(phase, PhaseState.FAILED, message)
        return _PhaseAborted(phase)

    def _skip(self, result: RestoreResult, phase: Phase, reason: str) -> None:
        self.progress.skip(phase, reason)
        result.record(phase, PhaseState.SKIPPED, reason)

    def _complete(self, result: RestoreResult, phase: Phase) -> None:
        self.progress.complete(phase)
        result.record(phase, PhaseState.COMPLETED)

    # --- Phases ---

    def _validate(self, cancel: CancelToken, options: RestoreOptions, result: RestoreResult) -> None:
        if options.overwrite:
            self._skip(result, Phase.VALIDATION, "overwrite flag set")
            return

        self.progress.start(Phase.VALIDATION)
        try:
            project = self.projects.find_project(cancel, options.full_path)
            if project is None:
                self.log.debug(f"Target project {options.full_path} does not exist yet")
                self._complete(result, Phase.VALIDATION)
                return

            checks = self.validator.validate_project_empty(cancel, project.id)
            if not checks.is_empty:
                raise ProjectNotEmptyError(
                    "project is not empty - use --overwrite to skip validation "
                    f"(commits: {checks.commit_count}, issues: {checks.issue_count}, "
                    f"labels: {checks.label_count})"
                )
        except Exception as e:
            raise self._fail(result, Phase.VALIDATION, "Validator", e) from e

        self._complete(result, Phase.VALIDATION)

    def _download(
        self,
        cancel: CancelToken,
        options: RestoreOptions,
        result: RestoreResult,
        workspace: _Workspace,
    ) -> Path:
        if not options.is_remote:
            self._skip(result, Phase.DOWNLOAD, "archive is local")
            return Path(options.archive)

        self.progress.start(Phase.DOWNLOAD)
        try:
            if self.storage is None:
                raise StorageError(f"no storage configured to fetch {options.archive}")
            workspace.downloaded = self.storage.get(cancel, options.archive)
            result.metrics.bytes_downloaded = workspace.downloaded.stat().st_size
        except Exception as e:
            raise self._fail(result, Phase.DOWNLOAD, "S3Storage", e) from e

        self._complete(result, Phase.DOWNLOAD)
        return workspace.downloaded

    def _extract(
        self,
        cancel: CancelToken,
        options: RestoreOptions,
        result: RestoreResult,
        workspace: _Workspace,
        archive_path: Path,
    ) -> Path:
        self.progress.start(Phase.EXTRACTION)
        try:
            workspace.workdir = Path(tempfile.mkdtemp(prefix="gitlab-restore-", dir=options.tmp_dir))
        except OSError as e:
            raise self._fail(result, Phase.EXTRACTION, "TempDir", e) from e

        try:
            contents = extract_archive(cancel, archive_path, workspace.workdir)
            export_path = contents.project_export_path
            archive_size = archive_path.stat().st_size
            export_size = export_path.stat().st_size
        except Exception as e:
            raise self._fail(result, Phase.EXTRACTION, "ArchiveExtractor", e) from e

        archive = result.archive
        archive.local_path = export_path
        archive.size = archive_size
        archive.validated = True
        archive.contents = contents

        if contents.legacy:
            result.add_warning(
                f"{archive_path.name} uses the legacy archive format; only the GitLab export was restored"
            )
            result.metrics.bytes_extracted = contents.bytes_extracted
        else:
            result.metrics.bytes_extracted = export_size

        self._complete(result, Phase.EXTRACTION)
        return export_path

    def _import(
        self,
        cancel: CancelToken,
        options: RestoreOptions,
        result: RestoreResult,
        export_path: Path,
    ) -> None:
        self.progress.start(Phase.IMPORT)
        try:
            f = open(export_path, "rb")
        except OSError as e:
            raise self._fail(result, Phase.IMPORT, "FileIO", e) from e

        try:
            with f:
                job = self.importer.import_project(cancel, f, options.namespace, options.project)
        except Exception as e:
            raise self._fail(result, Phase.IMPORT, "GitLabImport", e) from e

        result.project_id = job.project_id
        result.project_url = f"{options.gitlab_uri.rstrip('/')}/{options.full_path}"
        self._complete(result, Phase.IMPORT)

    def _cleanup(self, result: RestoreResult, workspace: _Workspace) -> None:
        self.progress.start(Phase.CLEANUP)

        if workspace.workdir is not None:
            try:
                shutil.rmtree(workspace.workdir)
            except OSError as e:
                result.add_warning(f"Failed to cleanup temp dir {workspace.workdir}: {e}")

        if workspace.downloaded is not None:
            try:
                workspace.downloaded.unlink(missing_ok=True)
            except OSError as e:
                result.add_warning(f"Failed to cleanup downloaded archive {workspace.downloaded}: {e}")

        self._complete(result, Phase.CLEANUP)
