"""
GitLab Backup - Restore CLI Module

Command-line interface for restoring a project from a backup archive.
"""

import logging
from typing import Optional

import typer
from pydantic import ValidationError

from cancellation import CancelToken, ShutdownHandler
from config import Settings
from exceptions import ConfigurationError
from gitlab_api.importer import ImportPoller
from gitlab_api.rate_limiter import RateLimiters
from main import build_services
from restore.orchestrator import RestoreOrchestrator
from restore.progress import ConsoleProgressReporter
from restore.types import RestoreOptions, RestoreResult
from restore.validator import EmptinessValidator
from storage.s3_client import S3_SCHEME, S3Storage
from ui.console import print_banner, print_error, print_restore_result, setup_logging

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════════
# CLI App
# ═══════════════════════════════════════════════════════════════════════════════

app = typer.Typer(
    name="gitlab-restore",
    help="Restore a GitLab project from a backup archive",
    add_completion=False,
)


def build_options(
    settings: Settings, archive: str, namespace: str, project: str, overwrite: bool
) -> RestoreOptions:
    """Restore options; archives starting with s3:// are fetched from S3."""
    return RestoreOptions(
        archive=archive,
        namespace=namespace.strip("/"),
        project=project.strip("/"),
        overwrite=overwrite,
        storage_type="s3" if archive.startswith(S3_SCHEME) else "local",
        tmp_dir=settings.tmp_dir,
        gitlab_uri=settings.gitlab_uri,
    )


def run_restore(
    settings: Settings, options: RestoreOptions, cancel: CancelToken
) -> RestoreResult:
    """Wire up the restore components and run one restore.

    Raises:
        ConfigurationError: Settings are incomplete.
    """
    settings.validate_for_restore()

    services = build_services(settings)
    limiters = RateLimiters.default()
    storage = S3Storage(settings) if options.is_remote else None

    orchestrator = RestoreOrchestrator(
        projects=services,
        validator=EmptinessValidator(services, services, services, limiters=limiters),
        importer=ImportPoller(
            services,
            limiters,
            poll_interval=settings.poll_interval_seconds,
            timeout=settings.import_timeout_mins * 60,
        ),
        storage=storage,
        progress=ConsoleProgressReporter(logger),
    )
    return orchestrator.restore(cancel, options)


@app.command()
def restore(
    archive: str = typer.Option(..., "--archive", help="Archive path, or s3://bucket/key"),
    namespace: str = typer.Option(..., "--namespace", help="Target namespace (group or user path)"),
    project: str = typer.Option(..., "--project", help="Target project path"),
    overwrite: bool = typer.Option(False, "--overwrite", help="Skip the emptiness check of the target"),
    gitlab_url: Optional[str] = typer.Option(None, "--gitlab-url", help="GitLab base URL"),
    tmpdir: Optional[str] = typer.Option(None, "--tmpdir", help="Directory for temporary files"),
):
    """Restore a project from a backup archive."""
    overrides = {"gitlab_uri": gitlab_url, "tmp_dir": tmpdir}
    try:
        settings = Settings(**{k: v for k, v in overrides.items() if v is not None})
    except ValidationError as e:
        print_error("Invalid configuration", e)
        raise typer.Exit(1)

    setup_logging(settings.log_level, show_time=not settings.no_log_time, redact=settings.redact)

    options = build_options(settings, archive, namespace, project, overwrite)
    cancel = CancelToken()
    ShutdownHandler(cancel).install()

    print_banner("GitLab Restore", f"{options.archive} -> {options.full_path}")

    try:
        result = run_restore(settings, options, cancel)
    except ConfigurationError as e:
        print_error(settings.redact(str(e)))
        raise typer.Exit(1)

    print_restore_result(result, redact=settings.redact)
    raise typer.Exit(0 if result.success else 1)


def main() -> None:
    """Entry point for gitlab-restore."""
    app()


if __name__ == "__main__":
    main()
