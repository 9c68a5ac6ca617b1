#!/usr/bin/env python3
"""
GitLab Backup - Main Entry Point

Exports GitLab projects (a single project, or a group with all of its
subgroups) and saves the archives to a local directory or S3-compatible storage.
"""

import logging
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.table import Table

from backup.dispatcher import BackupDispatcher, BackupSummary
from cancellation import CancelToken, OperationCancelled, ShutdownHandler
from config import Settings
from exceptions import BackupErrors, ConfigurationError, GitLabBackupError
from gitlab_api.client import GitLabClient
from gitlab_api.export import ExportPoller
from gitlab_api.rate_limiter import RateLimiters
from gitlab_api.services import GitLabServices
from hooks import Hooks
from storage.base import Storage
from storage.local_storage import LocalStorage
from storage.s3_client import S3Storage
from ui.console import (
    console,
    print_backup_summary,
    print_banner,
    print_completion,
    print_error,
    setup_logging,
)

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="gitlab-backup",
    help="Export GitLab projects and groups to local or S3 storage",
    add_completion=False,
)


def build_services(settings: Settings) -> GitLabServices:
    """GitLab API services for the configured instance and token."""
    client = GitLabClient(
        api_url=settings.api_url,
        token=settings.gitlab_token,
        timeout=settings.gitlab_request_timeout,
    )
    return GitLabServices(client)


def build_storage(settings: Settings) -> Storage:
    """S3 when a bucket and region are configured, else the local directory."""
    if settings.is_s3_configured:
        storage = S3Storage(settings)
        if not storage.ensure_bucket_exists():
            raise ConfigurationError(f"cannot access or create bucket {settings.s3_bucket}")
        return storage
    return LocalStorage(settings.local_path)


def run_backup(settings: Settings, cancel: CancelToken) -> BackupSummary:
    """Run one backup with the given settings.

    Raises:
        ConfigurationError: Settings are incomplete.
        BackupErrors: At least one project export failed.
    """
    settings.validate_for_backup()

    services = build_services(settings)
    storage = build_storage(settings)
    logger.debug(f"Saving archives with {type(storage).__name__}")

    limiters = RateLimiters.default()
    exporter = ExportPoller(
        services,
        limiters,
        poll_interval=settings.poll_interval_seconds,
        stale_retries=settings.stale_export_retries,
        timeout=settings.export_timeout_mins * 60,
    )
    dispatcher = BackupDispatcher(
        groups=services,
        projects=services,
        exporter=exporter,
        storage=storage,
        tmp_dir=settings.tmp_dir,
        hooks=Hooks(settings.prebackup, settings.postbackup),
        workers=settings.backup_workers,
        limiters=limiters,
    )
    return dispatcher.run(
        cancel,
        group_id=settings.gitlab_group_id,
        project_id=settings.gitlab_project_id,
    )


def print_config(settings: Settings) -> None:
    """Print the effective configuration with credentials masked."""
    table = Table(title="Configuration", show_header=True, header_style="bold cyan")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in settings.redacted_dump().items():
        table.add_row(key, "" if value is None else str(value))
    console.print(table)


@app.command()
def backup(
    group_id: Optional[int] = typer.Option(None, "--group-id", help="Group to back up, with all subgroups"),
    project_id: Optional[int] = typer.Option(None, "--project-id", help="Single project to back up"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Local directory for archives"),
    timeout: Optional[int] = typer.Option(None, "--timeout", help="Export timeout in minutes"),
    tmpdir: Optional[Path] = typer.Option(None, "--tmpdir", help="Directory for temporary archives"),
    gitlab_url: Optional[str] = typer.Option(None, "--gitlab-url", help="GitLab base URL"),
    workers: Optional[int] = typer.Option(None, "--workers", help="Projects exported in parallel"),
    config_show: bool = typer.Option(False, "--config-show", help="Print the configuration and exit"),
):
    """Export GitLab projects and save the archives."""
    overrides = {
        "gitlab_group_id": group_id,
        "gitlab_project_id": project_id,
        "local_path": str(output) if output is not None else None,
        "export_timeout_mins": timeout,
        "tmp_dir": str(tmpdir) if tmpdir is not None else None,
        "gitlab_uri": gitlab_url,
        "backup_workers": workers,
    }

    try:
        settings = Settings(**{k: v for k, v in overrides.items() if v is not None})
    except ValidationError as e:
        print_error("Invalid configuration", e)
        raise typer.Exit(1)

    setup_logging(settings.log_level, show_time=not settings.no_log_time, redact=settings.redact)

    if config_show:
        print_config(settings)
        raise typer.Exit(0)

    cancel = CancelToken()
    ShutdownHandler(cancel).install()

    target = (
        f"Group {settings.gitlab_group_id}"
        if settings.gitlab_group_id
        else f"Project {settings.gitlab_project_id}"
    )
    print_banner("GitLab Backup", f"{target} on {settings.gitlab_uri}")

    try:
        summary = run_backup(settings, cancel)
    except ConfigurationError as e:
        print_error(settings.redact(str(e)))
        raise typer.Exit(1)
    except BackupErrors as e:
        if e.summary is not None:
            print_backup_summary(e.summary, redact=settings.redact)
        print_completion(success=False)
        raise typer.Exit(1)
    except GitLabBackupError as e:
        print_error(settings.redact(str(e)))
        raise typer.Exit(1)
    except OperationCancelled as e:
        print_error(settings.redact(f"Backup interrupted: {e}"))
        raise typer.Exit(1)

    print_backup_summary(summary, redact=settings.redact)
    print_completion(success=True)


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
