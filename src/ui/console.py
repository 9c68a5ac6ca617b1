"""
GitLab Backup - Console UI Module

Provides rich console output with tables, panels and formatted logging.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from backup.dispatcher import BackupSummary
from restore.types import Phase, PhaseState, RestoreResult

# Global console instance
console = Console()

Redactor = Callable[[str], str]


class RedactingFilter(logging.Filter):
    """Passes every log message through a redactor before it is emitted."""

    def __init__(self, redact: Redactor):
        super().__init__()
        self.redact = redact

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = self.redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging(level: str = "INFO", show_time: bool = True, redact: Optional[Redactor] = None) -> None:
    """Configure logging with Rich handler.

    With ``redact`` set, credentials are removed from every log line.
    """
    handler = RichHandler(console=console, rich_tracebacks=True, show_time=show_time)
    if redact is not None:
        handler.addFilter(RedactingFilter(redact))

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )


def print_banner(title: str, subtitle: str) -> None:
    """Print the startup banner."""
    banner = Text()
    banner.append(f"{title}\n", style="bold cyan")
    banner.append(f"{subtitle}\n", style="dim")
    banner.append(f"Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}", style="dim")

    console.print(Panel(banner, title="[bold]GitLab Backup[/]", border_style="cyan"))


def print_backup_summary(summary: BackupSummary, redact: Optional[Redactor] = None) -> None:
    """Print the final backup summary table."""
    redact = redact or (lambda s: s)

    table = Table(title="Backup Summary", show_header=True, header_style="bold cyan")
    table.add_column("Metric", style="cyan", width=20)
    table.add_column("Value", style="green", justify="right")

    table.add_row("Projects Exported", str(len(summary.exported)))
    if summary.skipped_archived:
        table.add_row("Projects Skipped", f"[dim]{len(summary.skipped_archived)}[/] [dim](archived)[/]")
    if summary.total_bytes > 0:
        table.add_row("Total Size", format_size(summary.total_bytes))
    table.add_row("Duration", format_duration(summary.duration_seconds))
    if summary.failed:
        table.add_row("Errors", f"[red]{len(summary.failed)}[/]")

    console.print()
    console.print(table)

    for name, message in sorted(summary.failed.items()):
        console.print(f"  [red]✗[/] {name}: [red]{redact(message)}[/]")


_STATE_STYLES = {
    PhaseState.COMPLETED: "[green]✓ completed[/]",
    PhaseState.FAILED: "[red]✗ failed[/]",
    PhaseState.SKIPPED: "[yellow]skipped[/]",
    PhaseState.NOT_RUN: "[dim]not run[/]",
}


def print_restore_result(result: RestoreResult, redact: Optional[Redactor] = None) -> None:
    """Print the restore report: phases, errors and warnings.

    Every message goes through ``redact`` before it is printed.
    """
    redact = redact or (lambda s: s)

    table = Table(title="Restore Phases", show_header=True, header_style="bold cyan")
    table.add_column("Phase", style="cyan")
    table.add_column("State")
    table.add_column("Reason", style="dim")
    for phase in Phase:
        if phase is Phase.COMPLETE:
            continue
        record = result.phases.get(phase)
        state = record.state if record else PhaseState.NOT_RUN
        table.add_row(phase.value, _STATE_STYLES[state], redact(record.reason) if record else "")

    console.print()
    console.print(table)

    if result.errors:
        errors = Table(title="Errors", show_header=True, header_style="bold red")
        errors.add_column("Phase")
        errors.add_column("Fatal")
        errors.add_column("Component")
        errors.add_column("Message", style="red")
        for error in result.errors:
            errors.add_row(
                error.phase.value,
                "yes" if error.fatal else "no",
                error.component,
                redact(error.message),
            )
        console.print(errors)

    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/] {redact(warning)}")

    metrics = result.metrics
    lines = [
        f"Downloaded: {format_size(metrics.bytes_downloaded)}",
        f"Extracted: {format_size(metrics.bytes_extracted)}",
        f"Duration: {format_duration(metrics.duration_seconds)}",
    ]
    if result.success:
        lines.insert(0, f"Project ID: {result.project_id}")
        lines.insert(1, f"URL: {redact(result.project_url)}")
        console.print(Panel("\n".join(lines), title="[bold green]✓ Restore completed successfully[/]", border_style="green"))
    else:
        console.print(Panel("\n".join(lines), title="[bold red]✗ Restore failed[/]", border_style="red"))


def print_completion(success: bool = True) -> None:
    """Print completion message."""
    if success:
        console.print("\n[bold green]✓ Backup completed successfully[/]")
    else:
        console.print("\n[bold red]✗ Backup completed with errors[/]")


def print_error(message: str, exception: Optional[Exception] = None) -> None:
    """Print an error message."""
    console.print(f"[bold red]Error:[/] {message}")
    if exception:
        console.print(f"[dim]{type(exception).__name__}: {exception}[/]")


def format_size(size_bytes: int) -> str:
    """Format bytes to human-readable size."""
    size = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} PB"


def format_duration(seconds: float) -> str:
    """Format seconds to human-readable duration."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{minutes}m {secs}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        return f"{hours}h {minutes}m"
