"""
speakersync CLI - backup commands.

Create, list, restore and check local backups, and export everything to a
single file as a last resort.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from speakersync.cli.common import get_runtime, run_async
from speakersync.cli.errors import ExitCode, print_backup_not_found_error, print_error
from speakersync.core.backup import Backup, IntegrityReport
from speakersync.core.exceptions import BackupError
from speakersync.core.runtime import Runtime

console = Console()
app = typer.Typer(
    name="backup",
    help="Manage local backups and check data integrity",
    no_args_is_help=True,
)


@app.command()
def create(ctx: typer.Context) -> None:
    """
    Create a full backup now.

    When remote backups are enabled, the backup is also written to the
    remote document.
    """
    runtime = get_runtime(ctx)
    backup = runtime.backups.create_full_backup(reason="manual")
    if backup is None:
        print_error("Backup failed", solution="speakersync --debug backup create  # for details")
        raise typer.Exit(ExitCode.GENERAL_ERROR)

    console.print(
        f"[green]✓[/green] Created backup {backup.id} "
        f"({backup.metadata.get('speakerCount', 0)} records, checksum {backup.checksum})"
    )

    config = runtime.config.config
    if config.remote_backups and config.is_configured():

        async def _upload(rt: Runtime) -> bool:
            return await rt.backups.store_remote_backup(backup)

        if run_async(runtime, _upload):
            console.print("[green]✓[/green] Stored remote copy")
        else:
            console.print("[yellow]⚠[/yellow]  Remote copy failed")


@app.command(name="list")
def list_backups(
    ctx: typer.Context,
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum backups to show"),
) -> None:
    """List backups, newest first."""
    runtime = get_runtime(ctx)
    backups = runtime.backups.list_backups()
    if not backups:
        console.print("[dim]No backups yet[/dim]")
        return

    table = Table(title=f"Backups ({len(backups)})")
    table.add_column("ID", style="cyan")
    table.add_column("Type")
    table.add_column("Created")
    table.add_column("Version", justify="right")
    table.add_column("Checksum", style="dim")
    for entry in backups[:limit]:
        table.add_row(
            entry.id,
            entry.type.value,
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            str(entry.version),
            entry.checksum,
        )
    console.print(table)


def _restore(runtime: Runtime, backup: Backup | str) -> None:
    dataset = runtime.backups.restore(backup)
    console.print(
        f"[green]✓[/green] Restored {len(dataset.speakers)} records as v{dataset.version}"
    )
    if runtime.config.is_configured():
        console.print("\n[dim]→ Run [bold]speakersync sync[/bold] to publish the restored data[/dim]")


@app.command()
def restore(
    ctx: typer.Context,
    backup_id: str = typer.Argument(..., help="Backup ID (see 'backup list')"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """
    Replace the current data with a full backup.

    A safety backup of the current data is taken first.
    """
    runtime = get_runtime(ctx)
    try:
        backup = runtime.backups.load_backup(backup_id)
    except BackupError:
        print_backup_not_found_error(backup_id)
        raise typer.Exit(ExitCode.USER_ERROR)

    if not yes and not typer.confirm(
        f"Replace current data with backup {backup.id} from "
        f"{backup.timestamp.strftime('%Y-%m-%d %H:%M:%S')}?"
    ):
        console.print("[dim]Cancelled[/dim]")
        raise typer.Exit(ExitCode.SUCCESS)

    runtime.backups.create_emergency_backup()
    try:
        _restore(runtime, backup)
    except BackupError as e:
        print_error(f"Cannot restore {backup_id}", reason=str(e))
        raise typer.Exit(ExitCode.USER_ERROR)


def _print_report(report: IntegrityReport) -> None:
    if report.healthy:
        console.print("[green]✓[/green] No corruption found")
    else:
        table = Table(title="Corruption", show_header=True)
        table.add_column("Kind", style="red")
        table.add_column("Detail")
        for issue in report.issues:
            table.add_row(issue.kind.value, issue.message)
        console.print(table)
        if report.emergency_backup_id:
            console.print(f"[dim]Emergency backup: {report.emergency_backup_id}[/dim]")
        if report.error:
            console.print(f"[red]{report.error}[/red]")

    for warning in report.validation.warnings:
        console.print(f"[yellow]⚠[/yellow]  {warning}")

    if report.repaired:
        console.print("[green]✓[/green] Repaired identifiers and names in place")
    if report.consistent is False:
        console.print("[yellow]⚠[/yellow]  Local and remote data differ; a sync is needed")


@app.command()
def check(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Restore without asking"),
) -> None:
    """
    Check the local data for corruption.

    Identifier and name defects are repaired automatically. For anything
    else the newest intact backup is offered for restore.
    """
    runtime = get_runtime(ctx)

    async def _check(rt: Runtime) -> IntegrityReport:
        return await rt.backups.perform_integrity_check()

    report = run_async(runtime, _check)
    _print_report(report)

    if report.healthy or report.repaired:
        return

    candidate = report.restore_candidate
    if candidate is None:
        print_error(
            "No intact backup is available",
            solution="speakersync backup export  # save what is left",
        )
        raise typer.Exit(ExitCode.GENERAL_ERROR)

    created = candidate.timestamp.strftime("%Y-%m-%d %H:%M:%S")
    if not yes and not typer.confirm(f"Restore backup {candidate.id} from {created}?"):
        console.print("[dim]Not restored[/dim]")
        raise typer.Exit(ExitCode.GENERAL_ERROR)

    try:
        _restore(runtime, candidate.id)
    except BackupError as e:
        print_error(f"Cannot restore {candidate.id}", reason=str(e))
        raise typer.Exit(ExitCode.GENERAL_ERROR)


@app.command()
def export(
    ctx: typer.Context,
    path: Path | None = typer.Argument(None, help="Output file (default: ./speakersync-export-<date>.json)"),
) -> None:
    """Write all stored data (without the credential) to one JSON file."""
    runtime = get_runtime(ctx)
    if path is None:
        path = Path(f"speakersync-export-{datetime.now().strftime('%Y-%m-%d')}.json")
    try:
        written = runtime.backups.export_emergency_backup(path)
    except BackupError as e:
        print_error("Export failed", reason=str(e))
        raise typer.Exit(ExitCode.GENERAL_ERROR)
    console.print(f"[green]✓[/green] Exported to {written}")
