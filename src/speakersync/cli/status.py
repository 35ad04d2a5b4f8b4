"""
speakersync CLI - status command.
"""

import typer
from rich.console import Console
from rich.table import Table

from speakersync.cli.common import get_runtime
from speakersync.core.exceptions import SpeakerSyncError
from speakersync.core.timeutil import EPOCH

console = Console()


def _format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def status(ctx: typer.Context) -> None:
    """
    Show configuration, local dataset and backup status.

    Examples:
        speakersync status
        speakersync --data-dir ./data status
    """
    runtime = get_runtime(ctx)
    config = runtime.config.config

    table = Table(title="speakersync", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    if config.is_configured():
        table.add_row("Sync", "[green]configured[/green]")
        table.add_row("Document", config.document_id)
    else:
        table.add_row("Sync", "[yellow]not configured[/yellow]")
    table.add_row("Strategy", config.conflict_resolution_strategy.value)
    table.add_row("Auto-sync interval", f"{config.auto_sync_interval:g}s")

    try:
        dataset = runtime.repository.load()
        table.add_row("Records", str(len(dataset.speakers)))
        table.add_row("Version", str(dataset.version))
        if dataset.last_modified == EPOCH:
            table.add_row("Last modified", "[dim]never[/dim]")
        else:
            table.add_row("Last modified", dataset.last_modified.strftime("%Y-%m-%d %H:%M:%S"))
    except SpeakerSyncError as e:
        table.add_row("Records", f"[red]unreadable[/red] ({e})")

    unbacked = len(runtime.repository.journal.entries())
    table.add_row("Changes since last full backup", str(unbacked))

    backup_status = runtime.backups.get_status()
    table.add_row("Backups", str(backup_status.total_backups))
    if backup_status.last_backup:
        table.add_row("Last backup", backup_status.last_backup.strftime("%Y-%m-%d %H:%M:%S"))
    table.add_row("Backup storage", _format_bytes(backup_status.disk_usage))

    console.print(table)

    if not config.is_configured():
        console.print("\n[dim]→ Run [bold]speakersync setup[/bold] to connect a remote document[/dim]")
