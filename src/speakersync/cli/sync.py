"""
speakersync CLI - sync and watch commands.

``sync`` runs one attempt against the remote document; ``watch`` keeps
auto-sync and the backup schedule running until interrupted.
"""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from speakersync.cli.common import get_runtime, run_async
from speakersync.cli.errors import ExitCode, print_error, print_not_configured_error
from speakersync.core.events import (
    BackupCreated,
    ConflictsDetected,
    ConnectionChanged,
    IntegrityCheckRequested,
    RestoreProposed,
    SyncCompleted,
    SyncFailed,
)
from speakersync.core.runtime import Runtime
from speakersync.core.sync import Conflict, SyncAction, SyncResult

console = Console()


def _print_conflicts(conflicts: list[Conflict]) -> None:
    table = Table(title="Conflicts", show_header=True)
    table.add_column("Record", style="cyan")
    table.add_column("Fields")
    table.add_column("Resolution")
    for conflict in conflicts:
        label = conflict.record_name or str(conflict.record_id)
        table.add_row(label, ", ".join(conflict.fields), conflict.resolution.value)
    console.print(table)


def sync(
    ctx: typer.Context,
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="List every conflict that was resolved",
    ),
) -> None:
    """
    Run one sync attempt now.

    Pushes the local dataset when it is newer, merges the remote one when
    that is newer, and does nothing when both are equal.

    Examples:
        speakersync sync            # One attempt
        speakersync sync -v         # Also list resolved conflicts
    """
    runtime = get_runtime(ctx)
    if not runtime.config.is_configured():
        print_not_configured_error()
        raise typer.Exit(ExitCode.USER_ERROR)

    async def _sync(rt: Runtime) -> SyncResult | None:
        result = await rt.engine.sync_now()
        # an integrity check requested by the attempt still runs to completion
        await rt.backups.drain()
        # a one-shot command does not wait for scheduled retries
        await rt.engine.shutdown()
        return result

    result = run_async(runtime, _sync)
    if result is None:
        print_error(
            "Sync failed",
            reason=runtime.engine.last_error,
            solution="speakersync --debug sync  # for details",
        )
        raise typer.Exit(ExitCode.GENERAL_ERROR)

    if result.action is SyncAction.PUSH:
        console.print(f"[green]✓[/green] Pushed local v{result.local_version} to remote")
    elif result.action is SyncAction.PULL:
        console.print(f"[green]✓[/green] Merged remote v{result.remote_version} into local data")
    else:
        console.print("[green]✓[/green] Already up to date")

    if result.conflicts:
        console.print(f"[yellow]⚠[/yellow]  Resolved {len(result.conflicts)} conflict(s)")
        if verbose:
            _print_conflicts(result.conflicts)


def _attach_printers(runtime: Runtime) -> None:
    bus = runtime.bus

    def on_completed(event: SyncCompleted) -> None:
        if event.action != SyncAction.NONE.value:
            console.print(f"[green]✓[/green] Sync {event.action} ({event.conflict_count} conflicts)")

    def on_failed(event: SyncFailed) -> None:
        console.print(f"[red]✗[/red] Sync failed after {event.retry_count} attempts: {event.error}")

    def on_conflicts(event: ConflictsDetected) -> None:
        _print_conflicts(event.conflicts)

    def on_connection(event: ConnectionChanged) -> None:
        console.print("[blue]Online[/blue]" if event.online else "[yellow]Offline[/yellow]")

    def on_backup(event: BackupCreated) -> None:
        console.print(f"[dim]Backup {event.summary.id} ({event.summary.type.value})[/dim]")

    def on_integrity_check(event: IntegrityCheckRequested) -> None:
        console.print(
            f"[yellow]⚠[/yellow]  {event.source.capitalize()} data is unreadable; checking integrity"
        )

    def on_restore_proposed(event: RestoreProposed) -> None:
        console.print(
            f"[red]Data corruption detected.[/red] Backup {event.backup.id} looks intact; "
            f"run [bold]speakersync backup restore {event.backup.id}[/bold] to restore it."
        )

    bus.sync_completed.subscribe(on_completed)
    bus.sync_failed.subscribe(on_failed)
    bus.conflicts_detected.subscribe(on_conflicts)
    bus.connection_changed.subscribe(on_connection)
    bus.backup_created.subscribe(on_backup)
    bus.integrity_check_requested.subscribe(on_integrity_check)
    bus.restore_proposed.subscribe(on_restore_proposed)


def watch(ctx: typer.Context) -> None:
    """
    Keep syncing and backing up until Ctrl+C.

    On exit, a pending local change is flushed to the remote document once.

    Examples:
        speakersync watch
        speakersync --debug watch   # With detailed logging
    """
    runtime = get_runtime(ctx)
    configured = runtime.config.is_configured()
    if not configured:
        console.print("[yellow]Sync is not configured; only backups will run.[/yellow]")

    _attach_printers(runtime)

    async def _watch(rt: Runtime) -> None:
        rt.start()
        try:
            await asyncio.Event().wait()
        finally:
            await rt.stop()

    if configured:
        interval = runtime.config.config.auto_sync_interval
        console.print(f"[blue]Watching; syncing every {interval:g}s. Press Ctrl+C to stop.[/blue]")
    try:
        run_async(runtime, _watch)
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped[/dim]")
        raise typer.Exit(ExitCode.SIGINT)
