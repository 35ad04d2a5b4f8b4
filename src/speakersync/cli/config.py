"""
speakersync CLI - configuration commands.
"""

import json

import typer
from rich.console import Console
from rich.table import Table

from speakersync.cli.common import get_runtime
from speakersync.cli.errors import ExitCode, print_error, print_unknown_config_key_error
from speakersync.core.config import BackupConfig, SyncConfig
from speakersync.core.exceptions import ConfigError

console = Console()
app = typer.Typer(
    name="config",
    help="Show and change sync configuration",
    no_args_is_help=True,
)


def _valid_keys() -> list[str]:
    keys = [name for name in SyncConfig.model_fields if name != "backup"]
    keys += [f"backup.{name}" for name in BackupConfig.model_fields]
    return keys


def _nested(key: str, value: str) -> dict[str, object]:
    """Turn ``backup.max_backups`` / ``"7"`` into ``{"backup": {"max_backups": "7"}}``."""
    result: dict[str, object] = {}
    target = result
    *parents, leaf = key.split(".")
    for part in parents:
        child: dict[str, object] = {}
        target[part] = child
        target = child
    target[leaf] = value
    return result


@app.command()
def show(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """
    Show the effective configuration (credential masked).

    Environment overrides (SPEAKERSYNC_TOKEN, SPEAKERSYNC_DOCUMENT_ID, ...)
    are included.
    """
    runtime = get_runtime(ctx)
    data = runtime.config.config.redacted()

    if as_json:
        console.print_json(json.dumps(data))
        return

    table = Table(title="Sync Configuration", show_header=False)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    backup = data.pop("backup", {})
    for key, value in data.items():
        table.add_row(key, "[dim]not set[/dim]" if value == "" else str(value))
    for key, value in backup.items():
        table.add_row(f"backup.{key}", str(value))
    console.print(table)


@app.command(name="set")
def set_value(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Key, e.g. auto_sync_interval or backup.max_backups"),
    value: str = typer.Argument(..., help="New value"),
) -> None:
    """
    Change one configuration value and persist it.

    Examples:
        speakersync config set conflict_resolution_strategy local
        speakersync config set backup.max_backups 14
    """
    valid_keys = _valid_keys()
    if key not in valid_keys:
        print_unknown_config_key_error(key, valid_keys)
        raise typer.Exit(ExitCode.USER_ERROR)

    runtime = get_runtime(ctx)
    try:
        runtime.config.update(**_nested(key, value))
    except ConfigError as e:
        print_error(f"Invalid value for {key}: {value}", reason=str(e))
        raise typer.Exit(ExitCode.USER_ERROR)

    shown = "****" if key == "token" else value
    console.print(f"[green]✓[/green] {key} = {shown}")
