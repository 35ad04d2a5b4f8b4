"""
speakersync CLI - Main application entry point.

This module sets up the Typer CLI application with all subcommands.
"""

from pathlib import Path

import typer

from speakersync.cli import backup, config, setup_cmd, status, sync
from speakersync.cli.common import setup_logging
from speakersync.core.config import load_layered_env

# Help panel names for command grouping
PANEL_SYNC = "Sync"
PANEL_DATA = "Protect Your Data"

app = typer.Typer(
    name="speakersync",
    help="Sync a speaker database with a remote gist and keep it backed up",
    no_args_is_help=True,
    context_settings={"help_option_names": ["--help", "-h"]},
)


@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug output with detailed logging",
    ),
    data_dir: Path | None = typer.Option(
        None,
        "--data-dir",
        envvar="SPEAKERSYNC_HOME",
        help="Directory holding local data, config and backups",
    ),
) -> None:
    """
    speakersync - keep a speaker database in sync and backed up.

    Quick Start:
        1. speakersync setup --token <token>   # Connect a remote document
        2. speakersync sync                    # Sync once
        3. speakersync watch                   # Keep syncing in the foreground

    Protecting data:
        speakersync backup list                # See backups
        speakersync backup check               # Look for corruption
        speakersync backup restore <id>        # Roll back
    """
    # Precedence: OS env > project .env > user .env
    load_layered_env()
    setup_logging(debug)
    ctx.obj = {"debug": debug, "data_dir": data_dir}


# =============================================================================
# Sync
# =============================================================================

app.command(name="status", rich_help_panel=PANEL_SYNC)(status.status)
app.command(name="sync", rich_help_panel=PANEL_SYNC)(sync.sync)
app.command(name="watch", rich_help_panel=PANEL_SYNC)(sync.watch)
app.command(name="setup", rich_help_panel=PANEL_SYNC)(setup_cmd.setup)
app.add_typer(config.app, name="config", rich_help_panel=PANEL_SYNC)


# =============================================================================
# Protect Your Data
# =============================================================================

app.add_typer(backup.app, name="backup", rich_help_panel=PANEL_DATA)


def cli_main() -> None:
    """Entry point for the console script."""
    app()


__all__ = ["app", "cli_main"]
