"""
Standardized error handling and exit codes for the speakersync CLI.

This module provides consistent error messaging with actionable guidance
and standardized exit codes across all CLI commands.
"""

from enum import IntEnum

from rich.console import Console

console = Console()


class ExitCode(IntEnum):
    """Standard exit codes for speakersync CLI operations."""

    SUCCESS = 0
    """Operation completed successfully."""

    GENERAL_ERROR = 1
    """Generic error (remote failure, unrecoverable data)."""

    USER_ERROR = 2
    """User configuration or input error (actionable by user)."""

    SIGINT = 130
    """Terminated by SIGINT (Ctrl+C) - Unix standard."""


def print_error(
    problem: str,
    *,
    reason: str | None = None,
    solution: str | None = None,
) -> None:
    """
    Print a standardized error message with actionable guidance.

    Args:
        problem: Brief description of what went wrong
        reason: Optional explanation of why it happened
        solution: Optional command or action to fix it

    Example:
        >>> print_error(
        ...     "Sync is not configured",
        ...     reason="No credential or document id is set",
        ...     solution="speakersync setup --token <token>",
        ... )
    """
    console.print(f"[red]Error:[/red] {problem}")

    if reason:
        console.print(f"[dim]{reason}[/dim]")

    if solution:
        console.print(f"[cyan]→ Try:[/cyan] {solution}")


def print_not_configured_error() -> None:
    """Print error when no credential or document id is configured."""
    print_error(
        "Sync is not configured",
        reason="Both a credential and a remote document id are required",
        solution="speakersync setup --token <token>  # or set SPEAKERSYNC_TOKEN",
    )


def print_backup_not_found_error(backup_id: str) -> None:
    """Print error when a backup id does not exist."""
    print_error(
        f"Backup not found: {backup_id}",
        reason="The backup may have expired or the id may be mistyped",
        solution="speakersync backup list  # to see available backups",
    )


def print_unknown_config_key_error(key: str, valid_keys: list[str]) -> None:
    """Print error when `config set` is given a key that does not exist."""
    print_error(
        f"Unknown configuration key: {key}",
        reason=f"Valid keys are: {', '.join(valid_keys)}",
    )
