"""
speakersync CLI - setup command.

Validates a credential against the remote API and, unless an existing
document id is given, creates a new private document seeded with the
current local records.
"""

from __future__ import annotations

import typer
from rich.console import Console

from speakersync.cli.common import get_runtime, run_async
from speakersync.cli.errors import ExitCode, print_error
from speakersync.core.exceptions import SpeakerSyncError
from speakersync.core.runtime import Runtime

console = Console()


def setup(
    ctx: typer.Context,
    token: str = typer.Option(
        ...,
        "--token",
        "-t",
        prompt=True,
        hide_input=True,
        help="API credential with permission to read and write gists",
    ),
    document_id: str | None = typer.Option(
        None,
        "--document-id",
        "-d",
        help="Use an existing remote document instead of creating one",
    ),
) -> None:
    """
    Connect to a remote document.

    Examples:
        speakersync setup --token ghp_xxx                 # Create a new document
        speakersync setup --token ghp_xxx -d 1a2b3c4d     # Use an existing one
    """
    runtime = get_runtime(ctx)

    async def _setup(rt: Runtime) -> str | None:
        if not await rt.remote.validate_token(token):
            return None
        if document_id:
            return document_id
        try:
            speakers = rt.repository.load().speakers
        except SpeakerSyncError:
            speakers = []
        return await rt.remote.create_document(token, speakers)

    try:
        result = run_async(runtime, _setup)
    except SpeakerSyncError as e:
        print_error("Could not create the remote document", reason=str(e))
        raise typer.Exit(ExitCode.GENERAL_ERROR)

    if result is None:
        print_error(
            "Credential rejected",
            reason="The remote API did not accept the token",
            solution="Create a token with the 'gist' scope and try again",
        )
        raise typer.Exit(ExitCode.USER_ERROR)

    runtime.config.update(token=token, document_id=result)
    action = "Connected to" if document_id else "Created"
    console.print(f"[green]✓[/green] {action} remote document {result}")
    console.print("\n[dim]→ Run [bold]speakersync sync[/bold] to synchronize now[/dim]")
