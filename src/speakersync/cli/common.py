"""
Shared helpers for CLI commands: logging setup, runtime construction and
running async operations from Typer's sync context.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import TypeVar

import typer

from speakersync.core.runtime import Runtime

T = TypeVar("T")


def setup_logging(debug: bool = False) -> None:
    """
    Configure logging for all commands.

    Args:
        debug: If True, enable DEBUG level logging
    """
    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def get_runtime(ctx: typer.Context) -> Runtime:
    """Build the runtime for the data directory chosen on the command line."""
    obj = ctx.obj or {}
    # .env files were already loaded by the root callback
    return Runtime.build(obj.get("data_dir"), load_env=False)


def run_async(runtime: Runtime, func: Callable[[Runtime], Awaitable[T]]) -> T:
    """
    Run ``func(runtime)`` on a fresh event loop and close the HTTP client
    on the same loop afterwards.
    """

    async def _main() -> T:
        try:
            return await func(runtime)
        finally:
            await runtime.remote.aclose()

    return asyncio.run(_main())
