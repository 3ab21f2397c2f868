"""Pending flow maintenance."""

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from quota_proxy.auth.store import SqlFlowStateStore
from quota_proxy.cli.helpers import console, err_console, load_settings
from quota_proxy.config.settings import Settings
from quota_proxy.db import close_db, init_db
from quota_proxy.exceptions import StorageError


async def _cleanup(settings: Settings) -> int:
    await init_db(settings.database.path, echo=settings.database.echo)
    try:
        return await SqlFlowStateStore().cleanup_expired()
    finally:
        await close_db()


def cleanup_flows(
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to a TOML configuration file"),
    ] = None,
) -> None:
    """Delete expired OAuth flow states."""
    settings = load_settings(config)
    try:
        count = asyncio.run(_cleanup(settings))
    except (StorageError, OSError) as e:
        err_console.print(f"[red]Cleanup failed:[/red] {e}")
        raise typer.Exit(1) from e
    console.print(f"Removed [bold]{count}[/bold] expired flow state(s)")
