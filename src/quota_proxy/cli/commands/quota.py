"""Quota pool commands."""

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich import box
from rich.table import Table
from sqlalchemy.exc import SQLAlchemyError
from structlog import get_logger

from quota_proxy.cli.helpers import console, err_console, load_settings
from quota_proxy.config.settings import Settings
from quota_proxy.db import close_db, init_db
from quota_proxy.db.models import SharedPoolQuota
from quota_proxy.exceptions import QuotaProxyError
from quota_proxy.quota import QuotaLedger, run_quota_recovery


logger = get_logger(__name__)

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path to a TOML configuration file"),
]


def recover_quotas(config: ConfigOption = None) -> None:
    """Replenish every shared pool once.

    Meant to be run from cron when the in-process scheduler is disabled.
    Exits with 0 after a successful pass and 1 on any error.

    Examples:
        quota-proxy recover-quotas
        quota-proxy recover-quotas --config /etc/quota-proxy.toml
    """
    settings = load_settings(config)
    try:
        count = asyncio.run(run_quota_recovery(settings))
    except (QuotaProxyError, SQLAlchemyError, OSError) as e:
        err_console.print(f"[red]Quota recovery failed:[/red] {e}")
        raise typer.Exit(1) from e
    except Exception as e:
        logger.exception("quota_recovery_unexpected_error", error_type=type(e).__name__)
        err_console.print(f"[red]Quota recovery failed:[/red] {e}")
        raise typer.Exit(1) from e

    console.print(f"Recovered [bold]{count}[/bold] shared pool(s)")


async def _load_pools(settings: Settings, user_id: str) -> list[SharedPoolQuota]:
    await init_db(settings.database.path, echo=settings.database.echo)
    try:
        return await QuotaLedger(settings.quota).list_shared_pools(user_id)
    finally:
        await close_db()


def show_pools(
    user_id: Annotated[str, typer.Argument(help="Owner of the shared pools")],
    config: ConfigOption = None,
) -> None:
    """Show a user's shared pool balances."""
    settings = load_settings(config)
    try:
        pools = asyncio.run(_load_pools(settings, user_id))
    except (SQLAlchemyError, OSError) as e:
        err_console.print(f"[red]Cannot read pools:[/red] {e}")
        raise typer.Exit(1) from e

    if not pools:
        console.print(f"No shared pools for [bold]{user_id}[/bold]")
        return

    table = Table(
        show_header=True,
        header_style="bold cyan",
        box=box.ROUNDED,
        title=f"Shared pools of {user_id}",
        title_style="bold white",
    )
    table.add_column("Model", style="cyan")
    table.add_column("Balance", justify="right")
    table.add_column("Max", justify="right")
    table.add_column("Last recovered", style="dim")
    for pool in pools:
        table.add_row(
            pool.model_name,
            f"{pool.balance:g}",
            f"{pool.max_balance:g}",
            pool.last_recovered_at.isoformat() if pool.last_recovered_at else "-",
        )
    console.print(table)
