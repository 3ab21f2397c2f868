"""Shared CLI helpers."""

from pathlib import Path

import typer
from rich.console import Console

from quota_proxy.config.settings import ConfigurationError, Settings, get_settings
from quota_proxy.core.logging import setup_logging


console = Console()
err_console = Console(stderr=True)


def load_settings(config: Path | None) -> Settings:
    """Load settings and configure logging, exiting with 1 on a bad config."""
    try:
        settings = get_settings(config)
    except ConfigurationError as e:
        err_console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1) from e
    setup_logging(settings.logging)
    return settings
