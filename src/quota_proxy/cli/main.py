"""quota-proxy command line entry point."""

from typing import Annotated

import typer

from quota_proxy import __version__
from quota_proxy.cli.commands.flows import cleanup_flows
from quota_proxy.cli.commands.quota import recover_quotas, show_pools
from quota_proxy.cli.helpers import console


app = typer.Typer(
    name="quota-proxy",
    help="Credential pool and quota management",
    no_args_is_help=True,
)

app.command(name="recover-quotas")(recover_quotas)
app.command(name="pools")(show_pools)
app.command(name="cleanup-flows")(cleanup_flows)


def version_callback(value: bool) -> None:
    if value:
        console.print(f"quota-proxy {__version__}")
        raise typer.Exit()


@app.callback()
def app_main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit",
        ),
    ] = False,
) -> None:
    """Credential pool and quota management."""


def main() -> None:
    app()


if __name__ == "__main__":
    main()
