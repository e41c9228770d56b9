"""contextkb CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from contextkb.cli.context import context_cmd
from contextkb.cli.conversations import import_cmd
from contextkb.cli.ingest import ingest_cmd
from contextkb.cli.init import init_cmd
from contextkb.cli.resolve import resolve_cmd
from contextkb.cli.status import status_cmd
from contextkb.config import ConfigError, load_config
from contextkb.log import configure_logging


def _installed_version() -> str:
    try:
        return importlib.metadata.version("contextkb")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"contextkb {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="contextkb",
    help=(
        "contextkb — conversation knowledge base and context assembly.\n\n"
        "  contextkb ingest   Attach files to a conversation.\n"
        "  contextkb context  Show the context assembled for a conversation."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log debug output to stderr."),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """contextkb — conversation knowledge base and context assembly."""
    if verbose:
        configure_logging("DEBUG")
        return
    try:
        configure_logging(load_config().logging.level)
    except ConfigError:
        # Commands report the config error themselves.
        configure_logging()


app.command("init")(init_cmd)
app.command("import")(import_cmd)
app.command("ingest")(ingest_cmd)
app.command("resolve")(resolve_cmd)
app.command("context")(context_cmd)
app.command("status")(status_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed contextkb version."""
    typer.echo(f"contextkb {_installed_version()}")


if __name__ == "__main__":
    app()
