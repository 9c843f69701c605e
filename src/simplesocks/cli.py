"""
Command Line Interface for simplesocks.

Provides commands for running the SOCKS5 server and inspecting
handshake bytes.

Built with Typer for automatic tab completion.
"""

from typing import Annotated

import typer
from rich.console import Console

from . import __version__
from .commands import register_server_commands, register_util_commands

console = Console()

app = typer.Typer(
    name="simplesocks",
    help="simplesocks - minimal SOCKS5 server",
    add_completion=True,
    rich_markup_mode="rich",
)


def version_callback(value: bool):
    if value:
        console.print(f"simplesocks version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[bool, typer.Option("--version", callback=version_callback, is_eager=True, help="Show version and exit.")] = False,
):
    """
    simplesocks - minimal SOCKS5 server

    Accepts CONNECT requests without authentication and hands the
    connection to a relay once the target is reachable.
    """
    pass


register_server_commands(app)
register_util_commands(app)


# Entry point for the CLI
def cli():
    """Main entry point."""
    app()


if __name__ == "__main__":
    cli()
