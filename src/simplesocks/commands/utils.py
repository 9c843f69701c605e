"""
Utility commands for the simplesocks CLI.

Contains init, decode and reply commands.
"""

import asyncio
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from ..channel import MemoryChannel
from ..core.config import Settings
from ..endpoint import Socks5Endpoint, encode_reply
from ..errors import Socks5Error
from ..models import ResponseCode

console = Console()


def parse_response_code(value: str) -> ResponseCode:
    """Parse a reply code given by name (case-insensitive) or number."""
    try:
        return ResponseCode.from_wire(int(value, 0))
    except ValueError:
        pass
    try:
        return ResponseCode[value.upper()]
    except KeyError:
        names = ", ".join(code.name for code in ResponseCode)
        raise typer.BadParameter(f"Unknown reply code {value!r}. Use 0-8 or one of: {names}")


async def run_handshake(data: bytes) -> tuple[Socks5Endpoint, Optional[bool]]:
    """
    Run method negotiation and request parsing over captured client bytes.

    Returns:
        The endpoint and the request validity (None if the method offer was
        refused and no request was read)
    """
    endpoint = Socks5Endpoint(MemoryChannel(data))
    if not await endpoint.accept_authentication():
        return endpoint, None
    return endpoint, await endpoint.read_request()


def register_util_commands(app: typer.Typer):
    """Register utility commands with the main app."""

    @app.command()
    def init(
        output: Annotated[str, typer.Option("--output", "-o", help="Output path for configuration file")] = "config/config.yaml",
        force: Annotated[bool, typer.Option("--force", "-f", help="Overwrite an existing file")] = False,
    ):
        """Write a configuration file with default settings."""
        output_path = Path(output)

        if output_path.exists() and not force:
            if not typer.confirm(f"Configuration file {output} already exists. Overwrite?"):
                raise typer.Abort()

        Settings().save_to_yaml(output_path)
        console.print(f"[green]Configuration file created: {output}[/green]")
        console.print("[dim]Set server.relay before running 'simplesocks serve'.[/dim]")

    @app.command()
    def decode(
        data: Annotated[str, typer.Argument(help="Client bytes in hex: method offer followed by request")],
    ):
        """Decode a captured client handshake."""
        try:
            raw = bytes.fromhex(data.replace(":", " "))
        except ValueError as e:
            console.print(f"[red]Invalid hex input: {e}[/red]")
            raise typer.Exit(1)

        try:
            endpoint, valid = asyncio.run(run_handshake(raw))
        except Socks5Error as e:
            console.print(f"[red]{type(e).__name__}: {e}[/red]")
            raise typer.Exit(1)

        table = Table(title="SOCKS5 Handshake", show_header=True)
        table.add_column("Field", style="cyan")
        table.add_column("Value")

        method_reply = endpoint.channel.written[:2].hex(" ")
        if valid is None:
            table.add_row("Authentication", f"[red]refused[/red] ({method_reply})")
            console.print(table)
            return

        request = endpoint.request
        table.add_row("Authentication", f"[green]no-auth[/green] ({method_reply})")
        table.add_row("Command", request.command.name if request.command else "[red]unknown[/red]")
        table.add_row("Target", request.target if request.target is not None else "[red]unknown[/red]")
        table.add_row("Port", str(request.port))
        table.add_row("Valid", "[green]yes[/green]" if valid else "[red]no[/red]")

        reply = endpoint.suggested_reply()
        table.add_row("Reply", f"{reply.name} ({encode_reply(reply).hex(' ')})")

        leftover = endpoint.channel.remaining
        if leftover:
            table.add_row("Unread", f"[yellow]{leftover.hex(' ')}[/yellow]")

        console.print(table)

    @app.command()
    def reply(
        code: Annotated[str, typer.Argument(help="Reply code name (e.g. SUCCESS) or number")],
    ):
        """Print the bytes of a server reply."""
        response = parse_response_code(code)
        console.print(f"{response.name}: {encode_reply(response).hex(' ')}")
