"""
Server commands for the simplesocks CLI.

Contains the serve command that runs the SOCKS5 server.
"""

import asyncio
import signal
from pathlib import Path
from typing import Optional, Annotated

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel

from ..core.config import Settings
from ..core.logging import setup_logging
from ..models import Command, ConnectionInfo
from ..server import Relay, Socks5Server, load_relay

console = Console()


def register_server_commands(app: typer.Typer):
    """Register server commands with the main app."""

    @app.command()
    def serve(
        config: Annotated[str, typer.Option("--config", "-c", help="Path to configuration file")] = "config/config.yaml",
        host: Annotated[Optional[str], typer.Option("--host", "-h", help="Host to bind to")] = None,
        port: Annotated[Optional[int], typer.Option("--port", "-p", help="Port to listen on")] = None,
        relay: Annotated[Optional[str], typer.Option("--relay", "-r", help="Relay to hand connections to (module:function)")] = None,
    ):
        """Start the SOCKS5 server.

        Successful connections are handed to the configured relay.
        """
        config_file = Path(config)
        if not config_file.exists():
            console.print("[yellow]No config file found, using defaults[/yellow]")

        try:
            cfg = Settings.load_from_yaml(config_file)
        except (ValidationError, ValueError) as e:
            console.print(f"[red]Invalid configuration: {e}[/red]")
            raise typer.Exit(1)

        # Apply CLI overrides
        if host is not None:
            cfg.server.host = host
        if port is not None:
            cfg.server.port = port
        if relay is not None:
            cfg.server.relay = relay

        errors = cfg.validate_all()
        if errors:
            for error in errors:
                console.print(f"[red]✗[/red] {error}")
            raise typer.Exit(1)

        try:
            relay_func = load_relay(cfg.server.relay)
        except (ImportError, AttributeError, TypeError) as e:
            console.print(f"[red]Cannot load relay {cfg.server.relay}: {e}[/red]")
            raise typer.Exit(1)

        asyncio.run(_serve(cfg, relay_func))


async def _serve(cfg: Settings, relay: Relay):
    """Async implementation of serve command."""
    setup_logging(cfg.log)

    allowed_commands = {Command.CONNECT}
    if cfg.server.allow_bind:
        allowed_commands.add(Command.BIND)

    server = Socks5Server(
        relay=relay,
        host=cfg.server.host,
        port=cfg.server.port,
        handshake_timeout=cfg.server.handshake_timeout,
        connect_timeout=cfg.server.connect_timeout,
        max_connections=cfg.server.max_connections,
        allowed_commands=allowed_commands,
    )

    async def on_connection(info: ConnectionInfo):
        console.print(f"[dim]{info.client}[/dim] -> [cyan]{info.target}[/cyan]")

    server.set_connection_callback(on_connection)

    # Handle shutdown gracefully
    shutdown_event = asyncio.Event()

    def signal_handler():
        console.print("\n[yellow]Shutting down...[/yellow]")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, lambda s, f: signal_handler())

    try:
        await server.start()
        listen_host, listen_port = server.bound_address
        commands = ", ".join(sorted(c.name for c in allowed_commands))

        console.print(Panel(
            f"[bold green]SOCKS5 Server Running[/bold green]\n"
            f"Listen:   [cyan]{listen_host}:{listen_port}[/cyan]\n"
            f"Auth:     [cyan]None[/cyan]\n"
            f"Commands: [cyan]{commands}[/cyan]\n"
            f"Relay:    [cyan]{cfg.server.relay}[/cyan]\n\n"
            f"[dim]Press Ctrl+C to stop.[/dim]",
            title="simplesocks",
            border_style="green"
        ))

        await shutdown_event.wait()

    finally:
        await server.stop()
        console.print("[green]Server stopped[/green]")
