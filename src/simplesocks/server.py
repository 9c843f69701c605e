"""
SOCKS5 server built on the protocol endpoint.

Accepts TCP clients, runs one Socks5Endpoint per connection, opens the
requested outbound connection through a connector and hands both streams
to a relay once SUCCESS has been sent. What happens to the traffic after
that is up to the relay.
"""

import asyncio
import errno
import importlib
import socket
from typing import Awaitable, Callable, Optional

import structlog

from .channel import StreamChannel
from .endpoint import Socks5Endpoint
from .errors import (
    MalformedRequestError,
    ProtocolVersionError,
    UnderlyingIOError,
)
from .models import Command, ConnectionInfo, ParsedRequest, ResponseCode

logger = structlog.get_logger(__name__)

Connector = Callable[[ParsedRequest, float], Awaitable[StreamChannel]]
Relay = Callable[[StreamChannel, StreamChannel, ConnectionInfo], Awaitable[None]]


async def open_direct_connection(request: ParsedRequest, timeout: float) -> StreamChannel:
    """Connect straight to the requested target."""
    reader, writer = await asyncio.wait_for(
        asyncio.open_connection(request.target, request.port),
        timeout=timeout
    )
    return StreamChannel(reader, writer)


def load_relay(path: str) -> Relay:
    """
    Import a relay from a 'module:function' path.

    Raises:
        ImportError: If the module cannot be imported
        AttributeError: If the module has no such attribute
        TypeError: If the attribute is not callable
    """
    module_name, _, attr = path.partition(":")
    relay = getattr(importlib.import_module(module_name), attr)
    if not callable(relay):
        raise TypeError(f"Relay {path} is not callable")
    return relay


def response_for_error(error: BaseException) -> ResponseCode:
    """Map a failed outbound connection attempt to a reply code."""
    if isinstance(error, ConnectionRefusedError):
        return ResponseCode.CONNECTION_REFUSED
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return ResponseCode.TTL_EXPIRED
    if isinstance(error, socket.gaierror):
        return ResponseCode.HOST_UNREACHABLE
    if isinstance(error, OSError):
        if error.errno == errno.ENETUNREACH:
            return ResponseCode.NETWORK_UNREACHABLE
        if error.errno == errno.EHOSTUNREACH:
            return ResponseCode.HOST_UNREACHABLE
    return ResponseCode.GENERAL_FAILURE


class Socks5Server:
    """
    Asyncio SOCKS5 server without authentication.

    Features:
    - RFC 1928 handshake through Socks5Endpoint
    - CONNECT by default, BIND only when explicitly allowed
    - Handshake and connect timeouts
    - Connection limit
    - Pluggable connector and relay
    """

    def __init__(
        self,
        relay: Relay,
        host: str = "127.0.0.1",
        port: int = 1080,
        connector: Connector = open_direct_connection,
        handshake_timeout: float = 30,
        connect_timeout: float = 30,
        max_connections: int = 100,
        allowed_commands: Optional[set[Command]] = None,
    ):
        """
        Initialize the SOCKS5 server.

        Args:
            relay: Takes over the client and upstream channels after SUCCESS
            host: Host address to bind to
            port: Port to listen on (0 lets the OS choose)
            connector: Opens the outbound connection for a parsed request
            handshake_timeout: Seconds a client gets to finish the handshake
            connect_timeout: Seconds allowed for the outbound connection
            max_connections: Concurrent clients before new ones are dropped
            allowed_commands: Commands to serve (default: CONNECT only)
        """
        self.relay = relay
        self.host = host
        self.port = port
        self.connector = connector
        self.handshake_timeout = handshake_timeout
        self.connect_timeout = connect_timeout
        self.max_connections = max_connections
        self.allowed_commands = allowed_commands or {Command.CONNECT}

        self._server: Optional[asyncio.Server] = None
        self._connections: dict[str, ConnectionInfo] = {}
        self._running = False

        # Connection callback for monitoring
        self._on_connection: Optional[Callable[[ConnectionInfo], Awaitable[None]]] = None

    async def start(self) -> None:
        """Start the SOCKS5 server."""
        self._server = await asyncio.start_server(
            self._handle_client,
            self.host,
            self.port,
            reuse_address=True,
        )

        self._running = True
        host, port = self.bound_address
        logger.info("SOCKS5 server started", host=host, port=port)

    async def stop(self) -> None:
        """Stop accepting clients."""
        self._running = False

        if self._server:
            self._server.close()
            await self._server.wait_closed()

        logger.info("SOCKS5 server stopped")

    async def serve_forever(self) -> None:
        """Run the server until stopped."""
        if not self._server:
            await self.start()

        async with self._server:
            await self._server.serve_forever()

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter
    ) -> None:
        """Handle a new client connection."""
        client = StreamChannel(reader, writer)
        peer = client.peername or ("unknown", 0)
        conn_id = f"{peer[0]}:{peer[1]}"

        if len(self._connections) >= self.max_connections:
            logger.warning("Connection limit reached", client=conn_id, limit=self.max_connections)
            await client.wait_closed()
            return

        logger.debug("New connection", client=conn_id)

        info = ConnectionInfo(client_address=str(peer[0]), client_port=peer[1])
        self._connections[conn_id] = info
        upstream: Optional[StreamChannel] = None

        try:
            endpoint = Socks5Endpoint(client)
            request = await asyncio.wait_for(
                endpoint.handshake(),
                timeout=self.handshake_timeout
            )

            if request is None:
                info.reply = endpoint.rejection
                return

            info.command = request.command
            info.target_host = request.target
            info.target_port = request.port

            if request.command not in self.allowed_commands:
                logger.warning("Command not allowed", client=conn_id, command=request.command.name)
                await self._reply(endpoint, info, ResponseCode.COMMAND_NOT_SUPPORTED)
                return

            try:
                upstream = await self.connector(request, self.connect_timeout)
            except (OSError, asyncio.TimeoutError, ValueError) as e:
                reply = response_for_error(e)
                logger.warning(
                    "Outbound connection failed",
                    client=conn_id,
                    target=info.target,
                    reply=reply.name,
                    error=str(e) or type(e).__name__
                )
                await self._reply(endpoint, info, reply)
                return

            await self._reply(endpoint, info, ResponseCode.SUCCESS)
            logger.info("Connection established", client=conn_id, target=info.target)

            if self._on_connection:
                await self._on_connection(info)

            await self.relay(client, upstream, info)

        except asyncio.TimeoutError:
            logger.warning("Connection timeout", client=conn_id)
        except ProtocolVersionError as e:
            logger.warning("Protocol error", client=conn_id, version=e.version)
        except MalformedRequestError as e:
            logger.warning("Malformed request", client=conn_id, error=str(e))
        except UnderlyingIOError as e:
            logger.debug("Client stream failed", client=conn_id, error=str(e))
        except Exception:
            logger.exception("Unexpected error", client=conn_id)
        finally:
            self._connections.pop(conn_id, None)
            if upstream is not None:
                await upstream.wait_closed()
            await client.wait_closed()

    async def _reply(
        self,
        endpoint: Socks5Endpoint,
        info: ConnectionInfo,
        reply: ResponseCode
    ) -> None:
        await endpoint.send_reply(reply)
        info.reply = reply

    def set_connection_callback(
        self,
        callback: Callable[[ConnectionInfo], Awaitable[None]]
    ) -> None:
        """Set callback for established connections."""
        self._on_connection = callback

    @property
    def bound_address(self) -> tuple[str, int]:
        """Address the listening socket is bound to."""
        if not self._server or not self._server.sockets:
            return self.host, self.port
        sockname = self._server.sockets[0].getsockname()
        return sockname[0], sockname[1]

    @property
    def active_connections(self) -> int:
        """Get number of active connections."""
        return len(self._connections)

    def get_connection_info(self) -> list[ConnectionInfo]:
        """Get info about all active connections."""
        return list(self._connections.values())
