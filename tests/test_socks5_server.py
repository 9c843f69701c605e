"""Tests for SOCKS5 server module."""

import asyncio
import errno
import socket
import struct

import pytest
import pytest_asyncio

from simplesocks.endpoint import encode_request
from simplesocks.models import Command, ResponseCode
from simplesocks.server import Socks5Server, load_relay, response_for_error


async def _open_client(server: Socks5Server):
    host, port = server.bound_address
    return await asyncio.open_connection(host, port)


async def _negotiate(reader, writer):
    writer.write(struct.pack("!BBB", 0x05, 1, 0x00))
    await writer.drain()
    return await reader.readexactly(2)


@pytest_asyncio.fixture
async def server(pipe_once):
    """Create and start a test server."""
    server = Socks5Server(
        relay=pipe_once,
        host="127.0.0.1",
        port=0,  # Let OS choose port
        handshake_timeout=2,
        connect_timeout=2,
    )
    await server.start()
    yield server
    await server.stop()


class TestSocks5Server:
    """Tests for Socks5Server."""

    @pytest.mark.asyncio
    async def test_server_starts(self, pipe_once):
        """Test that server starts and stops correctly."""
        server = Socks5Server(relay=pipe_once, host="127.0.0.1", port=0)
        await server.start()
        assert server._running is True
        assert server.bound_address[1] != 0
        await server.stop()
        assert server._running is False

    @pytest.mark.asyncio
    async def test_connect_and_relay(self, server, echo_server):
        """Test a full CONNECT handshake followed by relayed data."""
        reader, writer = await _open_client(server)

        assert await _negotiate(reader, writer) == b"\x05\x00"

        writer.write(encode_request(Command.CONNECT, "127.0.0.1", echo_server))
        await writer.drain()

        reply = await reader.readexactly(10)
        assert reply == bytes.fromhex("05 00 00 01 00 00 00 00 00 00")

        writer.write(b"ping")
        await writer.drain()
        assert await asyncio.wait_for(reader.read(1024), timeout=2.0) == b"ping"

        writer.close()
        await writer.wait_closed()

    @pytest.mark.asyncio
    async def test_connection_callback(self, server, echo_server):
        """Test that established connections are reported."""
        seen = []
        registered = []

        async def on_connection(info):
            seen.append(info)
            registered.extend(server.get_connection_info())

        server.set_connection_callback(on_connection)
        reader, writer = await _open_client(server)
        await _negotiate(reader, writer)
        writer.write(encode_request(Command.CONNECT, "127.0.0.1", echo_server))
        await writer.drain()
        await reader.readexactly(10)

        # The relay only starts after the callback returns
        writer.write(b"ping")
        await writer.drain()
        assert await asyncio.wait_for(reader.read(1024), timeout=2.0) == b"ping"

        assert len(seen) == 1
        assert seen[0].target == f"127.0.0.1:{echo_server}"
        assert seen[0].reply is ResponseCode.SUCCESS
        assert registered == seen

        writer.close()
        await writer.wait_closed()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("host", ["a" * 64 + ".example", "bad\x00host"])
    async def test_unresolvable_host_name(self, server, host):
        """Test that a host name the resolver rejects still gets a reply."""
        reader, writer = await _open_client(server)
        await _negotiate(reader, writer)

        writer.write(encode_request(Command.CONNECT, host, 80))
        await writer.drain()

        reply = await asyncio.wait_for(reader.readexactly(10), timeout=2.0)
        assert reply[1] == ResponseCode.GENERAL_FAILURE

        writer.close()
        await writer.wait_closed()

    @pytest.mark.asyncio
    async def test_non_ascii_host_name(self, server):
        """Test that an undecodable host name is rejected before closing."""
        reader, writer = await _open_client(server)
        await _negotiate(reader, writer)

        writer.write(bytes.fromhex("05 01 00 03 02 c3 a9 00 50"))
        await writer.drain()

        reply = await asyncio.wait_for(reader.readexactly(10), timeout=2.0)
        assert reply == bytes.fromhex("05 01 00 01 00 00 00 00 00 00")
        assert await asyncio.wait_for(reader.read(100), timeout=2.0) == b""

        writer.close()
        await writer.wait_closed()

    @pytest.mark.asyncio
    async def test_authentication_refused(self, server):
        """Test that clients without no-auth are refused and closed."""
        reader, writer = await _open_client(server)

        writer.write(struct.pack("!BBB", 0x05, 1, 0x02))
        await writer.drain()

        response = await reader.readexactly(2)
        assert response == b"\x05\xff"
        assert await asyncio.wait_for(reader.read(100), timeout=2.0) == b""

        writer.close()
        await writer.wait_closed()

    @pytest.mark.asyncio
    async def test_invalid_socks_version(self, server):
        """Test that a wrong version closes the connection without a reply."""
        reader, writer = await _open_client(server)

        writer.write(struct.pack("!BBB", 0x04, 1, 0x00))
        await writer.drain()

        assert await asyncio.wait_for(reader.read(100), timeout=2.0) == b""

        writer.close()
        await writer.wait_closed()

    @pytest.mark.asyncio
    async def test_bind_not_allowed(self, server):
        """Test that BIND is refused unless enabled."""
        reader, writer = await _open_client(server)
        await _negotiate(reader, writer)

        writer.write(encode_request(Command.BIND, "127.0.0.1", 8080))
        await writer.drain()

        reply = await reader.readexactly(10)
        assert reply[1] == ResponseCode.COMMAND_NOT_SUPPORTED

        writer.close()
        await writer.wait_closed()

    @pytest.mark.asyncio
    async def test_unknown_address_type(self, server):
        """Test the reply to an unknown address type."""
        reader, writer = await _open_client(server)
        await _negotiate(reader, writer)

        writer.write(bytes([0x05, 0x01, 0x00, 0x02]))
        await writer.drain()

        reply = await reader.readexactly(10)
        assert reply[1] == ResponseCode.ADDRESS_TYPE_NOT_SUPPORTED

        writer.close()
        await writer.wait_closed()

    @pytest.mark.asyncio
    async def test_connection_refused(self, pipe_once):
        """Test that a refused outbound connection is reported."""
        async def refuse(request, timeout):
            raise ConnectionRefusedError(errno.ECONNREFUSED, "Connection refused")

        server = Socks5Server(relay=pipe_once, host="127.0.0.1", port=0, connector=refuse)
        await server.start()
        try:
            reader, writer = await _open_client(server)
            await _negotiate(reader, writer)
            writer.write(encode_request(Command.CONNECT, "example.com", 443))
            await writer.drain()

            reply = await reader.readexactly(10)
            assert reply[1] == ResponseCode.CONNECTION_REFUSED

            writer.close()
            await writer.wait_closed()
        finally:
            await server.stop()

    @pytest.mark.asyncio
    async def test_handshake_timeout(self, pipe_once):
        """Test that a silent client is disconnected."""
        server = Socks5Server(relay=pipe_once, host="127.0.0.1", port=0, handshake_timeout=0.1)
        await server.start()
        try:
            reader, writer = await _open_client(server)
            assert await asyncio.wait_for(reader.read(100), timeout=2.0) == b""
            writer.close()
            await writer.wait_closed()
        finally:
            await server.stop()

    @pytest.mark.asyncio
    async def test_connection_limit(self, pipe_once):
        """Test that clients over the limit are dropped."""
        server = Socks5Server(relay=pipe_once, host="127.0.0.1", port=0, max_connections=0)
        await server.start()
        try:
            reader, writer = await _open_client(server)
            assert await asyncio.wait_for(reader.read(100), timeout=2.0) == b""
            assert server.active_connections == 0
            writer.close()
            await writer.wait_closed()
        finally:
            await server.stop()


class TestResponseForError:
    """Tests for mapping connection errors to reply codes."""

    def test_refused(self):
        assert response_for_error(ConnectionRefusedError()) is ResponseCode.CONNECTION_REFUSED

    def test_timeout(self):
        assert response_for_error(asyncio.TimeoutError()) is ResponseCode.TTL_EXPIRED

    def test_name_resolution(self):
        error = socket.gaierror(socket.EAI_NONAME, "Name or service not known")
        assert response_for_error(error) is ResponseCode.HOST_UNREACHABLE

    def test_unreachable(self):
        assert response_for_error(OSError(errno.ENETUNREACH, "Network is unreachable")) \
            is ResponseCode.NETWORK_UNREACHABLE
        assert response_for_error(OSError(errno.EHOSTUNREACH, "No route to host")) \
            is ResponseCode.HOST_UNREACHABLE

    def test_other(self):
        assert response_for_error(OSError(errno.EACCES, "Permission denied")) \
            is ResponseCode.GENERAL_FAILURE

    def test_bad_host_name(self):
        assert response_for_error(UnicodeError("label too long")) is ResponseCode.GENERAL_FAILURE
        assert response_for_error(ValueError("embedded null byte")) is ResponseCode.GENERAL_FAILURE


class TestLoadRelay:
    """Tests for importing relays by path."""

    def test_load(self):
        """Test loading a callable."""
        assert load_relay("simplesocks.server:response_for_error") is response_for_error

    def test_missing_attribute(self):
        """Test loading a missing attribute."""
        with pytest.raises(AttributeError):
            load_relay("simplesocks.server:does_not_exist")

    def test_not_callable(self):
        """Test loading something that is not callable."""
        with pytest.raises(TypeError):
            load_relay("simplesocks.models:SOCKS_VERSION")
