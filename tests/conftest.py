"""Shared fixtures for simplesocks tests."""

import asyncio

import pytest
import pytest_asyncio

from simplesocks.channel import MemoryChannel, StreamChannel
from simplesocks.endpoint import Socks5Endpoint


@pytest.fixture
def make_endpoint():
    """Build an endpoint reading from the given client bytes."""
    def factory(data: bytes) -> Socks5Endpoint:
        return Socks5Endpoint(MemoryChannel(data))
    return factory


@pytest.fixture
def pipe_once():
    """Relay that forwards one chunk each way."""
    async def relay(client: StreamChannel, upstream: StreamChannel, info) -> None:
        data = await client.reader.read(1024)
        await upstream.write_all(data)
        answer = await upstream.reader.read(1024)
        await client.write_all(answer)
    return relay


@pytest_asyncio.fixture
async def echo_server():
    """Plain TCP echo server used as the outbound target."""
    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        data = await reader.read(1024)
        writer.write(data)
        await writer.drain()
        writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    yield server.sockets[0].getsockname()[1]
    server.close()
    await server.wait_closed()
