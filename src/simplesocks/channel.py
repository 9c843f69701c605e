"""
Duplex byte channels for the SOCKS5 endpoint.

The endpoint only needs two capabilities from a connection: read exactly
n bytes and write all of a buffer. Anything providing them (a TCP stream,
a TLS stream, an in-memory pipe in tests) can carry a handshake.
"""

import asyncio
from typing import Any, Optional, Protocol

import structlog

from .errors import UnderlyingIOError

logger = structlog.get_logger(__name__)


class DuplexChannel(Protocol):
    """An already-connected, bidirectional byte stream."""

    async def read_exact(self, n: int) -> bytes:
        """Read exactly n bytes or raise UnderlyingIOError."""
        ...

    async def write_all(self, data: bytes) -> None:
        """Write and flush all of data or raise UnderlyingIOError."""
        ...

    def close(self) -> None:
        ...


class StreamChannel:
    """DuplexChannel over an asyncio StreamReader/StreamWriter pair."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.reader = reader
        self.writer = writer

    async def read_exact(self, n: int) -> bytes:
        try:
            return await self.reader.readexactly(n)
        except asyncio.IncompleteReadError as e:
            raise UnderlyingIOError(
                f"Stream ended after {len(e.partial)} of {n} bytes",
                expected=n,
                received=len(e.partial),
            ) from e
        except (ConnectionError, OSError) as e:
            raise UnderlyingIOError(f"Read failed: {e}", expected=n) from e

    async def write_all(self, data: bytes) -> None:
        try:
            self.writer.write(data)
            await self.writer.drain()
        except (ConnectionError, OSError) as e:
            raise UnderlyingIOError(f"Write failed: {e}") from e

    def close(self) -> None:
        self.writer.close()

    async def wait_closed(self) -> None:
        """Close the writer and wait until the transport is gone."""
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug("Error while closing stream", error=str(e))

    def get_extra_info(self, name: str, default: Any = None) -> Any:
        return self.writer.get_extra_info(name, default)

    @property
    def peername(self) -> Optional[tuple]:
        return self.get_extra_info("peername")


class MemoryChannel:
    """
    DuplexChannel over a fixed input buffer.

    Reads consume the input; writes are collected in `written`. Used to
    run a handshake over captured bytes.
    """

    def __init__(self, data: bytes = b""):
        self._data = bytes(data)
        self._offset = 0
        self.written = bytearray()
        self.closed = False

    async def read_exact(self, n: int) -> bytes:
        if self.closed:
            raise UnderlyingIOError("Channel is closed", expected=n, received=0)
        available = len(self._data) - self._offset
        if available < n:
            self._offset = len(self._data)
            raise UnderlyingIOError(
                f"Stream ended after {available} of {n} bytes",
                expected=n,
                received=available,
            )
        chunk = self._data[self._offset:self._offset + n]
        self._offset += n
        return chunk

    async def write_all(self, data: bytes) -> None:
        if self.closed:
            raise UnderlyingIOError("Channel is closed")
        self.written.extend(data)

    def close(self) -> None:
        self.closed = True

    @property
    def remaining(self) -> bytes:
        """Input bytes not consumed yet."""
        return self._data[self._offset:]
