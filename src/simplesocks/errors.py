"""Exceptions raised by the SOCKS5 endpoint."""

from typing import Optional


class Socks5Error(Exception):
    """Base class for SOCKS5 handshake failures."""
    pass


class ProtocolVersionError(Socks5Error):
    """Raised when a message does not start with the SOCKS5 version byte."""
    def __init__(self, version: int):
        super().__init__(f"Unsupported protocol version: {version:#04x}")
        self.version = version


class UnderlyingIOError(Socks5Error):
    """Raised when the channel fails or ends before a field is complete."""
    def __init__(
        self,
        message: str,
        expected: Optional[int] = None,
        received: Optional[int] = None,
    ):
        super().__init__(message)
        self.expected = expected
        self.received = received


class MalformedRequestError(Socks5Error):
    """Raised when a request field holds a value that cannot be used."""
    pass


class HostNameDecodeError(MalformedRequestError):
    """Raised when a domain name target is not US-ASCII."""
    def __init__(self, raw: bytes):
        super().__init__(f"Domain name is not US-ASCII: {raw!r}")
        self.raw = raw


class SequenceError(Socks5Error):
    """Raised when handshake operations are called out of order."""
    pass
