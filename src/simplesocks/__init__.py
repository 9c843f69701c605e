"""
simplesocks - minimal SOCKS5 server endpoint

An RFC 1928 handshake implementation with:
- "no authentication required" method negotiation
- CONNECT/BIND request parsing for IPv4, IPv6 and domain name targets
- fixed-form replies
- an asyncio server that hands established connections to a relay
"""

__version__ = "1.0.0"

from .channel import DuplexChannel, StreamChannel, MemoryChannel
from .endpoint import Socks5Endpoint, encode_reply, encode_request
from .errors import (
    Socks5Error,
    ProtocolVersionError,
    UnderlyingIOError,
    MalformedRequestError,
    HostNameDecodeError,
    SequenceError,
)
from .models import Command, ResponseCode, ParsedRequest, ConnectionInfo
from .server import Socks5Server

__all__ = [
    "DuplexChannel",
    "StreamChannel",
    "MemoryChannel",
    "Socks5Endpoint",
    "encode_reply",
    "encode_request",
    "Socks5Error",
    "ProtocolVersionError",
    "UnderlyingIOError",
    "MalformedRequestError",
    "HostNameDecodeError",
    "SequenceError",
    "Command",
    "ResponseCode",
    "ParsedRequest",
    "ConnectionInfo",
    "Socks5Server",
]
