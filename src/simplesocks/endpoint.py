"""
SOCKS5 protocol endpoint.

Implements the server side of the RFC 1928 handshake over an
already-connected channel:

1. method negotiation (only "no authentication required" is accepted)
2. request parsing (CONNECT/BIND, IPv4, domain name or IPv6 target)
3. a fixed ten byte reply reporting the wildcard bound address

The endpoint does not open outbound connections or relay traffic. The
caller decides what to do with the parsed request and reports the outcome
through send_reply().

Example:
    endpoint = Socks5Endpoint(StreamChannel(reader, writer))
    if await endpoint.accept_authentication() and await endpoint.read_request():
        await endpoint.send_reply(ResponseCode.SUCCESS)
    else:
        ...  # close the connection
"""

import struct
from ipaddress import IPv4Address, IPv6Address, ip_address
from typing import Optional

import structlog

from .channel import DuplexChannel
from .errors import HostNameDecodeError, ProtocolVersionError, SequenceError
from .models import (
    RESERVED,
    SOCKS_VERSION,
    AddressType,
    AuthMethod,
    Command,
    HandshakePhase,
    ParsedRequest,
    ResponseCode,
)

logger = structlog.get_logger(__name__)

# Bound address and port are always reported as 0.0.0.0:0
_REPLY_FORMAT = "!BBBB4sH"
_WILDCARD_ADDRESS = bytes(4)


def encode_method_selection(method: AuthMethod) -> bytes:
    """Encode the server's method selection message."""
    return struct.pack("!BB", SOCKS_VERSION, method)


def encode_reply(response: ResponseCode) -> bytes:
    """Encode a reply: VER, REP, RSV, ATYP=IPv4, BND.ADDR=0.0.0.0, BND.PORT=0."""
    return struct.pack(
        _REPLY_FORMAT,
        SOCKS_VERSION,
        response,
        RESERVED,
        AddressType.IPV4,
        _WILDCARD_ADDRESS,
        0,
    )


def encode_request(command: Command, host: str, port: int) -> bytes:
    """
    Encode a client request for the given target.

    IP address literals are sent as IPv4/IPv6 address types, anything else
    as a domain name.

    Raises:
        ValueError: If the port is out of range or the host name cannot be
            sent as a domain name
    """
    if not 0 <= port <= 65535:
        raise ValueError(f"Invalid port: {port}")

    header = struct.pack("!BBB", SOCKS_VERSION, command, RESERVED)
    try:
        addr = ip_address(host)
    except ValueError:
        addr = None

    if isinstance(addr, IPv4Address):
        body = struct.pack("!B", AddressType.IPV4) + addr.packed
    elif isinstance(addr, IPv6Address):
        body = struct.pack("!B", AddressType.IPV6) + addr.packed
    else:
        name = host.encode("ascii")
        if len(name) > 255:
            raise ValueError(f"Domain name too long: {len(name)} bytes")
        body = struct.pack("!BB", AddressType.DOMAIN_NAME, len(name)) + name

    return header + body + struct.pack("!H", port)


class Socks5Endpoint:
    """
    Server side of one SOCKS5 handshake.

    One instance per accepted connection. The three operations must be
    called in order (accept_authentication, read_request, send_reply);
    calling them out of order raises SequenceError.
    """

    def __init__(self, channel: DuplexChannel):
        """
        Initialize the endpoint.

        Args:
            channel: Connected channel to the client
        """
        self.channel = channel
        self.phase = HandshakePhase.NEW
        self.auth_accepted = False
        self.request: Optional[ParsedRequest] = None
        self.rejection: Optional[ResponseCode] = None

    def _require_phase(self, expected: HandshakePhase, operation: str) -> None:
        if self.phase is not expected:
            raise SequenceError(
                f"{operation}() called in phase {self.phase.value}, "
                f"expected {expected.value}"
            )

    async def _check_version(self) -> None:
        version = (await self.channel.read_exact(1))[0]
        if version != SOCKS_VERSION:
            logger.warning("Invalid SOCKS version", version=version)
            raise ProtocolVersionError(version)

    async def accept_authentication(self) -> bool:
        """
        Read the client's method offer and answer it.

        Returns:
            True if the client offered "no authentication required". On False
            the rejection has already been sent and the caller must close.

        Raises:
            ProtocolVersionError: If the version byte is not 0x05
            UnderlyingIOError: If the channel fails or ends early
            SequenceError: If called more than once
        """
        self._require_phase(HandshakePhase.NEW, "accept_authentication")

        await self._check_version()
        nmethods = (await self.channel.read_exact(1))[0]
        methods = await self.channel.read_exact(nmethods)

        self.auth_accepted = AuthMethod.NO_AUTH in methods
        self.phase = HandshakePhase.AUTH_DONE

        if self.auth_accepted:
            await self.channel.write_all(encode_method_selection(AuthMethod.NO_AUTH))
        else:
            logger.warning("No acceptable auth method", offered=list(methods))
            await self.channel.write_all(encode_method_selection(AuthMethod.NO_ACCEPTABLE))

        return self.auth_accepted

    async def read_request(self) -> bool:
        """
        Read and validate the client's request.

        The parsed fields are stored in self.request. When the request is
        invalid, self.rejection holds the reply code to send back.

        An unknown address type stops parsing right there: nothing after
        the address type byte is consumed, and the connection cannot be
        used for further reads.

        Returns:
            True if the command, reserved byte and address type are all valid

        Raises:
            ProtocolVersionError: If the version byte is not 0x05
            HostNameDecodeError: If a domain name target is not US-ASCII
            UnderlyingIOError: If the channel fails or ends early
            SequenceError: If authentication was not accepted first
        """
        self._require_phase(HandshakePhase.AUTH_DONE, "read_request")
        if not self.auth_accepted:
            raise SequenceError("read_request() called after authentication was refused")

        await self._check_version()
        cmd, reserved, atyp = struct.unpack("!BBB", await self.channel.read_exact(3))

        correct = True
        command = Command.from_wire(cmd)
        if command is None:
            logger.warning("Unknown command", cmd=cmd)
            correct = False
            self.rejection = ResponseCode.COMMAND_NOT_SUPPORTED

        if reserved != RESERVED:
            logger.warning("Non-zero reserved byte", reserved=reserved)
            correct = False
            if self.rejection is None:
                self.rejection = ResponseCode.GENERAL_FAILURE

        address = None
        host_name = None

        if atyp == AddressType.IPV4:
            address = IPv4Address(await self.channel.read_exact(4))

        elif atyp == AddressType.DOMAIN_NAME:
            length = (await self.channel.read_exact(1))[0]
            raw = await self.channel.read_exact(length)
            try:
                host_name = raw.decode("ascii")
            except UnicodeDecodeError as e:
                logger.warning("Domain name is not ASCII", length=length)
                self.request = ParsedRequest(command=command)
                self.rejection = ResponseCode.GENERAL_FAILURE
                self.phase = HandshakePhase.REQUEST_DONE
                raise HostNameDecodeError(raw) from e

        elif atyp == AddressType.IPV6:
            address = IPv6Address(await self.channel.read_exact(16))

        else:
            logger.warning("Unknown address type", atyp=atyp)
            self.request = ParsedRequest(command=command)
            self.rejection = ResponseCode.ADDRESS_TYPE_NOT_SUPPORTED
            self.phase = HandshakePhase.REQUEST_DONE
            return False

        port = struct.unpack("!H", await self.channel.read_exact(2))[0]

        self.request = ParsedRequest(
            command=command,
            address=address,
            host_name=host_name,
            port=port,
        )
        self.phase = HandshakePhase.REQUEST_DONE

        logger.debug(
            "Request parsed",
            command=command.name if command else cmd,
            target=f"{self.request.target}:{port}",
            valid=correct,
        )
        return correct

    async def send_reply(self, response: ResponseCode) -> None:
        """
        Send the reply for the parsed request.

        After SUCCESS the channel belongs to whoever relays the traffic;
        after any other code the caller must close it.

        Raises:
            UnderlyingIOError: If the channel fails
            SequenceError: If no request was read, or a reply was already sent
        """
        self._require_phase(HandshakePhase.REQUEST_DONE, "send_reply")
        await self.channel.write_all(encode_reply(response))
        self.phase = HandshakePhase.REPLIED

    def suggested_reply(self) -> ResponseCode:
        """Reply code matching the outcome of read_request()."""
        if self.rejection is None:
            return ResponseCode.SUCCESS
        return self.rejection

    async def handshake(self) -> Optional[ParsedRequest]:
        """
        Run method negotiation and request parsing.

        Invalid requests are answered with the matching failure reply.

        Returns:
            The parsed request, or None if the client was refused. A request
            is returned without a reply; the caller sends it once the
            outbound connection has been attempted.
        """
        if not await self.accept_authentication():
            return None

        try:
            valid = await self.read_request()
        except HostNameDecodeError:
            await self.send_reply(ResponseCode.GENERAL_FAILURE)
            raise

        if not valid:
            await self.send_reply(self.suggested_reply())
            return None

        return self.request
