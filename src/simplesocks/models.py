"""
SOCKS5 value types with strong typing using Pydantic.

These models define the RFC 1928 wire codes the endpoint speaks and the
request/connection records it produces.
"""

from datetime import datetime
from enum import Enum, IntEnum
from ipaddress import IPv4Address, IPv6Address
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


SOCKS_VERSION = 0x05
RESERVED = 0x00


class AuthMethod(IntEnum):
    """Method selection codes the server sends (RFC 1928)."""
    NO_AUTH = 0x00
    NO_ACCEPTABLE = 0xFF


class Command(IntEnum):
    """SOCKS5 commands (RFC 1928)."""
    CONNECT = 0x01
    BIND = 0x02

    @classmethod
    def from_wire(cls, code: int) -> Optional["Command"]:
        """Decode a command byte, returning None for unknown codes."""
        try:
            return cls(code)
        except ValueError:
            return None


class AddressType(IntEnum):
    """SOCKS5 address types (RFC 1928)."""
    IPV4 = 0x01
    DOMAIN_NAME = 0x03
    IPV6 = 0x04


class ResponseCode(IntEnum):
    """SOCKS5 reply codes (RFC 1928)."""
    SUCCESS = 0x00
    GENERAL_FAILURE = 0x01
    RULESET_DENIED = 0x02
    NETWORK_UNREACHABLE = 0x03
    HOST_UNREACHABLE = 0x04
    CONNECTION_REFUSED = 0x05
    TTL_EXPIRED = 0x06
    COMMAND_NOT_SUPPORTED = 0x07
    ADDRESS_TYPE_NOT_SUPPORTED = 0x08

    @classmethod
    def from_wire(cls, code: int) -> "ResponseCode":
        """Decode a reply byte. Raises ValueError for unknown codes."""
        return cls(code)


class HandshakePhase(Enum):
    """Where an endpoint is in the handshake."""
    NEW = "new"
    AUTH_DONE = "auth_done"
    REQUEST_DONE = "request_done"
    REPLIED = "replied"


class ParsedRequest(BaseModel):
    """A decoded SOCKS5 request: a target plus the command to run on it."""

    model_config = ConfigDict(frozen=True)

    command: Optional[Command] = Field(
        default=None,
        description="Requested command, None when the code was unknown"
    )
    address: Optional[Union[IPv4Address, IPv6Address]] = Field(
        default=None,
        description="Numeric target address (IPv4 or IPv6 address types)"
    )
    host_name: Optional[str] = Field(
        default=None,
        description="Target host name (domain name address type)"
    )
    port: int = Field(
        default=0,
        ge=0,
        le=65535,
        description="Target port"
    )

    @model_validator(mode="after")
    def check_single_target(self) -> "ParsedRequest":
        if self.address is not None and self.host_name is not None:
            raise ValueError("address and host_name are mutually exclusive")
        return self

    @property
    def target(self) -> Optional[str]:
        """Target host as a string, or None if no address was parsed."""
        if self.host_name is not None:
            return self.host_name
        if self.address is not None:
            return str(self.address)
        return None


class ConnectionInfo(BaseModel):
    """Information about an accepted client connection."""

    client_address: str = Field(
        ...,
        description="Client IP address"
    )
    client_port: int = Field(
        ...,
        ge=0,
        le=65535,
        description="Client port"
    )
    target_host: Optional[str] = Field(
        default=None,
        description="Target host requested by the client"
    )
    target_port: Optional[int] = Field(
        default=None,
        ge=0,
        le=65535,
        description="Target port requested by the client"
    )
    command: Optional[Command] = Field(
        default=None,
        description="Requested command"
    )
    reply: Optional[ResponseCode] = Field(
        default=None,
        description="Reply code sent to the client"
    )
    connected_at: datetime = Field(
        default_factory=datetime.now,
        description="When the connection was accepted"
    )

    @property
    def client(self) -> str:
        return f"{self.client_address}:{self.client_port}"

    @property
    def target(self) -> Optional[str]:
        if self.target_host is None:
            return None
        return f"{self.target_host}:{self.target_port}"
