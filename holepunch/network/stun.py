"""
STUN codec - binding request encoding and response decoding.

Wire format (RFC 5389 header):
    type (2) | length (2) | magic cookie (4) | transaction id (12) | attributes...

Each attribute is a TLV: type (2) | length (2) | value (length).
The XOR-MAPPED-ADDRESS value is:
    reserved (1) | family (1) | x-port (2) | x-address (4, IPv4 only)
"""

import secrets
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Iterator, Optional

from holepunch.errors import (
    AttributeNotFound,
    MalformedAttribute,
    MalformedMessage,
    UnsupportedFamily,
)


# Message types
BINDING_REQUEST = 0x0001
BINDING_SUCCESS = 0x0101

# Protocol constants
MAGIC_COOKIE = 0x2112A442
MAGIC_COOKIE_BYTES = struct.pack(">I", MAGIC_COOKIE)
HEADER_SIZE = 20
TRANSACTION_ID_SIZE = 12
ATTR_HEADER_SIZE = 4

# Attribute types
ATTR_XOR_MAPPED_ADDRESS = 0x0020
XOR_MAPPED_ADDRESS_MIN_LENGTH = 8


class AddressFamily(IntEnum):
    """Address families carried in a mapped-address attribute."""
    IPV4 = 0x01
    IPV6 = 0x02  # recognized, never decoded


@dataclass
class DiscoveryMessage:
    """A STUN message header."""
    message_type: int
    body_length: int = 0
    magic_cookie: int = MAGIC_COOKIE
    transaction_id: bytes = b""

    def __post_init__(self):
        if not self.transaction_id:
            self.transaction_id = secrets.token_bytes(TRANSACTION_ID_SIZE)

    def to_bytes(self) -> bytes:
        """Serialize the 20-byte header."""
        return struct.pack(
            ">HHI",
            self.message_type,
            self.body_length,
            self.magic_cookie,
        ) + self.transaction_id

    @classmethod
    def from_bytes(cls, data: bytes) -> "DiscoveryMessage":
        """Parse the header of a raw message."""
        if len(data) < HEADER_SIZE:
            raise MalformedMessage(
                f"STUN message too short: {len(data)} bytes, need {HEADER_SIZE}"
            )
        message_type, body_length, magic_cookie = struct.unpack(">HHI", data[:8])
        return cls(
            message_type=message_type,
            body_length=body_length,
            magic_cookie=magic_cookie,
            transaction_id=bytes(data[8:HEADER_SIZE]),
        )


@dataclass
class Attribute:
    """A single TLV attribute following the header."""
    attr_type: int
    length: int
    value: bytes


@dataclass
class MappedAddress:
    """The externally visible endpoint reported by the STUN server."""
    family: AddressFamily
    ip: str
    port: int

    def __str__(self) -> str:
        return f"{self.ip}:{self.port}"


def _xor_with_cookie(octets: bytes) -> bytes:
    return bytes(b ^ c for b, c in zip(octets, MAGIC_COOKIE_BYTES))


def encode_request(transaction_id: Optional[bytes] = None) -> bytes:
    """
    Build a binding request.

    Args:
        transaction_id: 12 bytes; a fresh random id is used when omitted

    Returns:
        20-byte header with no attributes
    """
    if transaction_id is not None and len(transaction_id) != TRANSACTION_ID_SIZE:
        raise ValueError(f"transaction id must be {TRANSACTION_ID_SIZE} bytes")

    message = DiscoveryMessage(
        message_type=BINDING_REQUEST,
        transaction_id=transaction_id or b"",
    )
    return message.to_bytes()


def iter_attributes(data: bytes) -> Iterator[Attribute]:
    """
    Walk the attribute list of a raw message.

    Stops when fewer than four bytes remain for the next attribute header.
    The value of a trailing attribute may be shorter than its declared
    length; callers check what they need.
    """
    offset = HEADER_SIZE
    while offset + ATTR_HEADER_SIZE <= len(data):
        attr_type, length = struct.unpack(">HH", data[offset:offset + ATTR_HEADER_SIZE])
        start = offset + ATTR_HEADER_SIZE
        yield Attribute(
            attr_type=attr_type,
            length=length,
            value=bytes(data[start:start + length]),
        )
        offset += ATTR_HEADER_SIZE + length


def _decode_xor_mapped_address(attr: Attribute) -> MappedAddress:
    if attr.length < XOR_MAPPED_ADDRESS_MIN_LENGTH:
        raise MalformedAttribute(
            f"XOR-MAPPED-ADDRESS length {attr.length} < {XOR_MAPPED_ADDRESS_MIN_LENGTH}"
        )
    if len(attr.value) < XOR_MAPPED_ADDRESS_MIN_LENGTH:
        raise MalformedAttribute("XOR-MAPPED-ADDRESS truncated")

    family = attr.value[1]
    if family != AddressFamily.IPV4:
        raise UnsupportedFamily(family)

    xport = struct.unpack(">H", attr.value[2:4])[0]
    port = xport ^ (MAGIC_COOKIE >> 16)
    octets = _xor_with_cookie(attr.value[4:8])

    return MappedAddress(
        family=AddressFamily.IPV4,
        ip=".".join(str(b) for b in octets),
        port=port,
    )


def decode_response(data: bytes) -> MappedAddress:
    """
    Extract the XOR-MAPPED-ADDRESS from a binding response.

    Raises:
        MalformedMessage: shorter than the 20-byte header
        MalformedAttribute: mapped-address attribute shorter than 8 bytes
        UnsupportedFamily: mapped address is not IPv4
        AttributeNotFound: no mapped-address attribute present
    """
    if len(data) < HEADER_SIZE:
        raise MalformedMessage(
            f"STUN response too short: {len(data)} bytes, need {HEADER_SIZE}"
        )

    for attr in iter_attributes(data):
        if attr.attr_type == ATTR_XOR_MAPPED_ADDRESS:
            return _decode_xor_mapped_address(attr)

    raise AttributeNotFound("XOR-MAPPED-ADDRESS attribute not found")


def encode_response(
    mapped: MappedAddress,
    transaction_id: Optional[bytes] = None,
) -> bytes:
    """
    Build a binding success response carrying one XOR-MAPPED-ADDRESS.

    Mirrors decode_response for local responders; only IPv4 is encoded.
    """
    if mapped.family != AddressFamily.IPV4:
        raise UnsupportedFamily(int(mapped.family))

    octets = bytes(int(part) for part in mapped.ip.split("."))
    value = struct.pack(
        ">BBH",
        0,
        AddressFamily.IPV4,
        mapped.port ^ (MAGIC_COOKIE >> 16),
    ) + _xor_with_cookie(octets)
    attribute = struct.pack(">HH", ATTR_XOR_MAPPED_ADDRESS, len(value)) + value

    header = DiscoveryMessage(
        message_type=BINDING_SUCCESS,
        body_length=len(attribute),
        transaction_id=transaction_id or b"",
    )
    return header.to_bytes() + attribute
