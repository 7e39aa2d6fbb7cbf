"""
holepunch Network Module - STUN codec, shared UDP socket, discovery client.
"""

from holepunch.network.stun import (
    AddressFamily,
    Attribute,
    DiscoveryMessage,
    MappedAddress,
    decode_response,
    encode_request,
    encode_response,
)
from holepunch.network.transport import DatagramDispatcher, DispatcherProtocol, open_endpoint
from holepunch.network.discovery import DiscoveryClient

__all__ = [
    # STUN codec
    "AddressFamily",
    "Attribute",
    "DiscoveryMessage",
    "MappedAddress",
    "decode_response",
    "encode_request",
    "encode_response",
    # Transport
    "DatagramDispatcher",
    "DispatcherProtocol",
    "open_endpoint",
    # Discovery
    "DiscoveryClient",
]
