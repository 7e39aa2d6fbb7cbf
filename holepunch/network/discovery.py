"""
Discovery Client - learn the public endpoint of the shared socket.

Protocol:
1. Resolve the STUN server to an IPv4 address
2. Subscribe to replies from that address, then send one binding request
3. Decode the first reply, or fail after the timeout

Exactly one round trip is attempted; retries belong to the caller.
"""

import asyncio
import socket
from typing import Optional

from holepunch.errors import DiscoveryTimeout, ResolutionFailure
from holepunch.network import stun
from holepunch.network.transport import Address, DatagramDispatcher
from holepunch.utils.logger import get_logger


logger = get_logger("discovery")

DEFAULT_STUN_SERVER = ("stun.l.google.com", 19302)
DEFAULT_TIMEOUT = 3.0  # seconds


async def resolve_ipv4(host: str, port: int) -> Address:
    """Resolve host to its first IPv4 UDP address."""
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(
            host, port, family=socket.AF_INET, type=socket.SOCK_DGRAM,
        )
    except socket.gaierror as e:
        raise ResolutionFailure(f"Could not resolve STUN server {host}: {e}") from e

    if not infos:
        raise ResolutionFailure(f"No IPv4 address for STUN server {host}")

    sockaddr = infos[0][4]
    return (sockaddr[0], sockaddr[1])


class DiscoveryClient:
    """
    Asks a STUN server how the shared socket looks from outside.

    Replies are matched by the server's source address through the
    dispatcher, so chat or punch traffic can never be taken for a reply.
    """

    def __init__(self, dispatcher: DatagramDispatcher):
        self.dispatcher = dispatcher
        self.last_transaction_id: Optional[bytes] = None

    async def discover(
        self,
        server_host: str = DEFAULT_STUN_SERVER[0],
        server_port: int = DEFAULT_STUN_SERVER[1],
        timeout: float = DEFAULT_TIMEOUT,
    ) -> stun.MappedAddress:
        """
        Run one binding round trip.

        Returns:
            The mapped (public) address

        Raises:
            DiscoveryTimeout: no reply within timeout
            ResolutionFailure: server host could not be resolved
            MalformedMessage, MalformedAttribute, UnsupportedFamily,
            AttributeNotFound: reply could not be decoded
            SendFailure: request could not be sent
        """
        server = await resolve_ipv4(server_host, server_port)

        request = stun.DiscoveryMessage(message_type=stun.BINDING_REQUEST)
        self.last_transaction_id = request.transaction_id

        logger.debug(f"Binding request to {server[0]}:{server[1]}")
        reply = self.dispatcher.request(request.to_bytes(), server)

        try:
            data = await asyncio.wait_for(reply, timeout=timeout)
        except asyncio.TimeoutError:
            raise DiscoveryTimeout(
                f"STUN request to {server_host}:{server_port} timed out after {timeout}s"
            ) from None
        finally:
            self.dispatcher.discard(server, reply)

        header = stun.DiscoveryMessage.from_bytes(data)
        if header.transaction_id != request.transaction_id:
            logger.debug("Transaction id mismatch in STUN reply, accepting anyway")

        mapped = stun.decode_response(data)
        logger.info(f"Public endpoint: {mapped.ip}:{mapped.port}")
        return mapped
