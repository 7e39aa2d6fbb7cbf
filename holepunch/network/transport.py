"""
Transport - the shared UDP socket and its inbound dispatcher.

Discovery, punching, keep-alive and chat all use one bound socket.
Every inbound datagram goes through DatagramDispatcher, which routes by
exact source address:
1. one-shot waiters registered with expect()/request()
2. persistent routes registered with add_route()
Anything else is dropped.
"""

import asyncio
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, Optional, Tuple

from holepunch.errors import BindFailure, SendFailure
from holepunch.utils.logger import get_logger


logger = get_logger("transport")

Address = Tuple[str, int]
DatagramHandler = Callable[[bytes, Address], None]


class DatagramDispatcher:
    """
    Routes datagrams from one socket to the component that owns the sender.

    Attributes:
        transport: Underlying datagram transport (anything with sendto)
    """

    def __init__(self, transport: Optional[asyncio.DatagramTransport] = None):
        self.transport = transport
        self._routes: Dict[Address, DatagramHandler] = {}
        self._waiters: Dict[Address, Deque[asyncio.Future]] = defaultdict(deque)
        self._closed = False

    def attach(self, transport: asyncio.DatagramTransport) -> None:
        self.transport = transport
        self._closed = False

    @property
    def local_address(self) -> Optional[Address]:
        if self.transport is None:
            return None
        sockname = self.transport.get_extra_info("sockname")
        return (sockname[0], sockname[1]) if sockname else None

    @property
    def is_open(self) -> bool:
        return self.transport is not None and not self._closed

    # -------------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------------

    def send(self, data: bytes, addr: Address) -> None:
        """
        Hand a datagram to the transport.

        Raises:
            SendFailure: socket closed or the OS rejected the datagram
        """
        if not self.is_open or self.transport.is_closing():
            raise SendFailure(f"Socket closed, cannot send to {addr[0]}:{addr[1]}")

        try:
            self.transport.sendto(data, addr)
        except OSError as e:
            raise SendFailure(f"Send to {addr[0]}:{addr[1]} failed: {e}") from e

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def add_route(self, addr: Address, handler: DatagramHandler) -> None:
        """Deliver every datagram from addr to handler."""
        self._routes[addr] = handler
        logger.debug(f"Route added for {addr[0]}:{addr[1]}")

    def remove_route(self, addr: Address) -> None:
        self._routes.pop(addr, None)

    def expect(self, addr: Address) -> asyncio.Future:
        """
        Subscribe to the next datagram from addr.

        The returned future resolves to the payload bytes. Cancel it to
        withdraw the subscription.
        """
        future = asyncio.get_running_loop().create_future()
        self._waiters[addr].append(future)
        return future

    def request(self, data: bytes, addr: Address) -> asyncio.Future:
        """
        Subscribe to the reply from addr, then send data to it.

        The subscription is in place before the datagram leaves, so a fast
        reply cannot be missed. A send failure cancels the subscription and
        propagates.
        """
        future = self.expect(addr)
        try:
            self.send(data, addr)
        except SendFailure:
            future.cancel()
            self.discard(addr, future)
            raise
        return future

    def discard(self, addr: Address, future: asyncio.Future) -> None:
        """Withdraw a one-shot subscription."""
        waiters = self._waiters.get(addr)
        if waiters is None:
            return
        try:
            waiters.remove(future)
        except ValueError:
            pass
        if not waiters:
            del self._waiters[addr]

    # -------------------------------------------------------------------------
    # Inbound
    # -------------------------------------------------------------------------

    def dispatch(self, data: bytes, addr: Address) -> None:
        """Route one inbound datagram."""
        addr = (addr[0], addr[1])

        waiters = self._waiters.get(addr)
        while waiters:
            future = waiters.popleft()
            if not future.done():
                future.set_result(data)
                if not waiters:
                    del self._waiters[addr]
                return
        self._waiters.pop(addr, None)

        handler = self._routes.get(addr)
        if handler is not None:
            handler(data, addr)
            return

        logger.debug(f"Dropping {len(data)} bytes from unknown source {addr[0]}:{addr[1]}")

    def close(self) -> None:
        """Cancel pending waiters and release the socket."""
        self._closed = True
        for waiters in self._waiters.values():
            for future in waiters:
                if not future.done():
                    future.cancel()
        self._waiters.clear()
        self._routes.clear()

        if self.transport is not None:
            self.transport.close()
            logger.info("Socket closed")


class DispatcherProtocol(asyncio.DatagramProtocol):
    """Asyncio protocol feeding a DatagramDispatcher."""

    def __init__(self, dispatcher: DatagramDispatcher):
        self.dispatcher = dispatcher

    def connection_made(self, transport: asyncio.DatagramTransport) -> None:
        self.dispatcher.attach(transport)

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        try:
            self.dispatcher.dispatch(data, addr)
        except Exception as e:
            logger.error(f"Datagram handler error for {addr[0]}:{addr[1]}: {e}")

    def error_received(self, exc: Exception) -> None:
        # ICMP unreachable etc. while the peer's NAT has no mapping yet
        logger.warning(f"UDP error: {exc}")

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if exc:
            logger.error(f"UDP socket lost: {exc}")


async def open_endpoint(host: str = "0.0.0.0", port: int = 0) -> DatagramDispatcher:
    """
    Bind an IPv4 UDP socket and return its dispatcher.

    Args:
        host: Local interface to bind
        port: Local port (0 lets the OS choose)

    Raises:
        BindFailure: address in use, permission denied, bad interface
    """
    loop = asyncio.get_running_loop()
    dispatcher = DatagramDispatcher()
    try:
        await loop.create_datagram_endpoint(
            lambda: DispatcherProtocol(dispatcher),
            local_addr=(host, port),
        )
    except OSError as e:
        raise BindFailure(f"Cannot bind UDP socket on {host}:{port}: {e}") from e
    local = dispatcher.local_address
    logger.info(f"Local socket bound on {local[0]}:{local[1]}")
    return dispatcher
