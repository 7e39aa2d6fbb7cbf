"""
Node - one punching peer: shared socket, discovery, session, timers.

Typical run:
1. start()     bind the socket
2. discover()  learn the public endpoint to give to the other peer
3. connect()   countdown (optional), punch burst, keep-alive
4. stop()      cancel every timer, then release the socket
"""

import asyncio
from typing import Callable, Optional

from holepunch.core.config import PunchConfig
from holepunch.network.discovery import DiscoveryClient
from holepunch.network.stun import MappedAddress
from holepunch.network.transport import Address, DatagramDispatcher, open_endpoint
from holepunch.punch.keepalive import KeepAliveLoop
from holepunch.punch.scheduler import ProgressCallback, PunchScheduler, ScheduledTarget
from holepunch.punch.session import ConnectionSession
from holepunch.utils.logger import get_logger
from holepunch.utils.validation import PeerEndpoint


logger = get_logger("node")


class PunchNode:
    """
    A local peer taking part in a hole punch.

    All components share the one socket owned by the dispatcher.
    """

    def __init__(
        self,
        config: Optional[PunchConfig] = None,
        dispatcher: Optional[DatagramDispatcher] = None,
    ):
        self.config = config or PunchConfig()
        self.dispatcher = dispatcher
        self.public_address: Optional[MappedAddress] = None
        self.session: Optional[ConnectionSession] = None
        self.keepalive: Optional[KeepAliveLoop] = None
        self._punch_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Bind the shared socket (unless one was supplied)."""
        if self.dispatcher is None:
            self.dispatcher = await open_endpoint(self.config.bind_host, self.config.bind_port)

    @property
    def local_address(self) -> Optional[Address]:
        return self.dispatcher.local_address if self.dispatcher else None

    async def discover(self) -> MappedAddress:
        """Learn the public endpoint. Any failure here aborts the run."""
        client = DiscoveryClient(self.dispatcher)
        self.public_address = await client.discover(
            self.config.stun_host,
            self.config.stun_port,
            timeout=self.config.discovery_timeout,
        )
        return self.public_address

    async def connect(
        self,
        peer: PeerEndpoint,
        target_minute: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_message: Optional[Callable[[str], None]] = None,
    ) -> ConnectionSession:
        """
        Punch through to peer and return the connected session.

        Raises:
            ExhaustedAttempts: the peer never answered
        """
        if self.session is not None:
            self.session.close()

        self.keepalive = KeepAliveLoop(self.dispatcher, interval=self.config.keepalive_interval)
        self.session = ConnectionSession(
            self.dispatcher,
            peer,
            self.keepalive,
            max_attempts=self.config.max_attempts,
            on_message=on_message,
        )
        scheduler = PunchScheduler(
            self.dispatcher,
            progress_interval=self.config.progress_interval,
            countdown_threshold=self.config.countdown_threshold,
        )

        target = None
        if target_minute is not None:
            target = ScheduledTarget.from_minute(target_minute)

        self._punch_task = asyncio.create_task(scheduler.run(
            self.session,
            target=target,
            max_attempts=self.config.max_attempts,
            interval=self.config.punch_interval,
            on_progress=on_progress,
        ))
        try:
            await self._punch_task
        finally:
            self._punch_task = None

        return self.session

    async def stop(self) -> None:
        """Cancel countdown, burst and keep-alive, then close the socket."""
        if self._punch_task is not None and not self._punch_task.done():
            self._punch_task.cancel()
            try:
                await self._punch_task
            except asyncio.CancelledError:
                pass

        if self.session is not None:
            self.session.close()
        elif self.keepalive is not None:
            self.keepalive.stop()

        if self.dispatcher is not None:
            self.dispatcher.close()

        logger.info("Node stopped")
