"""
Keep-alive - periodic heartbeat that holds the NAT mapping open.
"""

import asyncio
from typing import Optional

from holepunch.errors import SendFailure
from holepunch.network.transport import DatagramDispatcher
from holepunch.punch.messages import KEEP_ALIVE
from holepunch.utils.logger import get_logger
from holepunch.utils.validation import PeerEndpoint


logger = get_logger("keepalive")

DEFAULT_INTERVAL = 5.0  # seconds


class KeepAliveLoop:
    """Sends the keep-alive literal to one peer every interval seconds."""

    def __init__(self, dispatcher: DatagramDispatcher, interval: float = DEFAULT_INTERVAL):
        self.dispatcher = dispatcher
        self.interval = interval
        self.sent = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, peer: PeerEndpoint, interval: Optional[float] = None) -> None:
        """Start heartbeats, replacing any loop already running."""
        self.stop()
        if interval is not None:
            self.interval = interval
        self._task = asyncio.create_task(self._run(peer))
        logger.info(f"Keep-alive to {peer} every {self.interval}s")

    def stop(self) -> None:
        """Cancel the heartbeat timer. Safe if never started."""
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self, peer: PeerEndpoint) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.dispatcher.send(KEEP_ALIVE, peer.as_tuple())
                self.sent += 1
            except SendFailure as e:
                logger.warning(f"Keep-alive send failed: {e}")
