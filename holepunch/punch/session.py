"""
Connection Session - punch / connected / closed state machine for one peer.

    IDLE -> PUNCHING -> CONNECTED
     |         |            |
     +---------+------------+----> CLOSED

The first datagram from the exact peer endpoint while PUNCHING moves the
session to CONNECTED. That happens once; later datagrams only refresh
last_inbound_at. A session never goes back from CONNECTED to PUNCHING.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from holepunch.errors import SendFailure, SessionNotConnected
from holepunch.network.transport import Address, DatagramDispatcher
from holepunch.punch.keepalive import KeepAliveLoop
from holepunch.punch.messages import MessageKind, classify_payload
from holepunch.utils.logger import get_logger
from holepunch.utils.validation import PeerEndpoint


logger = get_logger("session")


class SessionState(Enum):
    """Lifecycle of a punch session."""
    IDLE = "idle"
    PUNCHING = "punching"
    CONNECTED = "connected"
    CLOSED = "closed"


@dataclass
class PunchSession:
    """Progress counters owned by a ConnectionSession."""
    state: SessionState = SessionState.IDLE
    attempt: int = 0
    max_attempts: int = 100
    last_inbound_at: float = 0.0


class ConnectionSession:
    """
    Tracks connectivity with one peer over the shared socket.

    Attributes:
        peer: The peer's public endpoint
        inbox: Chat payloads from the peer, decoded as text
        connected: Set on the transition to CONNECTED
    """

    def __init__(
        self,
        dispatcher: DatagramDispatcher,
        peer: PeerEndpoint,
        keepalive: KeepAliveLoop,
        max_attempts: int = 100,
        on_message: Optional[Callable[[str], None]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.dispatcher = dispatcher
        self.peer = peer
        self.keepalive = keepalive
        self.on_message = on_message
        self._clock = clock
        self._session = PunchSession(max_attempts=max_attempts)

        self.inbox: asyncio.Queue = asyncio.Queue()
        self.connected = asyncio.Event()

        # Route before the first punch so an early reply is never dropped
        self.dispatcher.add_route(peer.as_tuple(), self.handle_datagram)

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def attempt(self) -> int:
        return self._session.attempt

    @property
    def max_attempts(self) -> int:
        return self._session.max_attempts

    @property
    def last_inbound_at(self) -> float:
        return self._session.last_inbound_at

    @property
    def is_connected(self) -> bool:
        return self._session.state == SessionState.CONNECTED

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def begin_punching(self) -> None:
        """IDLE -> PUNCHING."""
        if self._session.state != SessionState.IDLE:
            raise RuntimeError(f"Cannot start punching from {self._session.state.value}")
        self._session.state = SessionState.PUNCHING
        logger.info(f"Punching {self.peer} (max {self._session.max_attempts} attempts)")

    def record_attempt(self) -> int:
        self._session.attempt += 1
        return self._session.attempt

    def fail(self, reason: str) -> None:
        """End an unsuccessful punch run."""
        if self._session.state == SessionState.CLOSED:
            return
        logger.error(f"Session with {self.peer} failed: {reason}")
        self.close()

    def close(self) -> None:
        """Any state -> CLOSED. Stops heartbeats and drops the peer route."""
        if self._session.state == SessionState.CLOSED:
            return
        self._session.state = SessionState.CLOSED
        self.keepalive.stop()
        self.dispatcher.remove_route(self.peer.as_tuple())
        logger.info(f"Session with {self.peer} closed")

    def _on_connected(self) -> None:
        self._session.state = SessionState.CONNECTED
        self.connected.set()
        logger.info(
            f"Hole punching successful after {self._session.attempt} attempts, "
            f"connected to {self.peer}"
        )
        self.keepalive.start(self.peer)

    # -------------------------------------------------------------------------
    # Inbound
    # -------------------------------------------------------------------------

    def handle_datagram(self, data: bytes, addr: Address) -> None:
        """Process one datagram routed to this session."""
        if not self.peer.matches(addr):
            return
        if self._session.state == SessionState.CLOSED:
            return

        self._session.last_inbound_at = self._clock()

        if self._session.state == SessionState.PUNCHING:
            self._on_connected()

        kind = classify_payload(data)
        if kind == MessageKind.KEEP_ALIVE:
            logger.debug(f"Keep-alive from {self.peer}")
        elif kind == MessageKind.PUNCH:
            logger.debug(f"Punch from {self.peer}")
        else:
            self._deliver(data)

    def _deliver(self, data: bytes) -> None:
        text = data.decode("utf-8", errors="replace")
        if not self.is_connected:
            logger.debug(f"Chat from {self.peer} before connect, ignored")
            return
        self.inbox.put_nowait(text)
        if self.on_message is not None:
            self.on_message(text)

    # -------------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------------

    async def send(self, text: str) -> None:
        """
        Send an application payload to the peer.

        Raises:
            SessionNotConnected: the session is not CONNECTED
            SendFailure: the datagram could not be sent (non-fatal)
        """
        if not self.is_connected:
            raise SessionNotConnected(f"Session with {self.peer} is {self.state.value}")
        try:
            self.dispatcher.send(text.encode("utf-8"), self.peer.as_tuple())
        except SendFailure as e:
            logger.error(f"Send error: {e}")
            raise
