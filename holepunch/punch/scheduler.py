"""
Punch Scheduler - countdown to a wall-clock minute, then the punch burst.

Both peers agree on a minute (e.g. :30) and start punching at the same
moment, so each NAT sees outbound traffic before the other side's
punches arrive.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from holepunch.errors import ExhaustedAttempts, SendFailure
from holepunch.network.transport import DatagramDispatcher
from holepunch.punch.messages import create_punch_message
from holepunch.punch.session import ConnectionSession, SessionState
from holepunch.utils.logger import get_logger
from holepunch.utils.validation import PeerEndpoint


logger = get_logger("scheduler")

TICK = 1.0  # seconds between countdown checks
DEFAULT_PROGRESS_INTERVAL = 30.0
DEFAULT_COUNTDOWN_THRESHOLD = 10.0

ProgressCallback = Callable[[float], None]


@dataclass
class ScheduledTarget:
    """When the burst should fire, and how long that is from now."""
    target_time: datetime
    delay: timedelta

    @classmethod
    def from_minute(cls, minute: int, now: Optional[datetime] = None) -> "ScheduledTarget":
        """
        Next occurrence of hh:minute:00.

        A minute at or before the current one rolls to the next hour.
        """
        if not 0 <= minute <= 59:
            raise ValueError(f"minute must be in [0, 59], got {minute}")
        if now is None:
            now = datetime.now().astimezone()

        target = now.replace(minute=minute, second=0, microsecond=0)
        if minute <= now.minute:
            target += timedelta(hours=1)

        delay = max(target - now, timedelta(0))
        return cls(target_time=target, delay=delay)

    @property
    def timestamp(self) -> float:
        return self.target_time.timestamp()


class PunchScheduler:
    """
    Drives a ConnectionSession from IDLE to CONNECTED.

    Clock and sleep are injectable so countdowns can be tested without waiting.
    """

    def __init__(
        self,
        dispatcher: DatagramDispatcher,
        clock: Callable[[], float] = time.time,
        progress_interval: float = DEFAULT_PROGRESS_INTERVAL,
        countdown_threshold: float = DEFAULT_COUNTDOWN_THRESHOLD,
        tick: float = TICK,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.dispatcher = dispatcher
        self.clock = clock
        self.progress_interval = progress_interval
        self.countdown_threshold = countdown_threshold
        self.tick = tick
        self.sleep = sleep

    async def wait_until(
        self,
        target: Optional[ScheduledTarget],
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        """
        Sleep until the target fire time, reporting progress.

        Progress is reported every tick once fewer than countdown_threshold
        seconds remain, and every progress_interval seconds before that.
        No target means fire immediately.
        """
        if target is None:
            return

        fire_at = target.timestamp
        logger.info(f"Punch scheduled for {target.target_time:%H:%M:%S}")
        last_report: Optional[float] = None

        while True:
            now = self.clock()
            remaining = fire_at - now
            if remaining <= 0:
                break

            if remaining < self.countdown_threshold:
                due = True
            else:
                due = last_report is None or now - last_report >= self.progress_interval
            if due:
                last_report = now
                logger.info(f"Punching in {remaining:.0f}s")
                if on_progress is not None:
                    on_progress(remaining)

            await self.sleep(min(self.tick, remaining))

        logger.info("Scheduled time reached")

    async def punch_burst(
        self,
        session: ConnectionSession,
        peer: PeerEndpoint,
        max_attempts: Optional[int] = None,
        interval: float = 0.1,
    ) -> int:
        """
        Send punch datagrams until the session connects or attempts run out.

        Returns:
            Number of punches sent

        Raises:
            ExhaustedAttempts: max_attempts punches sent without a reply
        """
        if max_attempts is None:
            max_attempts = session.max_attempts

        if session.state == SessionState.IDLE:
            session.begin_punching()

        sent = 0
        while session.attempt < max_attempts and session.state == SessionState.PUNCHING:
            payload = create_punch_message(session.attempt)
            try:
                self.dispatcher.send(payload, peer.as_tuple())
                sent += 1
            except SendFailure as e:
                logger.error(f"Error sending punch {session.attempt}: {e}")
            session.record_attempt()

            try:
                await asyncio.wait_for(session.connected.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

        if session.is_connected:
            return sent

        if session.state == SessionState.CLOSED:
            # closed by shutdown while punching
            return sent

        error = ExhaustedAttempts(session.attempt, str(peer))
        session.fail(str(error))
        raise error

    async def run(
        self,
        session: ConnectionSession,
        target: Optional[ScheduledTarget] = None,
        max_attempts: Optional[int] = None,
        interval: float = 0.1,
        on_progress: Optional[ProgressCallback] = None,
    ) -> int:
        """Countdown (if scheduled), then burst."""
        await self.wait_until(target, on_progress=on_progress)
        return await self.punch_burst(
            session, session.peer, max_attempts=max_attempts, interval=interval,
        )
