"""
holepunch Punch Module - punch burst, connection state machine, heartbeats.
"""

from holepunch.punch.messages import (
    KEEP_ALIVE,
    MessageKind,
    PunchMessage,
    classify_payload,
    create_punch_message,
)
from holepunch.punch.keepalive import KeepAliveLoop
from holepunch.punch.session import ConnectionSession, PunchSession, SessionState
from holepunch.punch.scheduler import PunchScheduler, ScheduledTarget

__all__ = [
    # Messages
    "KEEP_ALIVE",
    "MessageKind",
    "PunchMessage",
    "classify_payload",
    "create_punch_message",
    # Session
    "ConnectionSession",
    "PunchSession",
    "SessionState",
    "KeepAliveLoop",
    # Scheduling
    "PunchScheduler",
    "ScheduledTarget",
]
