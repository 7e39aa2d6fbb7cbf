"""
Peer payloads - what travels between the two peers on the punched path.

Three kinds share the socket:
    keep-alive   the literal b"keep-alive"
    punch        JSON {"kind": "punch", "attempt": n, "timestamp": ms}
    chat         anything else, shown to the operator
"""

import json
import time
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field, ValidationError


KEEP_ALIVE = b"keep-alive"


class MessageKind(Enum):
    """Classification of a payload from the peer."""
    KEEP_ALIVE = "keep-alive"
    PUNCH = "punch"
    CHAT = "chat"


class PunchMessage(BaseModel):
    """Control datagram sent during the punch burst."""
    kind: Literal["punch"]
    attempt: int = Field(ge=0)
    timestamp: int  # milliseconds since epoch


def create_punch_message(attempt: int, timestamp: Optional[int] = None) -> bytes:
    """Serialize a punch datagram for the given attempt index."""
    if timestamp is None:
        timestamp = int(time.time() * 1000)
    message = PunchMessage(kind="punch", attempt=attempt, timestamp=timestamp)
    return json.dumps(message.model_dump(), separators=(",", ":")).encode()


def parse_punch_message(payload: bytes) -> Optional[PunchMessage]:
    """Return the punch message carried by payload, or None if it is not one."""
    if not payload.lstrip().startswith(b"{"):
        return None
    try:
        return PunchMessage.model_validate_json(payload)
    except ValidationError:
        return None


def classify_payload(payload: bytes) -> MessageKind:
    """
    Classify a payload received from the peer.

    Rules, first match wins:
    1. exactly the keep-alive literal -> KEEP_ALIVE
    2. a JSON object that validates as a PunchMessage -> PUNCH
    3. anything else, including malformed JSON -> CHAT
    """
    if payload == KEEP_ALIVE:
        return MessageKind.KEEP_ALIVE
    if parse_punch_message(payload) is not None:
        return MessageKind.PUNCH
    return MessageKind.CHAT
