"""
Error taxonomy for holepunch.

Discovery errors are fatal to a run; send failures are contained to the
operation that raised them.
"""

from typing import Optional


class HolepunchError(Exception):
    """Base class for all holepunch failures."""

    kind = "error"


# =============================================================================
# Discovery
# =============================================================================

class DiscoveryError(HolepunchError):
    """Binding discovery failed; no public endpoint is known."""

    kind = "discovery"


class MalformedMessage(DiscoveryError):
    kind = "malformed-message"


class MalformedAttribute(DiscoveryError):
    kind = "malformed-attribute"


class UnsupportedFamily(DiscoveryError):
    kind = "unsupported-family"

    def __init__(self, family: int):
        super().__init__(f"Unsupported address family: 0x{family:02x}")
        self.family = family


class AttributeNotFound(DiscoveryError):
    kind = "attribute-not-found"


class DiscoveryTimeout(DiscoveryError):
    kind = "timeout"


class ResolutionFailure(DiscoveryError):
    kind = "resolution"


# =============================================================================
# Operator input and punching
# =============================================================================

class InvalidInput(HolepunchError, ValueError):
    kind = "invalid-input"


class BindFailure(HolepunchError):
    """The local UDP socket could not be bound."""

    kind = "bind"


class SendFailure(HolepunchError):
    """A datagram could not be handed to the transport."""

    kind = "send-failure"


class ExhaustedAttempts(HolepunchError):
    kind = "exhausted-attempts"

    def __init__(self, attempts: int, peer: Optional[str] = None):
        target = f" to {peer}" if peer else ""
        super().__init__(f"No response{target} after {attempts} punch attempts")
        self.attempts = attempts


class SessionNotConnected(HolepunchError):
    kind = "not-connected"
