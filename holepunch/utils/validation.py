"""
Input Validation - operator supplied peer endpoint and target minute.

All checks run before any network activity. The validate_* helpers
return (is_valid, error_message); the parse_* helpers raise InvalidInput.
"""

import ipaddress
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from holepunch.errors import InvalidInput

# =============================================================================
# Constants
# =============================================================================

MIN_PORT = 1
MAX_PORT = 65535
MIN_MINUTE = 0
MAX_MINUTE = 59


# =============================================================================
# Validation Functions
# =============================================================================


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("+-").isdigit():
        return int(value.strip())
    return None


def validate_integer(
    value: Any,
    name: str,
    min_val: int,
    max_val: int,
) -> Tuple[bool, str]:
    """
    Validate an integer (or integer string) within bounds.

    Returns:
        (is_valid, error_message)
    """
    number = _as_int(value)
    if number is None:
        return False, f"{name} must be an integer, got {value!r}"

    if number < min_val:
        return False, f"{name} must be >= {min_val}, got {number}"

    if number > max_val:
        return False, f"{name} must be <= {max_val}, got {number}"

    return True, ""


def validate_port(port: Any) -> Tuple[bool, str]:
    """Validate a UDP port in [1, 65535]."""
    return validate_integer(port, "port", MIN_PORT, MAX_PORT)


def validate_minute(minute: Any) -> Tuple[bool, str]:
    """Validate a wall-clock minute in [0, 59]."""
    return validate_integer(minute, "minute", MIN_MINUTE, MAX_MINUTE)


def validate_ipv4(ip: Any) -> Tuple[bool, str]:
    """Validate a dotted-quad IPv4 address."""
    if not isinstance(ip, str):
        return False, f"ip must be a string, got {type(ip).__name__}"

    try:
        ipaddress.IPv4Address(ip.strip())
    except ipaddress.AddressValueError:
        return False, f"ip must be a dotted IPv4 address, got {ip!r}"

    return True, ""


# =============================================================================
# Parsed values
# =============================================================================


@dataclass(frozen=True)
class PeerEndpoint:
    """The remote peer's public UDP endpoint."""
    ip: str
    port: int

    @classmethod
    def parse(cls, ip: Any, port: Any) -> "PeerEndpoint":
        """Build an endpoint from operator input, raising InvalidInput."""
        valid, err = validate_ipv4(ip)
        if not valid:
            raise InvalidInput(err)

        valid, err = validate_port(port)
        if not valid:
            raise InvalidInput(err)

        return cls(ip=ip.strip(), port=_as_int(port))

    def as_tuple(self) -> Tuple[str, int]:
        return (self.ip, self.port)

    def matches(self, addr: Tuple[str, int]) -> bool:
        """True if a datagram source address is exactly this endpoint."""
        return addr[0] == self.ip and addr[1] == self.port

    def __str__(self) -> str:
        return f"{self.ip}:{self.port}"


def parse_target_minute(value: Any) -> Optional[int]:
    """
    Parse an optional target minute.

    Empty input (None or blank string) means "fire immediately".
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return None

    valid, err = validate_minute(value)
    if not valid:
        raise InvalidInput(err)

    return _as_int(value)
