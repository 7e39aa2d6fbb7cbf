"""
Runtime configuration for holepunch.

Defaults follow the reference behavior: Google's public STUN server,
3 second discovery timeout, 100 punches 100 ms apart, 5 second heartbeat.
Values can be overridden through HOLEPUNCH_* environment variables
(optionally loaded from a .env file) or explicit keyword overrides.
"""

import os
from typing import Any, Dict, Optional

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, ValidationError

from holepunch.errors import InvalidInput

ENV_PREFIX = "HOLEPUNCH_"


class PunchConfig(BaseModel):
    """Connection establishment parameters"""

    # Discovery
    stun_host: str = "stun.l.google.com"
    stun_port: int = Field(19302, ge=1, le=65535)
    discovery_timeout: float = Field(3.0, gt=0)  # seconds

    # Local socket
    bind_host: str = "0.0.0.0"
    bind_port: int = Field(0, ge=0, le=65535)  # 0 lets the OS pick

    # Punch burst
    max_attempts: int = Field(100, ge=1)
    punch_interval: float = Field(0.1, gt=0)  # seconds

    # Connected phase
    keepalive_interval: float = Field(5.0, gt=0)  # seconds

    # Countdown notifications
    progress_interval: float = Field(30.0, gt=0)  # seconds between coarse updates
    countdown_threshold: float = Field(10.0, ge=0)  # per-tick updates below this


def _from_environ() -> Dict[str, str]:
    values = {}
    for name in PunchConfig.model_fields:
        raw = os.environ.get(ENV_PREFIX + name.upper())
        if raw is not None and raw != "":
            values[name] = raw
    return values


def load_config(env_file: Optional[str] = None, **overrides: Any) -> PunchConfig:
    """
    Load configuration from the environment, then apply overrides.

    Args:
        env_file: Optional .env path; defaults to the nearest .env from the cwd
        **overrides: Explicit values (None entries are ignored)

    Returns:
        PunchConfig instance
    """
    if env_file:
        load_dotenv(env_file, override=False)
    else:
        load_dotenv(find_dotenv(usecwd=True), override=False)

    values = _from_environ()
    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return PunchConfig(**values)
    except ValidationError as e:
        raise InvalidInput(f"Invalid configuration: {e}") from e
