"""Value types shared by the sleeping listener components."""

from dataclasses import dataclass
from enum import Enum
from typing import Callable


class Platform(Enum):
    """Client platform a wake signal came from."""
    BEDROCK = "bedrock"


class ListenerState(Enum):
    """Lifecycle states of a sleeping listener."""
    UNINITIALIZED = "uninitialized"
    STARTING = "starting"
    LISTENING = "listening"
    LISTENING_DEGRADED = "listening_degraded"   # Listening, world loading failed
    FAILED = "failed"
    CLOSED = "closed"


@dataclass(frozen=True)
class PlayerSignal:
    """Tells the orchestrator a client of some platform tried to join."""
    platform: Platform

    @classmethod
    def bedrock(cls) -> "PlayerSignal":
        return cls(Platform.BEDROCK)


WakeCallback = Callable[[PlayerSignal], None]


@dataclass(frozen=True)
class Settings:
    """Immutable listener settings."""
    port: int = 19132
    login_message: str = "Server is sleeping, it is starting up. Try again in a minute."
    hide_ip_in_logs: bool = False
    bind_address: str = "0.0.0.0"
    motd: str = "Sleeping server"
    shutdown_timeout: float = 5.0

    def __post_init__(self):
        if isinstance(self.port, bool) or not isinstance(self.port, int) or not 1 <= self.port <= 65535:
            raise ValueError(f"Invalid port: {self.port}")
        if not isinstance(self.login_message, str):
            raise ValueError(f"Invalid login message: {self.login_message!r}")
        if not isinstance(self.shutdown_timeout, (int, float)) or self.shutdown_timeout <= 0:
            raise ValueError(f"Invalid shutdown timeout: {self.shutdown_timeout}")
