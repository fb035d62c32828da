"""Port forwarding models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class TunnelDirection(Enum):
    """Which side listens."""

    LOCAL = "local"
    REMOTE = "remote"


@dataclass(frozen=True)
class TunnelSpec:
    """Parameters of a single forward.

    For LOCAL forwards the bind side is on this machine and the target is
    reached from the server. For REMOTE forwards the server listens and the
    target is reached from this machine.
    """

    direction: TunnelDirection
    bind_port: int
    target_host: str
    target_port: int
    bind_address: str = "127.0.0.1"
    persist: bool = False

    def describe(self) -> str:
        flag = "-L" if self.direction is TunnelDirection.LOCAL else "-R"
        return (
            f"{flag} {self.bind_address}:{self.bind_port}:"
            f"{self.target_host}:{self.target_port}"
        )


class TunnelStatus(Enum):
    """Tunnel lifecycle states."""

    CONNECTING = "connecting"
    ACTIVE = "active"
    RECONNECTING = "reconnecting"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass(frozen=True)
class TunnelState:
    """Current tunnel state plus the data that goes with it."""

    status: TunnelStatus
    attempt: int = 0
    next_retry: datetime | None = None
    reason: str | None = None

    @classmethod
    def connecting(cls) -> "TunnelState":
        return cls(TunnelStatus.CONNECTING)

    @classmethod
    def active(cls) -> "TunnelState":
        return cls(TunnelStatus.ACTIVE)

    @classmethod
    def reconnecting(cls, attempt: int, next_retry: datetime) -> "TunnelState":
        return cls(TunnelStatus.RECONNECTING, attempt=attempt, next_retry=next_retry)

    @classmethod
    def stopped(cls) -> "TunnelState":
        return cls(TunnelStatus.STOPPED)

    @classmethod
    def failed(cls, reason: str) -> "TunnelState":
        return cls(TunnelStatus.FAILED, reason=reason)

    @property
    def is_terminal(self) -> bool:
        return self.status in (TunnelStatus.STOPPED, TunnelStatus.FAILED)
