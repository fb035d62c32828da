"""Error taxonomy for sshore.

Every failure raised by the engine derives from SshoreError so callers can
catch by family (connection, channel, transfer, tunnel) without depending on
asyncssh exception types.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sshore.models.transfer import TransferState
    from sshore.models.trust import TrustDecision


class SshoreError(Exception):
    """Base class for all sshore errors."""


class ConnectError(SshoreError):
    """Failed to establish or authenticate an SSH connection."""

    def __init__(self, host_name: str, message: str):
        """Initialize connection error.

        Args:
            host_name: Name of the SSH host
            message: Human readable reason
        """
        self.host_name = host_name
        super().__init__(f"Cannot connect to {host_name}: {message}")


class NetworkError(ConnectError):
    """TCP-level or transport failure while connecting."""


class ConnectTimeout(ConnectError):
    """Connection establishment or authentication exceeded the timeout."""

    def __init__(self, host_name: str, timeout: float):
        self.timeout = timeout
        super().__init__(host_name, f"timed out after {timeout:g}s")


class AuthFailed(ConnectError):
    """Every authentication method was rejected."""

    def __init__(self, host_name: str, methods: list[str]):
        """Initialize auth failure.

        Args:
            host_name: Name of the SSH host
            methods: Authentication methods attempted, in order
        """
        self.methods = list(methods)
        tried = ", ".join(self.methods) if self.methods else "none available"
        super().__init__(host_name, f"authentication failed (tried: {tried})")


class HostKeyRejected(ConnectError):
    """The server host key was not accepted by the trust policy."""

    def __init__(self, host_name: str, decision: "TrustDecision | None" = None):
        self.decision = decision
        reason = "host key rejected"
        if decision is not None:
            reason = f"host key rejected ({decision.status.value})"
        super().__init__(host_name, reason)


class ChannelError(SshoreError):
    """A logical channel failed. Never affects sibling channels."""


class ChannelClosed(ChannelError):
    """The channel was closed by the peer or the transport went away."""


class ProtocolViolation(ChannelError):
    """The channel request was invalid for the connection state."""


class TransferError(SshoreError):
    """File transfer failed."""

    def __init__(self, message: str, state: "TransferState | None" = None):
        """Initialize transfer error.

        Args:
            message: Human readable reason
            state: Transfer checkpoint at the time of failure
        """
        self.state = state
        super().__init__(message)


class ResumeMismatch(TransferError):
    """Destination is larger than the source so it cannot be resumed."""


class TransferIOError(TransferError):
    """Local or remote I/O failed mid-transfer. Partial data is kept."""


class TransferInterrupted(TransferError):
    """The transfer channel was lost mid-transfer. Partial data is kept."""


class TunnelError(SshoreError):
    """Port forwarding failed."""


class BindFailed(TunnelError):
    """Could not bind the listening side of a forward."""


class TunnelLost(TunnelError):
    """The forward's channel or parent connection went away."""
