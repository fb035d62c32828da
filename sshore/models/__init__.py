"""Data models for sshore."""

from sshore.models.command import ExecReport, HostResult
from sshore.models.credential import Credential, CredentialKind
from sshore.models.snippet import Snippet
from sshore.models.ssh import SSHHost
from sshore.models.transfer import TransferProgress, TransferState
from sshore.models.trust import (
    HostIdentity,
    TrustDecision,
    TrustPolicy,
    TrustStatus,
)
from sshore.models.tunnel import (
    TunnelDirection,
    TunnelSpec,
    TunnelState,
    TunnelStatus,
)

__all__ = [
    "Credential",
    "CredentialKind",
    "ExecReport",
    "HostIdentity",
    "HostResult",
    "SSHHost",
    "Snippet",
    "TransferProgress",
    "TransferState",
    "TrustDecision",
    "TrustPolicy",
    "TrustStatus",
    "TunnelDirection",
    "TunnelSpec",
    "TunnelState",
    "TunnelStatus",
]
