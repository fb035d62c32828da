"""Host identity and trust decision models."""

import base64
import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import asyncssh


class TrustPolicy(Enum):
    """How unknown and changed host keys are handled."""

    STRICT = "strict"
    ACCEPT_NEW = "accept-new"
    OFF = "off"


class TrustStatus(Enum):
    """Outcome of looking a host key up in the trust store."""

    UNKNOWN = "unknown"
    KNOWN = "known"
    CHANGED = "changed"


def host_pattern(hostname: str, port: int) -> str:
    """known_hosts host token for hostname/port ([host]:port when port != 22)."""
    if port == 22:
        return hostname
    return f"[{hostname}]:{port}"


@dataclass(frozen=True)
class HostIdentity:
    """A server public key bound to a (hostname, port) pair."""

    hostname: str
    port: int
    algorithm: str
    key_blob: bytes

    @classmethod
    def from_ssh_key(cls, hostname: str, port: int, key: "asyncssh.SSHKey") -> "HostIdentity":
        """Build an identity from the key asyncssh hands to host validation."""
        return cls(
            hostname=hostname,
            port=port,
            algorithm=key.get_algorithm(),
            key_blob=key.public_data,
        )

    @property
    def fingerprint(self) -> str:
        """OpenSSH style SHA256 fingerprint."""
        digest = hashlib.sha256(self.key_blob).digest()
        return "SHA256:" + base64.b64encode(digest).decode("ascii").rstrip("=")

    @property
    def key_base64(self) -> str:
        return base64.b64encode(self.key_blob).decode("ascii")

    @property
    def pattern(self) -> str:
        return host_pattern(self.hostname, self.port)

    def same_key(self, other: "HostIdentity") -> bool:
        return self.algorithm == other.algorithm and self.key_blob == other.key_blob

    def to_line(self) -> str:
        """known_hosts line for this identity."""
        return f"{self.pattern} {self.algorithm} {self.key_base64}"


@dataclass(frozen=True)
class TrustDecision:
    """Trust store verdict for a presented host identity.

    For CHANGED, ``previous`` holds the keys on record for the host.
    """

    status: TrustStatus
    identity: HostIdentity
    previous: tuple[HostIdentity, ...] = field(default_factory=tuple)

    @property
    def is_known(self) -> bool:
        return self.status is TrustStatus.KNOWN
