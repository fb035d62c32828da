"""SSH host key trust store.

Reads and writes an OpenSSH known_hosts file and applies the configured
trust policy to keys presented by servers.
"""

import base64
import binascii
import hashlib
import hmac
import logging
import os
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from fnmatch import fnmatch
from pathlib import Path

from sshore.models import HostIdentity, TrustDecision, TrustPolicy, TrustStatus
from sshore.models.trust import host_pattern

logger = logging.getLogger(__name__)

ConfirmCallback = Callable[[TrustDecision], bool]


@dataclass
class KnownHostEntry:
    """One parsed known_hosts line."""

    patterns: list[str]
    algorithm: str
    key_base64: str
    line_number: int

    def matches(self, pattern: str) -> bool:
        """Check whether this entry applies to a host token."""
        for candidate in self.patterns:
            if candidate.startswith("!"):
                continue
            if candidate.startswith("|1|"):
                if _hashed_host_matches(candidate, pattern):
                    return True
            elif candidate == pattern:
                return True
            elif ("*" in candidate or "?" in candidate) and fnmatch(pattern, candidate):
                return True
        return False

    @property
    def key_blob(self) -> bytes | None:
        try:
            return base64.b64decode(self.key_base64, validate=True)
        except (binascii.Error, ValueError):
            return None


def _hashed_host_matches(stored: str, pattern: str) -> bool:
    """Match ``|1|base64(salt)|base64(HMAC-SHA1(salt, host))``."""
    parts = stored.split("|")
    if len(parts) != 4 or parts[0] or parts[1] != "1":
        return False
    try:
        salt = base64.b64decode(parts[2])
        expected = base64.b64decode(parts[3])
    except (binascii.Error, ValueError):
        return False
    computed = hmac.new(salt, pattern.encode("utf-8"), hashlib.sha1).digest()
    return hmac.compare_digest(computed, expected)


def parse_known_hosts_line(line: str, line_number: int = 0) -> KnownHostEntry | None:
    """Parse a known_hosts line, or None for blanks, comments and markers."""
    line = line.strip()
    if not line or line.startswith("#") or line.startswith("@"):
        return None
    fields = line.split()
    if len(fields) < 3:
        return None
    return KnownHostEntry(
        patterns=fields[0].split(","),
        algorithm=fields[1],
        key_base64=fields[2],
        line_number=line_number,
    )


class HostTrustStore:
    """Known-hosts backed trust decisions.

    Entries are keyed by (hostname, port). Several keys may be on record for
    one host; a presented key is known if any of them matches.
    """

    def __init__(
        self,
        known_hosts_path: str | Path | None = None,
        policy: TrustPolicy = TrustPolicy.STRICT,
    ):
        """Initialize the trust store.

        Args:
            known_hosts_path: Path to known_hosts, or 'none' to disable checks
            policy: How unknown and changed keys are handled
        """
        self.policy = policy
        if isinstance(known_hosts_path, str) and known_hosts_path.lower() == "none":
            logger.critical(
                "SSH HOST KEY VERIFICATION DISABLED. "
                "Connections are vulnerable to MITM attacks."
            )
            self.policy = TrustPolicy.OFF
            known_hosts_path = None
        if known_hosts_path is None:
            known_hosts_path = Path.home() / ".ssh" / "known_hosts"
        self.path = Path(os.path.expanduser(str(known_hosts_path)))

    def _read_lines(self) -> list[str]:
        if not self.path.exists():
            return []
        return self.path.read_text(encoding="utf-8").splitlines()

    def entries(self) -> list[KnownHostEntry]:
        """All parseable entries in file order."""
        parsed = []
        for number, line in enumerate(self._read_lines(), start=1):
            entry = parse_known_hosts_line(line, number)
            if entry is not None:
                parsed.append(entry)
        return parsed

    def lookup(self, hostname: str, port: int = 22) -> list[HostIdentity]:
        """Keys on record for (hostname, port)."""
        pattern = host_pattern(hostname, port)
        found = []
        for entry in self.entries():
            blob = entry.key_blob
            if blob is not None and entry.matches(pattern):
                found.append(
                    HostIdentity(
                        hostname=hostname,
                        port=port,
                        algorithm=entry.algorithm,
                        key_blob=blob,
                    )
                )
        return found

    def verify(self, identity: HostIdentity) -> TrustDecision:
        """Compare a presented identity with the store.

        Returns:
            KNOWN if any stored key matches, CHANGED if the host has other
            keys on record, UNKNOWN otherwise
        """
        stored = self.lookup(identity.hostname, identity.port)
        if not stored:
            return TrustDecision(TrustStatus.UNKNOWN, identity)
        if any(identity.same_key(known) for known in stored):
            return TrustDecision(TrustStatus.KNOWN, identity)
        return TrustDecision(TrustStatus.CHANGED, identity, previous=tuple(stored))

    def record(self, identity: HostIdentity, replace: bool = False) -> None:
        """Persist an identity atomically.

        Args:
            identity: Host identity to store
            replace: Drop existing keys for this (hostname, port) first
        """
        pattern = identity.pattern
        lines = self._read_lines()
        if replace:
            kept = []
            for line in lines:
                entry = parse_known_hosts_line(line)
                if entry is not None and entry.matches(pattern):
                    continue
                kept.append(line)
            lines = kept
        lines.append(identity.to_line())
        self._write_atomic("\n".join(lines) + "\n")
        logger.info(
            "Recorded host key for %s (%s %s)",
            pattern,
            identity.algorithm,
            identity.fingerprint,
        )

    def _write_atomic(self, content: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=".known_hosts.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def check(
        self,
        identity: HostIdentity,
        confirm: ConfirmCallback | None = None,
        override: ConfirmCallback | None = None,
        policy: TrustPolicy | None = None,
    ) -> tuple[bool, TrustDecision]:
        """Apply the trust policy to a presented identity.

        Args:
            identity: Key presented by the server
            confirm: Asked whether to trust an UNKNOWN key (strict policy)
            override: Asked whether to replace the key of a CHANGED host.
                Ordinary confirmation never accepts a changed key.
            policy: Overrides the store's default policy

        Returns:
            Tuple of (accepted, decision)
        """
        policy = policy or self.policy
        decision = self.verify(identity)

        if policy is TrustPolicy.OFF:
            if not decision.is_known:
                logger.warning(
                    "Host key checking is off: accepting %s key %s for %s",
                    decision.status.value,
                    identity.fingerprint,
                    identity.pattern,
                )
            return True, decision

        if decision.status is TrustStatus.KNOWN:
            return True, decision

        if decision.status is TrustStatus.CHANGED:
            logger.error(
                "HOST KEY FOR %s HAS CHANGED (now %s %s). "
                "This could be a man-in-the-middle attack.",
                identity.pattern,
                identity.algorithm,
                identity.fingerprint,
            )
            if override is not None and override(decision):
                logger.warning("Host key change for %s overridden by user", identity.pattern)
                self.record(identity, replace=True)
                return True, decision
            return False, decision

        # UNKNOWN
        if policy is TrustPolicy.ACCEPT_NEW:
            self.record(identity)
            return True, decision
        if confirm is not None and confirm(decision):
            self.record(identity)
            return True, decision
        logger.error(
            "Host key for %s is not trusted (%s %s)",
            identity.pattern,
            identity.algorithm,
            identity.fingerprint,
        )
        return False, decision
