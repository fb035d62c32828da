"""Application configuration.

Delegates to specialized components:
- SSHConfigParser: Reads ~/.ssh/config
- HostTrustStore: Manages known_hosts
- Settings: Environment variables
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from sshore.config.host_keys import HostTrustStore
from sshore.config.parser import SSHConfigParser
from sshore.config.settings import Settings
from sshore.models import SSHHost
from sshore.utils.validation import validate_host, validate_port

logger = logging.getLogger(__name__)


def parse_connection_string(target: str) -> tuple[str | None, str, int]:
    """Split ``[user@]host[:port]`` into (user, host, port).

    Bracketed IPv6 addresses (``[::1]:2222``) are supported.

    Raises:
        ValueError: If the host or port is invalid
    """
    user: str | None = None
    if "@" in target:
        user, target = target.rsplit("@", 1)
        if not user:
            raise ValueError("User cannot be empty")

    port = 22
    if target.startswith("["):
        host, sep, rest = target[1:].partition("]")
        if not sep:
            raise ValueError(f"Unterminated IPv6 address: {target!r}")
        if rest:
            if not rest.startswith(":"):
                raise ValueError(f"Invalid connection string: {target!r}")
            port = validate_port(rest[1:])
    elif target.count(":") == 1:
        host, port_str = target.split(":")
        port = validate_port(port_str)
    else:
        host = target

    return user, validate_host(host), port


@dataclass
class Config:
    """Application configuration.

    Aggregates settings from SSH config, known_hosts, and environment.
    """

    settings: Settings
    parser: SSHConfigParser
    trust_store: HostTrustStore
    _hosts_cache: dict[str, SSHHost] = field(default_factory=dict, init=False, repr=False)

    @classmethod
    def from_env(cls) -> "Config":
        """Create config from environment.

        Returns:
            Configured instance with all components initialized
        """
        settings = Settings.from_env()

        allowlist_str = os.getenv("SSHORE_ALLOWLIST", "").strip()
        allowlist = [h.strip() for h in allowlist_str.split(",") if h.strip()] if allowlist_str else None

        blocklist_str = os.getenv("SSHORE_BLOCKLIST", "").strip()
        blocklist = [h.strip() for h in blocklist_str.split(",") if h.strip()] if blocklist_str else None

        parser = SSHConfigParser(
            config_path=os.getenv("SSHORE_SSH_CONFIG") or None,
            allowlist=allowlist,
            blocklist=blocklist,
        )

        trust_store = HostTrustStore(
            known_hosts_path=settings.known_hosts,
            policy=settings.host_key_policy,
        )

        return cls(settings=settings, parser=parser, trust_store=trust_store)

    @classmethod
    def from_ssh_config(
        cls,
        ssh_config_path: Path | str,
        known_hosts_path: Path | str | None = None,
        settings: Settings | None = None,
    ) -> "Config":
        """Create config from explicit paths (used by tests and embedding apps)."""
        settings = settings or Settings()
        return cls(
            settings=settings,
            parser=SSHConfigParser(config_path=ssh_config_path),
            trust_store=HostTrustStore(
                known_hosts_path=known_hosts_path or settings.known_hosts,
                policy=settings.host_key_policy,
            ),
        )

    def get_hosts(self) -> dict[str, SSHHost]:
        """Get SSH hosts from config.

        Lazy loads and caches hosts on first call.

        Returns:
            Dictionary of host alias to SSHHost
        """
        if not self._hosts_cache:
            self._hosts_cache = self.parser.parse()
        return self._hosts_cache

    def get_host(self, name: str) -> SSHHost | None:
        """Get host by alias (case-insensitive).

        Args:
            name: Host name to look up

        Returns:
            SSHHost if found, None otherwise
        """
        hosts = self.get_hosts()
        if name in hosts:
            return hosts[name]
        lowered = name.lower()
        for alias, host in hosts.items():
            if alias.lower() == lowered:
                return host
        return None

    def resolve_host(self, target: str) -> SSHHost:
        """Resolve a configured alias or an ad-hoc ``[user@]host[:port]``.

        Raises:
            ValueError: If target is neither a known alias nor a valid address
        """
        host = self.get_host(target)
        if host is not None:
            return host
        user, hostname, port = parse_connection_string(target)
        known = self.get_host(hostname)
        if known is not None:
            # alias with user/port override
            return SSHHost(
                name=known.name,
                hostname=known.hostname,
                user=user or known.user,
                port=port if port != 22 else known.port,
                identity_file=known.identity_file,
                proxy_jump=known.proxy_jump,
                env=known.env,
                snippets=list(known.snippets),
                password_account=known.password_account,
            )
        return SSHHost(
            name=hostname,
            hostname=hostname,
            user=user or os.getenv("USER", "root"),
            port=port,
        )

    @property
    def connect_timeout(self) -> int:
        """Connection establishment timeout in seconds."""
        return self.settings.connect_timeout

    @property
    def exec_concurrency(self) -> int:
        """Maximum hosts contacted at once by exec fan-out."""
        return self.settings.exec_concurrency
