"""SSH config file parser.

Reads ~/.ssh/config and extracts host definitions with allowlist/blocklist
filtering. Per-host sshore metadata lives in comments inside a Host block so
OpenSSH keeps reading the same file::

    Host prod-web
        HostName 10.0.1.5
        User deploy
        ProxyJump bastion
        # sshore env=production
        # sshore password=prod-web
        # sshore snippet=restart=!sudo systemctl restart app
"""

import logging
import os
import re
from pathlib import Path

from sshore.models import SSHHost, Snippet

logger = logging.getLogger(__name__)

HOST_RE = re.compile(r"^Host\s+(.+)$", re.IGNORECASE)
KV_RE = re.compile(r"^(\w+)\s*[=\s]\s*(.+)$")
META_RE = re.compile(r"^#\s*sshore\s+(\w+)=(.*)$", re.IGNORECASE)


class SSHConfigParser:
    """Parser for SSH config files.

    Reads SSH config format and extracts host definitions.
    Supports allowlist/blocklist filtering.
    """

    def __init__(
        self,
        config_path: Path | str | None = None,
        allowlist: list[str] | None = None,
        blocklist: list[str] | None = None,
    ):
        """Initialize SSH config parser.

        Args:
            config_path: Path to SSH config file (default: ~/.ssh/config)
            allowlist: Only include these hosts (if set)
            blocklist: Exclude these hosts
        """
        if config_path is None:
            config_path = Path.home() / ".ssh" / "config"

        self.config_path = Path(config_path)
        self.allowlist = set(allowlist) if allowlist else None
        self.blocklist = set(blocklist) if blocklist else set()

    def parse(self) -> dict[str, SSHHost]:
        """Parse SSH config and return host definitions.

        Returns:
            Dictionary mapping host alias to SSHHost objects
        """
        if not self.config_path.exists():
            logger.warning("SSH config not found: %s", self.config_path)
            return {}

        try:
            content = self.config_path.read_text()
            logger.debug("Reading SSH config from %s", self.config_path)
        except OSError as e:
            logger.warning("Cannot read SSH config %s: %s", self.config_path, e)
            return {}

        hosts: dict[str, SSHHost] = {}
        global_defaults: dict[str, str] = {}
        names: list[str] = []
        is_global = False
        data: dict[str, str] = {}
        snippets: list[Snippet] = []

        blocks: list[tuple[list[str], dict[str, str], list[Snippet]]] = []

        def flush() -> None:
            if names:
                blocks.append((names, data, snippets))

        for raw in content.splitlines():
            line = raw.strip()
            if not line:
                continue

            meta = META_RE.match(line)
            if meta:
                key, value = meta.group(1).lower(), meta.group(2).strip()
                if key == "snippet":
                    snippet = self._parse_snippet(value)
                    if snippet is not None:
                        snippets.append(snippet)
                else:
                    data[key] = value
                continue
            if line.startswith("#"):
                continue

            host_match = HOST_RE.match(line)
            if host_match:
                flush()
                patterns = host_match.group(1).split()
                is_global = patterns == ["*"]
                # Wildcard patterns other than "Host *" are not concrete hosts
                names = [p for p in patterns if "*" not in p and "?" not in p and not p.startswith("!")]
                data = {}
                snippets = []
                continue

            kv_match = KV_RE.match(line)
            if kv_match and (names or is_global):
                key = kv_match.group(1).lower()
                value = kv_match.group(2).strip().strip('"')
                if key == "identityfile":
                    value = os.path.expanduser(value)
                if is_global:
                    global_defaults.setdefault(key, value)
                else:
                    # First obtained value wins, as in ssh_config(5)
                    data.setdefault(key, value)

        flush()

        # "Host *" applies wherever it appears, host specific values win
        for block_names, block_data, block_snippets in blocks:
            merged = {**global_defaults, **block_data}
            for name in block_names:
                if self._is_host_allowed(name):
                    hosts[name] = self._build_host(name, merged, block_snippets)

        logger.info("Parsed %d hosts from %s", len(hosts), self.config_path)
        return hosts

    @staticmethod
    def _build_host(name: str, data: dict[str, str], snippets: list[Snippet]) -> SSHHost:
        try:
            port = int(data.get("port", "22"))
        except ValueError:
            logger.warning("Invalid port %r for host %s, using 22", data.get("port"), name)
            port = 22
        return SSHHost(
            name=name,
            hostname=data.get("hostname", name),
            user=data.get("user", os.getenv("USER", "root")),
            port=port,
            identity_file=data.get("identityfile"),
            proxy_jump=data.get("proxyjump"),
            env=data.get("env", ""),
            snippets=list(snippets),
            password_account=data.get("password"),
        )

    @staticmethod
    def _parse_snippet(value: str) -> Snippet | None:
        name, sep, command = value.partition("=")
        if not sep or not name.strip() or not command:
            logger.warning("Ignoring malformed snippet metadata: %r", value)
            return None
        auto_execute = command.startswith("!")
        return Snippet(
            name=name.strip(),
            command=command[1:] if auto_execute else command,
            auto_execute=auto_execute,
        )

    def _is_host_allowed(self, name: str) -> bool:
        """Check if host passes allowlist/blocklist filters.

        Args:
            name: Host name to check

        Returns:
            True if host is allowed
        """
        # Allowlist takes precedence
        if self.allowlist:
            return name in self.allowlist

        if self.blocklist:
            return name not in self.blocklist

        return True
