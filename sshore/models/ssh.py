"""SSH-related data models."""

from dataclasses import dataclass, field

from sshore.models.snippet import Snippet


@dataclass
class SSHHost:
    """Resolved SSH host record."""

    name: str
    hostname: str
    user: str = "root"
    port: int = 22
    identity_file: str | None = None
    proxy_jump: str | None = None
    env: str = ""
    snippets: list[Snippet] = field(default_factory=list)
    password_account: str | None = None

    @property
    def jump_hosts(self) -> list[str]:
        """Jump hosts in connection order (first hop first)."""
        if not self.proxy_jump or self.proxy_jump.lower() == "none":
            return []
        return [hop.strip() for hop in self.proxy_jump.split(",") if hop.strip()]

    @property
    def has_password(self) -> bool:
        """Whether a keychain password is associated with this host."""
        return bool(self.password_account)

    @property
    def target(self) -> str:
        """user@hostname:port, used in log lines."""
        return f"{self.user}@{self.hostname}:{self.port}"
