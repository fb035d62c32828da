"""Authentication credential references.

Credentials only point at secret material (a key path, an agent socket, a
keychain account). Secrets are fetched when the method is attempted.
"""

from dataclasses import dataclass
from enum import Enum


class CredentialKind(Enum):
    """Authentication method, in default priority order."""

    PRIVATE_KEY = "publickey"
    AGENT = "agent"
    PASSWORD = "password"


@dataclass(frozen=True)
class Credential:
    """One authentication method to try."""

    kind: CredentialKind
    key_path: str | None = None
    passphrase_account: str | None = None
    agent_path: str | None = None
    password_account: str | None = None

    @classmethod
    def private_key(cls, path: str, passphrase_account: str | None = None) -> "Credential":
        return cls(CredentialKind.PRIVATE_KEY, key_path=path, passphrase_account=passphrase_account)

    @classmethod
    def agent(cls, socket_path: str) -> "Credential":
        return cls(CredentialKind.AGENT, agent_path=socket_path)

    @classmethod
    def password(cls, account: str) -> "Credential":
        return cls(CredentialKind.PASSWORD, password_account=account)

    @property
    def label(self) -> str:
        """Short method description for logs and AuthFailed."""
        if self.kind is CredentialKind.PRIVATE_KEY:
            return f"publickey ({self.key_path})"
        return self.kind.value
