"""Credential discovery and lazy resolution into asyncssh options."""

import asyncio
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import asyncssh

from sshore.models import Credential, CredentialKind, SSHHost
from sshore.services.keychain import Keychain, KeychainError

logger = logging.getLogger(__name__)

DEFAULT_KEY_NAMES = ("id_ed25519", "id_rsa", "id_ecdsa")


def default_credentials(
    host: SSHHost,
    agent_path: str | None = None,
    ssh_dir: Path | None = None,
) -> list[Credential]:
    """Authentication methods for a host, in priority order.

    Identity keys come first (the configured IdentityFile, otherwise the
    default key files that exist), then the agent when a socket is
    available, then the keychain password when the host has one.

    Args:
        host: Host to authenticate against
        agent_path: Agent socket, defaults to $SSH_AUTH_SOCK
        ssh_dir: Directory holding default keys, defaults to ~/.ssh
    """
    credentials: list[Credential] = []

    if host.identity_file:
        credentials.append(Credential.private_key(os.path.expanduser(host.identity_file)))
    else:
        ssh_dir = ssh_dir or Path.home() / ".ssh"
        for name in DEFAULT_KEY_NAMES:
            path = ssh_dir / name
            if path.is_file():
                credentials.append(Credential.private_key(str(path)))

    agent_path = agent_path if agent_path is not None else os.getenv("SSH_AUTH_SOCK")
    if agent_path:
        credentials.append(Credential.agent(agent_path))

    if host.password_account:
        credentials.append(Credential.password(host.password_account))

    return credentials


class CredentialResolver:
    """Turns credential references into connect options on demand.

    Keychain lookups happen only when a method is about to be attempted.
    """

    def __init__(self, keychain: Keychain | None = None) -> None:
        self.keychain = keychain or Keychain()

    async def _secret(self, account: str) -> str | None:
        try:
            return await asyncio.to_thread(self.keychain.get_password, account)
        except KeychainError as e:
            logger.warning("Keychain lookup for %s failed: %s", account, e)
            return None

    @asynccontextmanager
    async def resolve(self, credential: Credential) -> AsyncIterator[dict[str, Any] | None]:
        """asyncssh.connect keyword arguments for one method.

        Yields None when the method has nothing to offer (no keychain entry
        for a password account, an agent without keys). Agent connections
        stay open until the block exits so signing can complete.
        """
        if credential.kind is not CredentialKind.AGENT:
            yield await self.options_for(credential)
            return

        try:
            agent = await asyncssh.connect_agent(credential.agent_path)
        except (OSError, asyncssh.Error) as e:
            logger.debug("Cannot reach agent at %s: %s", credential.agent_path, e)
            yield None
            return

        try:
            try:
                keys = await agent.get_keys()
            except (OSError, asyncssh.Error, ValueError) as e:
                logger.debug("Agent at %s returned no keys: %s", credential.agent_path, e)
                keys = []
            if not keys:
                yield None
            else:
                yield {
                    "client_keys": keys,
                    "agent_path": None,
                    "password": None,
                    "preferred_auth": "publickey",
                }
        finally:
            agent.close()
            await agent.wait_closed()

    async def options_for(self, credential: Credential) -> dict[str, Any] | None:
        """Connect options for key and password methods."""
        if credential.kind is CredentialKind.PRIVATE_KEY:
            passphrase = None
            if credential.passphrase_account:
                passphrase = await self._secret(credential.passphrase_account)
            return {
                "client_keys": [credential.key_path],
                "passphrase": passphrase,
                "agent_path": None,
                "password": None,
                "preferred_auth": "publickey",
            }

        if credential.kind is CredentialKind.AGENT:
            raise ValueError("Agent credentials are resolved with resolve()")

        assert credential.password_account is not None
        password = await self._secret(credential.password_account)
        if password is None:
            logger.debug("No keychain password stored for %s", credential.password_account)
            return None
        return {
            "client_keys": [],
            "agent_path": None,
            "password": password,
            "preferred_auth": "keyboard-interactive,password",
        }
