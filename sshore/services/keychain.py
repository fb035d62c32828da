"""OS keychain access for stored host passwords."""

import logging

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from sshore.errors import SshoreError

logger = logging.getLogger(__name__)

SERVICE_NAME = "sshore"


class KeychainError(SshoreError):
    """The keychain backend failed (locked, unavailable, denied)."""


class Keychain:
    """Get/set/delete secrets by account name under one service.

    Secret values are never logged.
    """

    def __init__(self, service: str = SERVICE_NAME) -> None:
        self.service = service

    def get_password(self, account: str) -> str | None:
        """Return the stored secret, or None if there is none."""
        try:
            return keyring.get_password(self.service, account)
        except KeyringError as e:
            raise KeychainError(f"Failed to read from keychain: {e}") from e

    def set_password(self, account: str, password: str) -> None:
        try:
            keyring.set_password(self.service, account, password)
        except KeyringError as e:
            raise KeychainError(f"Failed to store password in keychain: {e}") from e
        logger.info("Stored keychain password for %s", account)

    def delete_password(self, account: str) -> bool:
        """Delete a stored secret.

        Returns:
            False if nothing was stored for the account
        """
        try:
            keyring.delete_password(self.service, account)
        except PasswordDeleteError:
            return False
        except KeyringError as e:
            raise KeychainError(f"Failed to delete from keychain: {e}") from e
        logger.info("Deleted keychain password for %s", account)
        return True

    def has_password(self, account: str) -> bool:
        return self.get_password(account) is not None
