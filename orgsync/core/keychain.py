"""Project passwords in the system keychain."""

import logging

import keyring
from keyring.backends import fail
from keyring.errors import KeyringError, PasswordDeleteError


logger = logging.getLogger(__name__)

SERVICE_NAME = "orgsync"


class KeychainError(Exception):
    """Raised when a secret is missing or cannot be read."""


class KeychainService:
    """Stores one password per project id under the ``orgsync`` service."""

    def __init__(self, enabled: bool = True, service_name: str = SERVICE_NAME) -> None:
        self.enabled = enabled
        self.service_name = service_name

    def use_system_keychain(self) -> bool:
        """Whether passwords should go to the keychain instead of ``.settings``."""
        if not self.enabled:
            return False
        return not isinstance(keyring.get_keyring(), fail.Keyring)

    def get_password(self, key: str) -> str:
        """Get the password stored for ``key``.

        Raises:
            KeychainError: If nothing is stored or the backend fails
        """
        try:
            password = keyring.get_password(self.service_name, key)
        except KeyringError as e:
            raise KeychainError(f"Could not read keychain entry {key}: {e}") from e
        if password is None:
            raise KeychainError(f"No keychain entry for {key}")
        return password

    def store_password(self, key: str, password: str) -> None:
        try:
            keyring.set_password(self.service_name, key, password)
        except KeyringError as e:
            raise KeychainError(f"Could not store keychain entry {key}: {e}") from e
        logger.debug("stored password for %s in keychain", key)

    def replace_password(self, key: str, password: str) -> None:
        """Overwrite the password stored for ``key``."""
        try:
            keyring.delete_password(self.service_name, key)
        except PasswordDeleteError:
            pass  # nothing stored yet
        except KeyringError as e:
            raise KeychainError(f"Could not replace keychain entry {key}: {e}") from e
        self.store_password(key, password)
