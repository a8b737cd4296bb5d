"""Secure credential storage for the FTPS session client.

Uses the system keyring (Windows Credential Manager, macOS Keychain,
Linux Secret Service) to store FTP passwords.
"""

import logging
from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

logger = logging.getLogger("ftps_client.credentials")


class CredentialManager:
    """Password storage in the system keyring, keyed by host and user."""

    SERVICE_NAME = "ftps-session-client"

    @staticmethod
    def _make_key(host: str, username: str) -> str:
        return f"{host}:{username}"

    def save_password(self, host: str, username: str, password: str) -> bool:
        """
        Save an FTP password.

        Returns:
            True if saved, False if the keyring refused
        """
        try:
            keyring.set_password(self.SERVICE_NAME, self._make_key(host, username), password)
            return True
        except KeyringError as e:
            logger.warning(f"Could not store password for {username}@{host}: {e}")
            return False

    def get_password(self, host: str, username: str) -> Optional[str]:
        """
        Retrieve a saved password.

        Args:
            host: FTP host
            username: FTP username

        Returns:
            Password string or None if not found or the keyring is unavailable
        """
        try:
            return keyring.get_password(self.SERVICE_NAME, self._make_key(host, username))
        except KeyringError as e:
            logger.debug(f"Keyring lookup failed for {username}@{host}: {e}")
            return None

    def delete_password(self, host: str, username: str) -> bool:
        """Remove a saved password; False if none was stored."""
        try:
            keyring.delete_password(self.SERVICE_NAME, self._make_key(host, username))
            return True
        except PasswordDeleteError:
            return False
        except KeyringError as e:
            logger.warning(f"Could not delete password for {username}@{host}: {e}")
            return False

    def has_password(self, host: str, username: str) -> bool:
        return self.get_password(host, username) is not None
