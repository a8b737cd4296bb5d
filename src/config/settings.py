"""Client settings management for the FTPS session client.

Provides ClientSettings dataclass and SettingsManager for persistence.
"""

import json
import logging
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Optional

from src.config.paths import get_settings_path
from src.ftps.connection import FTPSConnectionConfig

logger = logging.getLogger("ftps_client.settings")


@dataclass
class ClientSettings:
    """Client settings that persist between sessions."""

    # Connection defaults
    last_host: str = ""
    last_port: Optional[int] = None
    last_username: str = "anonymous"
    tls_mode: str = "explicit"
    passive_mode: bool = True
    timeout: int = 30

    # Security
    endpoint_checking: bool = False
    verify_certificate: bool = False
    cafile: str = ""
    protection_level: str = "P"

    # Keep-alive and data timeouts in seconds, 0 disables
    keep_alive_timeout: float = 0
    keep_alive_reply_timeout: float = 1
    data_timeout: float = 0
    keep_alive_policy: str = "warn"

    # Logging
    log_level: str = "INFO"

    def to_dict(self) -> dict:
        """Convert settings to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ClientSettings":
        """Create settings from dictionary, ignoring unknown keys."""
        valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in valid_fields}
        return cls(**filtered)

    def to_connection_config(self, host: Optional[str] = None, port: Optional[int] = None,
                             username: Optional[str] = None) -> FTPSConnectionConfig:
        """
        Build a connection configuration from these settings.

        Args:
            host: Overrides last_host
            port: Overrides last_port
            username: Overrides last_username

        Returns:
            Validated FTPSConnectionConfig

        Raises:
            ValueError: If the resulting configuration is invalid
        """
        return FTPSConnectionConfig(
            host=host or self.last_host,
            port=port or self.last_port,
            username=username or self.last_username,
            tls_mode=self.tls_mode,
            passive_mode=self.passive_mode,
            timeout=self.timeout,
            endpoint_checking=self.endpoint_checking,
            verify_certificate=self.verify_certificate,
            cafile=self.cafile or None,
            protection_level=self.protection_level,
            keep_alive_timeout=self.keep_alive_timeout,
            keep_alive_reply_timeout=self.keep_alive_reply_timeout,
            data_timeout=self.data_timeout,
        )


class SettingsManager:
    """Manages client settings persistence."""

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize settings manager.

        Args:
            config_path: Optional custom path, defaults to platform standard
        """
        self._config_path = config_path or get_settings_path()
        self._settings: Optional[ClientSettings] = None

    @property
    def config_path(self) -> Path:
        """Path to settings file."""
        return self._config_path

    def load(self) -> ClientSettings:
        """
        Load settings from disk.

        Returns:
            ClientSettings instance (defaults if file not found or invalid)
        """
        if self._config_path.exists():
            try:
                with open(self._config_path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                self._settings = ClientSettings.from_dict(data)
            except (json.JSONDecodeError, IOError, TypeError) as e:
                logger.warning(f"Ignoring unreadable settings file {self._config_path}: {e}")
                self._settings = ClientSettings()
        else:
            self._settings = ClientSettings()

        return self._settings

    def save(self, settings: ClientSettings) -> None:
        """
        Persist settings to disk.

        Args:
            settings: Settings to save
        """
        self._settings = settings
        self._config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self._config_path, "w", encoding="utf-8") as f:
            json.dump(settings.to_dict(), f, indent=2)

    def reset(self) -> ClientSettings:
        """
        Reset to default settings and remove the settings file.

        Returns:
            Default ClientSettings instance
        """
        self._settings = ClientSettings()
        if self._config_path.exists():
            self._config_path.unlink()
        return self._settings

    def update(self, **kwargs) -> ClientSettings:
        """
        Update specific settings fields; unknown names are ignored.

        Args:
            **kwargs: Field names and new values

        Returns:
            Updated ClientSettings instance
        """
        if self._settings is None:
            self.load()

        for key, value in kwargs.items():
            if hasattr(self._settings, key):
                setattr(self._settings, key, value)

        self.save(self._settings)
        return self._settings
