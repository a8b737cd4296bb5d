"""Configuration module for the FTPS session client.

This module handles client settings and credentials:
- SettingsManager: JSON-based settings persistence
- CredentialManager: Secure credential storage via keyring
- Paths: Application data, settings and log locations
- ClientSettings: Settings dataclass
"""
