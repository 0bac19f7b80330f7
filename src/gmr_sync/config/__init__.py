"""Configuration management module.

This module provides settings storage, paths, and credential protection.

Submodules:
    manager: ConfigurationManager for loading/saving XML settings
    schema: Data classes for settings and the stored credential (Settings, SyncConfig)
    paths: GamePaths with config, store and hotseat save directories per platform
    security: Auth key encryption/decryption using Fernet symmetric encryption

The settings are stored as XML in <config dir>/GmrSync/configuration.xml.
"""

from .manager import ConfigurationManager
from .schema import AuthState, Settings, SyncConfig
from .paths import GamePaths

__all__ = [
    "ConfigurationManager",
    "AuthState",
    "Settings",
    "SyncConfig",
    "GamePaths",
]
