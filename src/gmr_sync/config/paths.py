"""Default paths for configuration, state and game saves"""

import os
import sys
from pathlib import Path


def _config_root() -> Path:
    if sys.platform == "win32":
        return Path(os.path.expandvars(r"%APPDATA%"))
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support"
    return Path(os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config")


def _data_root() -> Path:
    if sys.platform == "win32":
        return Path(os.path.expandvars(r"%LOCALAPPDATA%"))
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support"
    return Path(os.environ.get("XDG_DATA_HOME") or Path.home() / ".local" / "share")


class GamePaths:
    """Default paths for the application and the game's hotseat saves.

    Civilization V keeps multiplayer saves in a different place on every
    platform, so the save directory is assembled from a platform prefix and
    a common suffix.
    """

    # Hotseat save directory: <home>/<platform prefix>/<suffix>
    SAVE_DIR_SUFFIX = Path("Sid Meier's Civilization 5") / "Saves" / "hotseat"
    SAVE_DIR_PREFIXES = {
        "win32": Path("Documents") / "My Games",
        "darwin": Path("Documents") / "Aspyr",
        "linux": Path(".local") / "share" / "Aspyr",
    }

    # Configuration file location
    CONFIG_DIR = _config_root() / "GmrSync"
    CONFIG_FILE = CONFIG_DIR / "configuration.xml"
    LOG_FILE = CONFIG_DIR / "gmr_sync.log"

    # Key/value state (credential, games list, save bytes)
    DATA_DIR = _data_root() / "GmrSync"
    STORE_DIR = DATA_DIR / "store"

    @classmethod
    def default_save_dir(cls, platform: str | None = None) -> Path:
        """Get the hotseat save directory for a platform.

        Args:
            platform: A ``sys.platform`` value, defaults to the running one

        Returns:
            Absolute path to the hotseat save directory

        Raises:
            ValueError: If the platform is not one the game runs on
        """
        platform = platform or sys.platform
        if platform.startswith("linux"):
            platform = "linux"
        prefix = cls.SAVE_DIR_PREFIXES.get(platform)
        if prefix is None:
            raise ValueError(f"Unhandled operating system for save dir: {platform}")
        return Path.home() / prefix / cls.SAVE_DIR_SUFFIX

    @classmethod
    def expand_path(cls, path_str: str) -> Path:
        """Expand environment variables and ``~`` in a path string.

        Args:
            path_str: Path string potentially containing environment variables

        Returns:
            Path object with expanded variables
        """
        return Path(os.path.expandvars(path_str)).expanduser()

    @classmethod
    def ensure_config_dir(cls) -> Path:
        """Ensure the configuration directory exists.

        Returns:
            Path to the configuration directory
        """
        cls.CONFIG_DIR.mkdir(parents=True, exist_ok=True)
        return cls.CONFIG_DIR

    @classmethod
    def ensure_store_dir(cls, store_path: Path | None = None) -> Path:
        """Ensure the state store directory exists.

        Args:
            store_path: Optional custom store path, uses default if None

        Returns:
            Path to the store directory
        """
        path = store_path or cls.STORE_DIR
        path.mkdir(parents=True, exist_ok=True)
        return path
