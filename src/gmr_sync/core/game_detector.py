"""Auto-detect the game's hotseat save directory"""

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..config.paths import GamePaths
from ..logging_config import get_logger

logger = get_logger("game_detector")


@dataclass
class SaveDirectory:
    """A candidate save directory and whether it is present on disk"""
    path: Path
    exists: bool
    configured: bool = False


class GameDetector:
    """Find where Civilization V reads and writes multiplayer saves.

    The user's configured directory wins; otherwise the platform default
    is used even if the game has not created it yet.
    """

    def __init__(self, platform: Optional[str] = None):
        self.platform = platform or sys.platform

    def detect_save_dir(self, configured: Optional[Path] = None) -> SaveDirectory:
        """Resolve the save directory.

        Args:
            configured: Directory chosen in the settings, if any

        Returns:
            The directory to watch and download into

        Raises:
            ValueError: If nothing is configured and the platform is unknown
        """
        if configured is not None:
            return SaveDirectory(path=configured, exists=configured.is_dir(), configured=True)

        path = GamePaths.default_save_dir(self.platform)
        exists = path.is_dir()
        if not exists:
            logger.warning("Save directory %s does not exist yet", path)
        return SaveDirectory(path=path, exists=exists)
