"""Key/value state store.

Holds everything the engine must remember across restarts: the relay
credential, the last known games list, downloaded save bytes and turns
waiting for upload. Each key is one file in the store directory::

    store/
        config
        data
        saved-bytes-1234-56789
        upload-bytes-1234
        player-info-76561198000000000
"""

import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Optional

from .errors import PersistenceError
from ..config.paths import GamePaths
from ..logging_config import get_logger

logger = get_logger("store")

CONFIG_KEY = "config"
GAMES_KEY = "data"

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


def saved_bytes_key(game_id: int, turn_id: int) -> str:
    return f"saved-bytes-{game_id}-{turn_id}"


def upload_bytes_key(game_id: int) -> str:
    return f"upload-bytes-{game_id}"


def player_info_key(user_id: int) -> str:
    return f"player-info-{user_id}"


class DirectoryStore:
    """Byte oriented key/value store backed by one file per key.

    Writes go to a temporary file that replaces the old value in one step,
    so a crash never leaves a half-written value behind.
    """

    def __init__(self, root: Optional[Path] = None):
        self.root = GamePaths.ensure_store_dir(root)

    def _path(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key) or key in (".", ".."):
            raise PersistenceError(f"Invalid store key: {key!r}")
        return self.root / key

    def get(self, key: str) -> Optional[bytes]:
        """Get the value of a key, or None if it is not set."""
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(f"Could not read {key}: {e}") from e

    def put(self, key: str, value: bytes) -> None:
        """Set a key, replacing any previous value."""
        path = self._path(key)
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=f".{key}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(value)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PersistenceError(f"Could not write {key}: {e}") from e
        logger.debug("Stored %s (%d bytes)", key, len(value))

    def remove(self, key: str) -> bool:
        """Delete a key.

        Returns:
            True if the key existed
        """
        path = self._path(key)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise PersistenceError(f"Could not remove {key}: {e}") from e

    def contains(self, key: str) -> bool:
        return self._path(key).is_file()

    def get_json(self, key: str) -> Any:
        """Get a JSON value, or None if the key is not set."""
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Stored {key} is not valid JSON: {e}") from e

    def put_json(self, key: str, value: Any) -> None:
        self.put(key, json.dumps(value).encode("utf-8"))
