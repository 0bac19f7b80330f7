"""Core business logic module.

This module contains save parsing, turn matching and transfer management.

Submodules:
    chunks: Splits a save into chunks at the 0x40 boundary marker
    save_parser: SaveCodec for the header and player tables of .Civ5Save files
    filenames: Turn number from a hotseat save name, download file names
    turn_matcher: TurnMatcher pairing a new local save with a game
    transfer: Transfer states, background tasks, progress channel, retry policy
    store: DirectoryStore, a key/value store of JSON and raw bytes
    watcher: SaveWatcher reporting new files in the save directory
    game_detector: GameDetector resolving the hotseat save directory
    sync_engine: SyncEngine driving downloads and uploads for every game

A save is a short header followed by a fixed number of chunks. Only the
header and the player name/type tables are decoded; the rest is kept as
opaque chunk bytes for comparing two saves.
"""

from .errors import GmrSyncError, SaveParseError
from .save_parser import Civ5Save, SaveCodec, parse_save

__all__ = [
    "GmrSyncError",
    "SaveParseError",
    "Civ5Save",
    "SaveCodec",
    "parse_save",
]
