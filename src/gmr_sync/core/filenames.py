"""Save filename conventions.

The game names each new hotseat save after the leader whose turn is next,
the turn number and the in-game year, e.g.::

    Casimir III_0028 BC-2320.Civ5Save

Saves downloaded from the relay are named after the relay game instead,
with a "(civfun <id>)" prefix.
"""

import re
from typing import Optional

from .save_parser import SAVE_EXTENSION

TURN_FILENAME_PATTERN = re.compile(
    r"^(?P<leader>.+?)_(?P<turn>\d{4}) (?P<era>BC|AD)-(?P<year>\d+)\.Civ5Save$"
)

# Characters replaced in game names before they become part of a filename
_UNSAFE_CHARS = './\\"<>|:*?'


def turn_from_filename(filename: str) -> Optional[int]:
    """Get the turn number from a turn save filename.

    Args:
        filename: Bare filename, without directory

    Returns:
        The turn number, or None when the name is not a turn save
    """
    match = TURN_FILENAME_PATTERN.match(filename)
    if match is None:
        return None
    return int(match.group("turn"))


def download_filename(game_id: int, game_name: str) -> str:
    """Filename for the latest save of a game downloaded from the relay.

    Args:
        game_id: Relay game id
        game_name: Game name as shown by the relay

    Returns:
        Filename such as ``(civfun 123) My_Game.Civ5Save``
    """
    clean_name = "".join("_" if c in _UNSAFE_CHARS else c for c in game_name)
    return f"(civfun {game_id}) {clean_name}{SAVE_EXTENSION}"
