"""Parser for Civilization V save game files.

Save files (``*.Civ5Save``) are little-endian throughout:

- Offset 0: magic ``CIV5``
- Header: save version (u32), game name, build, turn (u32), one reserved
  byte, starting civ, handicap, era, current era, game speed, world size,
  map script. Strings are a u32 byte length followed by UTF-8 bytes.
- The rest of the file: a fixed number of chunks separated by the
  ``40 00 00 00`` marker (see ``chunks``).
- Chunk 1: player names, terminated by an empty string
- Chunk 2: one u32 player type per player, in the same order

Only the fields the sync engine needs are decoded. Two saves are compared
with ``Civ5Save.difference_score``, a byte count over the chunk contents.
"""

import struct
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path

from .chunks import CHUNK_BOUNDARY, DEFAULT_CHUNK_COUNT, Chunk, scan
from .errors import (
    InvalidUtf8String,
    MalformedHeader,
    PlayerCountMismatch,
    SaveParseError,
    TruncatedSave,
    UnexpectedChunkCount,
    UnknownPlayerType,
)
from ..logging_config import get_logger

logger = get_logger("save_parser")

MAGIC = b"CIV5"
SAVE_EXTENSION = ".Civ5Save"

# Chunk indexes holding the player table
PLAYER_NAMES_CHUNK = 1
PLAYER_TYPES_CHUNK = 2


class PlayerType(IntEnum):
    """Player slot type codes"""
    AI = 1
    DEAD = 2
    HUMAN = 3
    NONE = 4


@dataclass(frozen=True)
class Header:
    """Fixed header at the start of every save."""
    save: int
    game: str
    build: str
    turn: int
    starting_civ: str
    handicap: str
    era: str
    current_era: str
    game_speed: str
    world_size: str
    map_script: str


@dataclass(frozen=True)
class Player:
    name: str
    player_type: PlayerType


@dataclass(frozen=True)
class Civ5Save:
    """A decoded save: header, player table and raw chunks."""
    header: Header
    players: tuple[Player, ...]
    chunks: tuple[Chunk, ...]

    @property
    def turn(self) -> int:
        return self.header.turn

    def difference_score(self, other: "Civ5Save") -> int:
        """Count differing bytes between this save's chunks and another's.

        For every chunk index, every byte of this save's chunk adds one to
        the score when the other chunk is shorter at that position or holds
        a different byte. Bytes beyond this save's chunk length are never
        looked at, so ``a.difference_score(b)`` and ``b.difference_score(a)``
        can differ. A save compared with an identical copy scores 0.

        Args:
            other: The save to compare against

        Returns:
            Number of differing byte positions

        Raises:
            UnexpectedChunkCount: If the saves have different chunk counts
        """
        if len(other.chunks) != len(self.chunks):
            raise UnexpectedChunkCount(len(other.chunks), len(self.chunks))

        diff = 0
        for chunk, other_chunk in zip(self.chunks, other.chunks):
            mine = chunk.data
            theirs = other_chunk.data
            overlap = min(len(mine), len(theirs))
            diff += len(mine) - overlap
            diff += sum(1 for a, b in zip(mine[:overlap], theirs[:overlap]) if a != b)
        return diff


class _Reader:
    """Cursor over a save buffer that raises format errors instead of struct errors."""

    def __init__(self, data: bytes, short_read_error: type[SaveParseError]):
        self.data = data
        self.position = 0
        self.short_read_error = short_read_error

    def exact(self, size: int) -> bytes:
        end = self.position + size
        if end > len(self.data):
            raise self.short_read_error(
                f"Wanted {size} bytes, buffer ends first", offset=self.position
            )
        chunk = self.data[self.position:end]
        self.position = end
        return chunk

    def u32(self) -> int:
        return struct.unpack("<I", self.exact(4))[0]

    def string(self) -> str:
        start = self.position
        size = self.u32()
        raw = self.exact(size)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidUtf8String(f"Invalid UTF-8 string: {e.reason}", offset=start) from e

    def strings(self) -> list[str]:
        """Read strings until an empty one."""
        values = []
        while True:
            value = self.string()
            if not value:
                return values
            values.append(value)

    def seek(self, position: int) -> None:
        self.position = position


class SaveCodec:
    """Decoder for .Civ5Save buffers.

    The number of chunks is a property of the save format version, so it
    is a constructor argument rather than a constant.
    """

    def __init__(self, chunk_count: int = DEFAULT_CHUNK_COUNT):
        if chunk_count <= PLAYER_TYPES_CHUNK:
            raise ValueError(f"chunk_count must be greater than {PLAYER_TYPES_CHUNK}")
        self.chunk_count = chunk_count

    def parse(self, data: bytes) -> Civ5Save:
        """Parse a whole save buffer.

        Args:
            data: Raw bytes of a .Civ5Save file

        Returns:
            The decoded save

        Raises:
            SaveParseError: Any of its subclasses, describing what was wrong
        """
        if data[:len(MAGIC)] != MAGIC:
            raise MalformedHeader("Bad magic, not a Civ5 save", offset=0)

        reader = _Reader(data, MalformedHeader)
        reader.seek(len(MAGIC))
        header = self._header(reader)
        logger.debug("Header: %s", header)

        chunks = scan(data, self.chunk_count)
        if len(chunks) != self.chunk_count:
            raise UnexpectedChunkCount(len(chunks), self.chunk_count)

        reader.short_read_error = TruncatedSave
        reader.seek(chunks[PLAYER_NAMES_CHUNK].offset)
        names = reader.strings()
        logger.debug("Player names: %s", names)

        reader.seek(chunks[PLAYER_TYPES_CHUNK].offset)
        types = self._player_types(reader, len(names), self._section_end(chunks, PLAYER_TYPES_CHUNK, data))
        logger.debug("Player types: %s", types)

        players = tuple(Player(name=name, player_type=t) for name, t in zip(names, types))
        return Civ5Save(header=header, players=players, chunks=tuple(chunks))

    def parse_file(self, file_path: Path) -> Civ5Save:
        """Read and parse a save file.

        Args:
            file_path: Path to a .Civ5Save file

        Returns:
            The decoded save

        Raises:
            SaveParseError: With ``path`` set to file_path
            OSError: If the file cannot be read
        """
        data = Path(file_path).read_bytes()
        try:
            return self.parse(data)
        except SaveParseError as e:
            e.path = Path(file_path)
            raise

    @staticmethod
    def _header(reader: _Reader) -> Header:
        save = reader.u32()
        game = reader.string()
        build = reader.string()
        turn = reader.u32()
        reader.exact(1)  # Reserved
        return Header(
            save=save,
            game=game,
            build=build,
            turn=turn,
            starting_civ=reader.string(),
            handicap=reader.string(),
            era=reader.string(),
            current_era=reader.string(),
            game_speed=reader.string(),
            world_size=reader.string(),
            map_script=reader.string(),
        )

    @staticmethod
    def _section_end(chunks: list[Chunk], index: int, data: bytes) -> int:
        """Position of the marker that closes the payload read for a chunk index."""
        if index + 1 < len(chunks):
            return chunks[index + 1].offset - len(CHUNK_BOUNDARY)
        return len(data)

    @staticmethod
    def _player_types(reader: _Reader, count: int, limit: int) -> list[PlayerType]:
        types = []
        for _ in range(count):
            if reader.position + 4 > limit:
                raise PlayerCountMismatch(count, len(types), offset=reader.position)
            offset = reader.position
            value = reader.u32()
            try:
                types.append(PlayerType(value))
            except ValueError:
                raise UnknownPlayerType(value, offset=offset) from None
        return types


def parse_save(data: bytes, chunk_count: int = DEFAULT_CHUNK_COUNT) -> Civ5Save:
    """Quick helper to parse a save buffer with a one-off codec.

    Args:
        data: Raw bytes of a .Civ5Save file
        chunk_count: Number of chunks the format version contains

    Returns:
        The decoded save
    """
    return SaveCodec(chunk_count).parse(data)
