"""Exceptions raised by the save codec, turn matcher and transfers"""

from pathlib import Path
from typing import Optional


class GmrSyncError(Exception):
    """Base class for all GMR Sync errors"""
    pass


class SaveParseError(GmrSyncError):
    """A save file could not be decoded.

    Attributes:
        offset: Byte position the decoder was at, when known
        path: File the bytes came from, when known
    """

    def __init__(self, message: str, offset: Optional[int] = None, path: Optional[Path] = None):
        super().__init__(message)
        self.message = message
        self.offset = offset
        self.path = path

    def __str__(self) -> str:
        text = self.message
        if self.offset is not None:
            text = f"{text} (offset {self.offset})"
        if self.path is not None:
            text = f"{self.path}: {text}"
        return text


class MalformedHeader(SaveParseError):
    """Magic bytes missing or header fields cut short"""
    pass


class ChunkBoundaryNotFound(SaveParseError):
    """The buffer ended before all chunk markers were found"""

    def __init__(self, offset: int, found: int, expected: int):
        super().__init__(
            f"Chunk boundary not found after {found} of {expected} chunks",
            offset=offset,
        )
        self.found = found
        self.expected = expected


class UnexpectedChunkCount(SaveParseError):
    """A save holds a different number of chunks than the format version expects"""

    def __init__(self, count: int, expected: int):
        super().__init__(f"Expected {expected} chunks, got {count}")
        self.count = count
        self.expected = expected


class InvalidUtf8String(SaveParseError):
    """A length-prefixed string is not valid UTF-8"""
    pass


class UnknownPlayerType(SaveParseError):
    """A player type code outside 1-4"""

    def __init__(self, value: int, offset: Optional[int] = None):
        super().__init__(f"Unknown player type {value}", offset=offset)
        self.value = value


class TruncatedSave(SaveParseError):
    """A read ran past the end of the buffer after the header"""
    pass


class PlayerCountMismatch(SaveParseError):
    """Fewer player type codes than player names"""

    def __init__(self, names: int, types: int, offset: Optional[int] = None):
        super().__init__(f"{names} player names but {types} player types", offset=offset)
        self.names = names
        self.types = types


class TurnMatchError(GmrSyncError):
    """A new local save could not be tied to exactly one game"""
    pass


class TurnMatchNotFound(TurnMatchError):
    """No game is a plausible owner of the save"""
    pass


class TurnMatchAmbiguous(TurnMatchError):
    """More than one game scored equally well"""

    def __init__(self, game_ids):
        super().__init__(f"Save matches several games: {', '.join(str(g) for g in game_ids)}")
        self.game_ids = tuple(game_ids)


class TransferError(GmrSyncError):
    """A download or upload failed"""
    pass


class TransferIoError(TransferError):
    """Local file I/O failed during a transfer"""
    pass


class TransferNetworkError(TransferError):
    """The relay could not be reached or answered with an HTTP error"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UploadRejected(TransferError):
    """The relay answered a turn submission with a non-success result"""

    def __init__(self, result_type: Optional[int]):
        super().__init__(f"Upload rejected by relay (ResultType={result_type})")
        self.result_type = result_type


class PersistenceError(GmrSyncError):
    """Reading or writing the state store failed"""
    pass


class EngineNotReady(GmrSyncError):
    """An operation needs an authenticated user"""
    pass
