"""Chunk scanning for Civilization V save files.

Everything after the header of a .Civ5Save file is a run of sections
separated by the 4-byte marker ``40 00 00 00``. The format is only partly
understood, so the scanner does not interpret the sections; it only cuts
the buffer at the markers so that the codec can seek to a known section
and so that two saves can be compared section by section.
"""

from dataclasses import dataclass

from .errors import ChunkBoundaryNotFound
from ..logging_config import get_logger

logger = get_logger("chunks")

CHUNK_BOUNDARY = b"\x40\x00\x00\x00"

# Observed in saves written by the current game build. Future save format
# revisions may use a different count, see Settings.chunk_count.
DEFAULT_CHUNK_COUNT = 31


@dataclass(frozen=True)
class Chunk:
    """A contiguous region of a save file closed by a boundary marker.

    ``offset`` is the byte position just past the closing marker, which is
    where the payload that the codec reads for this chunk index begins.
    """
    id: int
    offset: int
    size: int
    data: bytes

    @property
    def start(self) -> int:
        """Byte position of the first byte of ``data``."""
        return self.offset - len(CHUNK_BOUNDARY) - self.size

    def __repr__(self) -> str:
        return f"Chunk(id={self.id}, offset={self.offset}, size={self.size})"


def scan(data: bytes, expected_count: int = DEFAULT_CHUNK_COUNT) -> list[Chunk]:
    """Split a save buffer into chunks.

    Starting at position 0, the next marker is searched from one byte past
    the current chunk start, so a chunk always holds at least one byte. The
    marker itself belongs to no chunk.

    Args:
        data: The whole save file
        expected_count: Number of chunks the format version contains

    Returns:
        Exactly ``expected_count`` chunks in file order

    Raises:
        ChunkBoundaryNotFound: If the buffer ends before enough markers
        ValueError: If expected_count is not positive
    """
    if expected_count < 1:
        raise ValueError(f"expected_count must be positive, got {expected_count}")

    chunks: list[Chunk] = []
    position = 0
    while len(chunks) < expected_count:
        marker = data.find(CHUNK_BOUNDARY, position + 1)
        if marker == -1:
            raise ChunkBoundaryNotFound(offset=position, found=len(chunks), expected=expected_count)

        end = marker + len(CHUNK_BOUNDARY)
        chunk = Chunk(id=len(chunks), offset=end, size=marker - position, data=bytes(data[position:marker]))
        logger.debug("Found %r", chunk)
        chunks.append(chunk)
        position = end

    return chunks
