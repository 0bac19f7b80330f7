"""Per-game transfer states, progress messages and background transfer tasks.

Every download or upload runs on its own daemon thread and reports back
through a ``ProgressChannel``: ``Started``, any number of
``ChunkReceived``, then exactly one of ``Done`` or ``TransferFailed``. The
sync engine polls the channels on its timer and never waits on them.
"""

import queue
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Optional

from ..logging_config import get_logger

logger = get_logger("transfer")

DEFAULT_CHANNEL_SIZE = 64


class TransferState(Enum):
    """Where a game is in the download / upload cycle"""
    IDLE = "idle"
    DOWNLOADING = "downloading"
    DOWNLOADED = "downloaded"
    UPLOAD_QUEUED = "upload_queued"
    UPLOADING = "uploading"
    UPLOAD_COMPLETE = "upload_complete"
    FAILED = "failed"


@dataclass(frozen=True)
class Started:
    total_size: Optional[int] = None


@dataclass(frozen=True)
class ChunkReceived:
    percentage: Optional[float] = None


@dataclass(frozen=True)
class Done:
    """Terminal success. ``result`` is the saved path for downloads and the
    points earned for uploads."""
    result: Any = None


@dataclass(frozen=True)
class TransferFailed:
    message: str


class ProgressChannel:
    """Bounded, ordered channel from one transfer task to the engine.

    ``ChunkReceived`` messages only feed logging, so they are dropped when
    the channel is full instead of holding up the transfer. Every other
    message waits for room until the receiver closes the channel.
    """

    def __init__(self, maxsize: int = DEFAULT_CHANNEL_SIZE):
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def send(self, message) -> bool:
        """Send a message.

        Returns:
            True if the message was queued, False if dropped or closed
        """
        if isinstance(message, ChunkReceived):
            try:
                self._queue.put_nowait(message)
                return True
            except queue.Full:
                return False

        while not self.closed:
            try:
                self._queue.put(message, timeout=0.25)
                return True
            except queue.Full:
                continue
        return False

    def drain(self) -> list:
        """Take every message available right now, without blocking."""
        messages = []
        while True:
            try:
                messages.append(self._queue.get_nowait())
            except queue.Empty:
                return messages

    def close(self) -> None:
        """Stop accepting messages. Pending senders give up."""
        self._closed.set()


class TransferTask(threading.Thread):
    """Run a transfer function on a daemon thread.

    The function is called as ``func(channel, stop_request, *args)`` and
    must send its own ``Started``/``ChunkReceived``/``Done`` messages. An
    exception escaping it is reported as ``TransferFailed``.
    """

    def __init__(self, func: Callable, *args, channel: Optional[ProgressChannel] = None, name: str = ""):
        super().__init__(name=name or f"transfer-{func.__name__}", daemon=True)
        self.function = func
        self.args = args
        self.channel = channel or ProgressChannel()
        self.stop_request = threading.Event()

    def run(self):
        try:
            self.function(self.channel, self.stop_request, *self.args)
        except Exception as ex:  # Reported through the channel
            logger.error("Error while running %s: %s %s", self.name, type(ex).__name__, ex)
            self.channel.send(TransferFailed(str(ex)))

    def cancel(self) -> None:
        """Ask the transfer to stop and stop listening to it."""
        self.stop_request.set()
        self.channel.close()


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff."""
    max_attempts: int = 3
    base_delay: float = 5.0
    max_delay: float = 300.0

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before retrying after the given failed attempt (1-based)."""
        return min(self.base_delay * (2 ** max(attempt - 1, 0)), self.max_delay)

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts


@dataclass(frozen=True)
class GameTransfer:
    """Transfer record of one game.

    ``task`` is set exactly while the game is DOWNLOADING or UPLOADING.
    ``turn_id`` is the relay turn the record refers to; a record for an
    older turn is discarded by the engine.
    """
    state: TransferState = TransferState.IDLE
    turn_id: Optional[int] = None
    task: Optional[TransferTask] = None
    attempts: int = 0
    next_attempt_at: float = 0.0
    last_error: Optional[str] = None

    def __post_init__(self):
        busy = self.state in (TransferState.DOWNLOADING, TransferState.UPLOADING)
        if busy != (self.task is not None):
            raise ValueError(f"{self.state.name} transfer {'needs' if busy else 'cannot have'} a task")

    def moved(self, state: TransferState, **changes) -> "GameTransfer":
        """Copy of this record in another state. Leaving a busy state drops the task."""
        changes.setdefault("task", None)
        return replace(self, state=state, **changes)

    def ready(self, now: float) -> bool:
        """Whether a retry delay, if any, has passed."""
        return now >= self.next_attempt_at
