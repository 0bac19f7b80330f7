"""Watch the hotseat save directory for new turn files.

The observer thread only records filenames. Parsing, matching and uploads
happen later on the engine's timer, so a slow relay never makes the
watcher miss an event.
"""

import queue
from pathlib import Path
from typing import Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .save_parser import SAVE_EXTENSION
from ..logging_config import get_logger

logger = get_logger("watcher")


class SaveFileHandler(FileSystemEventHandler):
    """Queue the name of every save file written in (or moved into) the directory.

    The game creates the file before it has finished writing it, so
    modifications and closes are queued too. The engine waits for the file
    to settle before reading it.
    """

    def __init__(self, new_files: queue.Queue):
        super().__init__()
        self.new_files = new_files

    def on_created(self, event):
        if not event.is_directory:
            self._record(event.src_path)

    def on_modified(self, event):
        if not event.is_directory:
            self._record(event.src_path)

    def on_closed(self, event):
        if not event.is_directory:
            self._record(event.src_path)

    def on_moved(self, event):
        # The game writes to a temporary name on some platforms
        if not event.is_directory:
            self._record(event.dest_path)

    def _record(self, path) -> None:
        if isinstance(path, bytes):
            path = path.decode("utf-8", errors="replace")
        filename = Path(path).name
        if not filename.endswith(SAVE_EXTENSION):
            return
        logger.debug("Save file written: %s", filename)
        self.new_files.put(filename)


class SaveWatcher:
    """Run a watchdog observer over one save directory."""

    def __init__(self, save_dir: Path, new_files: queue.Queue):
        self.save_dir = save_dir
        self.new_files = new_files
        self.observer: Optional[Observer] = None

    @property
    def is_running(self) -> bool:
        return self.observer is not None and self.observer.is_alive()

    def start(self) -> None:
        """Start watching. Creates the save directory if needed."""
        if self.is_running:
            return
        self.save_dir.mkdir(parents=True, exist_ok=True)
        self.observer = Observer()
        self.observer.schedule(SaveFileHandler(self.new_files), str(self.save_dir), recursive=False)
        self.observer.daemon = True
        self.observer.start()
        logger.info("Watching %s", self.save_dir)

    def stop(self) -> None:
        if self.observer is None:
            return
        self.observer.stop()
        self.observer.join(timeout=5)
        self.observer = None
        logger.info("Stopped watching %s", self.save_dir)
