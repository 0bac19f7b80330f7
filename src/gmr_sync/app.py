"""Main application entry point and orchestrator"""

import os
import sys
import time

from .config.manager import ConfigurationManager
from .core.errors import GmrSyncError
from .core.game_detector import GameDetector
from .core.store import DirectoryStore
from .core.sync_engine import EngineEvent, SyncEngine
from .core.watcher import SaveWatcher
from .logging_config import setup_logging, get_logger
from . import __app_name__, __version__

logger = get_logger("app")

AUTH_KEY_ENV = "GMR_AUTH_KEY"


class GmrSyncApp:
    """Main application orchestrator.

    Handles initialization, authentication and the timer loop that drives
    the sync engine.
    """

    def __init__(self, config_manager: ConfigurationManager | None = None):
        self.config_manager = config_manager or ConfigurationManager()
        self.engine: SyncEngine | None = None
        self.watcher: SaveWatcher | None = None
        self._next_refresh: float | None = None
        self._refresh_failures = 0

    def setup(self):
        """Load settings and state, and start watching the save directory."""
        settings = self.config_manager.load()
        save_dir = GameDetector().detect_save_dir(settings.save_dir)
        logger.info(f"Save directory: {save_dir.path}")

        self.engine = SyncEngine(DirectoryStore(), save_dir.path, settings)
        self.engine.load()

        auth_key = os.environ.get(AUTH_KEY_ENV)
        if auth_key:
            logger.info(f"Using auth key from {AUTH_KEY_ENV}")
            self.engine.authenticate(auth_key)
        elif self.engine.auth_ready():
            self.engine.authenticate()
        else:
            logger.warning(f"No auth key stored, set {AUTH_KEY_ENV} to sign in")

        self.watcher = SaveWatcher(save_dir.path, self.engine.new_files)
        self.watcher.start()

    def tick(self, now: float):
        """Run one pass of the timer loop."""
        engine = self.engine
        event = engine.process()
        if event == EngineEvent.AUTHENTICATION_SUCCESS:
            # Pick up the games of the user right away
            self._next_refresh = None
        elif event == EngineEvent.AUTHENTICATION_FAILURE:
            logger.error("The relay did not accept the auth key")

        if engine.all_ready() and (self._next_refresh is None or now >= self._next_refresh):
            self._refresh(now)

        engine.process_new_saves()
        engine.process_transfers()

    def _refresh(self, now: float):
        interval = self.config_manager.settings.refresh_interval
        try:
            self.engine.refresh()
        except GmrSyncError as e:
            self._refresh_failures += 1
            delay = min(self.engine.retry.delay_for(self._refresh_failures), interval)
            logger.error(f"Refreshing games failed, retrying in {delay:.0f}s: {e}")
            self._next_refresh = now + delay
            return
        self._refresh_failures = 0
        self._next_refresh = now + interval

    def run(self):
        """Run the application until interrupted."""
        self.setup()
        interval = self.config_manager.settings.transfer_interval
        try:
            while True:
                try:
                    self.tick(time.monotonic())
                except GmrSyncError as e:
                    logger.error(f"Sync tick failed: {e}")
                time.sleep(interval)
        finally:
            if self.watcher is not None:
                self.watcher.stop()


def main():
    """Application entry point."""
    # Initialize logging first
    logger = setup_logging(debug="--debug" in sys.argv)
    logger.info(f"Starting {__app_name__} v{__version__}")

    try:
        app = GmrSyncApp()
        app.run()
    except KeyboardInterrupt:
        pass
    except Exception:
        logger.exception("Fatal error")
        sys.exit(1)
    finally:
        logger.info(f"{__app_name__} shutting down")


if __name__ == "__main__":
    main()
