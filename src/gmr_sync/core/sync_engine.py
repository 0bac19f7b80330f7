"""Sync engine: owns every game's transfer state and drives it on a timer.

The application calls, on its own thread:

- ``process()`` to pick up the answer of a pending authentication, or
  to retry one that could not reach the relay
- ``process_new_saves()`` to handle files the watcher queued
- ``process_transfers()`` about once a second
- ``refresh()`` about once a minute

All shared state sits behind one lock. The lock is only held to copy or
replace in-memory values; file, store and network I/O always happen
between a snapshot and a commit, never inside the lock. A commit is
dropped if the game's record changed in the meantime.
"""

import base64
import queue
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from .errors import (
    EngineNotReady,
    GmrSyncError,
    PersistenceError,
    SaveParseError,
    TransferNetworkError,
)
from .filenames import download_filename, turn_from_filename
from .save_parser import Civ5Save, SaveCodec
from .store import (
    CONFIG_KEY,
    GAMES_KEY,
    DirectoryStore,
    player_info_key,
    saved_bytes_key,
    upload_bytes_key,
)
from .transfer import (
    ChunkReceived,
    Done,
    GameTransfer,
    RetryPolicy,
    Started,
    TransferFailed,
    TransferState,
    TransferTask,
)
from .turn_matcher import MatchCandidate, MatchResult, TurnMatcher
from ..api.client import GmrClient
from ..api.models import Game, GameId, GamesAndPlayers, RemotePlayer, TurnId, UserId
from ..config.schema import AuthState, Settings, SyncConfig
from ..config.security import decrypt_secret, encrypt_secret
from ..logging_config import get_logger

logger = get_logger("sync_engine")


class EngineEvent(Enum):
    """Notable outcomes reported by ``SyncEngine.process``"""
    AUTHENTICATION_SUCCESS = "authentication_success"
    AUTHENTICATION_FAILURE = "authentication_failure"


@dataclass(frozen=True)
class GameInfo:
    """Snapshot of a game for display"""
    game: Game
    state: TransferState
    parsed: Optional[Civ5Save] = None


@dataclass(frozen=True)
class MatchAnomaly:
    """A local save that could not be tied to exactly one game"""
    filename: str
    result: MatchResult


class SyncEngine:
    """Aggregate owning the games list, transfer records and analyzed saves.

    Args:
        store: Persistence for credential, games list and save bytes
        save_dir: Hotseat directory to download into and read turns from
        settings: Timeouts, retry policy and save format parameters
        client_factory: Builds a relay client from an auth key
        clock: Monotonic time source used for retry scheduling
    """

    def __init__(
        self,
        store: DirectoryStore,
        save_dir: Path,
        settings: Optional[Settings] = None,
        client_factory: Optional[Callable[[str], GmrClient]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.save_dir = save_dir
        self.settings = settings or Settings()
        self.client_factory = client_factory or self._default_client
        self.clock = clock
        self.codec = SaveCodec(self.settings.chunk_count)
        self.matcher = TurnMatcher()
        self.retry = RetryPolicy(
            max_attempts=self.settings.max_attempts,
            base_delay=self.settings.retry_base_delay,
            max_delay=self.settings.retry_max_delay,
        )

        self._lock = threading.RLock()
        self.config = SyncConfig()
        self._games = GamesAndPlayers()
        self._transfers: dict[GameId, GameTransfer] = {}
        self._analyzed: dict[tuple[GameId, TurnId], Civ5Save] = {}
        self._anomalies: list[MatchAnomaly] = []
        self._auth_result: Optional[queue.Queue] = None
        self._auth_failures = 0
        self._auth_retry_at: Optional[float] = None

        # Filled by the save watcher, drained by process_new_saves
        self.new_files: queue.Queue = queue.Queue()
        # Reported files waiting to settle, with the last seen (size, mtime)
        self._pending_saves: dict[str, Optional[tuple[int, int]]] = {}
        self._handled_saves: dict[str, tuple[int, int]] = {}

    def _default_client(self, auth_key: str) -> GmrClient:
        return GmrClient(auth_key, base_url=self.settings.api_base_url, timeout=self.settings.timeout)

    def _client(self):
        with self._lock:
            auth_key = self.config.auth_key
        if not auth_key:
            raise EngineNotReady("Attempt to access the relay without an auth key")
        return self.client_factory(auth_key)

    # Loading and persistence

    def load(self) -> None:
        """Load the stored credential and games list.

        Games whose current turn was already downloaded are marked
        DOWNLOADED and their save analyzed again.
        """
        raw_config = self.store.get_json(CONFIG_KEY)
        config = SyncConfig.from_json(raw_config, decrypt_secret) if raw_config else SyncConfig()
        raw_games = self.store.get_json(GAMES_KEY)
        games = GamesAndPlayers.from_json(raw_games) if raw_games else GamesAndPlayers()

        downloaded: dict[GameId, tuple[TurnId, Civ5Save]] = {}
        for game in games.games:
            game_id = game.game_id
            turn_id = game.current_turn.turn_id
            data = self.store.get(saved_bytes_key(game_id, turn_id))
            if data is None:
                continue
            try:
                downloaded[game_id] = (turn_id, self.codec.parse(data))
            except SaveParseError as e:
                logger.error("Stored save of game %s turn %s does not parse: %s", game_id, turn_id, e)
                continue
            logger.debug("Marking game %s as already downloaded", game_id)

        with self._lock:
            self.config = config
            self._games = games
            for game_id, (turn_id, parsed) in downloaded.items():
                self._transfers[game_id] = GameTransfer(TransferState.DOWNLOADED, turn_id=turn_id)
                self._analyzed[(game_id, turn_id)] = parsed
        logger.info("Loaded %d games, %d already downloaded", len(games.games), len(downloaded))

    def save_config(self) -> None:
        with self._lock:
            encoded = self.config.to_json(encrypt_secret)
        self.store.put_json(CONFIG_KEY, encoded)

    def set_auth_key(self, key: str) -> None:
        """Store a new auth key. The user is unknown until authenticated again."""
        with self._lock:
            self.config.auth_key = key.strip() or None
            self.config.auth_state = AuthState.NOTHING
            self.config.user_id = None
        self.save_config()

    def clear_games(self) -> None:
        self.store.remove(GAMES_KEY)
        with self._lock:
            self._games = GamesAndPlayers()

    # Authentication

    def authenticate(self, key: Optional[str] = None) -> None:
        """Start resolving the auth key to a user id in the background.

        The answer is picked up by ``process``.
        """
        if key is not None:
            self.set_auth_key(key)
            self._auth_failures = 0
        client = self._client()
        result: queue.Queue = queue.Queue(maxsize=1)

        def run():
            try:
                result.put(("ok", client.authenticate_user()))
            except TransferNetworkError as e:
                result.put(("error", str(e)))

        with self._lock:
            self.config.auth_state = AuthState.FETCHING
            self._auth_result = result
            self._auth_retry_at = None
        threading.Thread(target=run, name="authenticate", daemon=True).start()
        logger.debug("Authentication requested")

    def process(self, now: Optional[float] = None) -> Optional[EngineEvent]:
        """Poll the pending authentication, if any, without blocking.

        An authentication that failed to reach the relay is started again
        once its retry delay has passed.
        """
        now = self.clock() if now is None else now
        with self._lock:
            pending = self._auth_result
            retry_at = self._auth_retry_at
        if pending is None:
            if retry_at is not None and now >= retry_at and self.auth_ready():
                logger.info("Retrying authentication")
                self.authenticate()
            return None
        try:
            outcome, value = pending.get_nowait()
        except queue.Empty:
            return None

        with self._lock:
            self._auth_result = None
        if outcome == "error":
            self._auth_failures += 1
            delay = self.retry.delay_for(self._auth_failures)
            logger.warning("Authentication request failed, retrying in %.0fs: %s", delay, value)
            with self._lock:
                self.config.auth_state = AuthState.NOTHING
                self._auth_retry_at = now + delay
            return None
        self._auth_failures = 0
        return self._handle_auth_response(value)

    def _handle_auth_response(self, user_id: Optional[UserId]) -> EngineEvent:
        clear = False
        with self._lock:
            self.config.auth_state = AuthState.RESULT
            self.config.user_id = user_id
            if user_id is not None:
                if self.config.expected_user_id != user_id:
                    # The user_id has changed so the stored games belong to someone else
                    logger.info("Clearing games because the user changed")
                    clear = True
                self.config.expected_user_id = user_id

        if clear:
            self.clear_games()
        self.save_config()
        if user_id is None:
            logger.warning("Failed to authenticate")
            return EngineEvent.AUTHENTICATION_FAILURE
        logger.info("Authenticated as user %s", user_id)
        return EngineEvent.AUTHENTICATION_SUCCESS

    def auth_ready(self) -> bool:
        """An auth key is known."""
        with self._lock:
            return self.config.auth_key is not None

    def user_ready(self) -> bool:
        """The auth key has been resolved to a user."""
        return self.user_id is not None

    def all_ready(self) -> bool:
        return self.auth_ready() and self.user_ready()

    @property
    def user_id(self) -> Optional[UserId]:
        with self._lock:
            if self.config.auth_state == AuthState.RESULT:
                return self.config.user_id
            return None

    # Remote games

    def refresh(self) -> None:
        """Fetch the games list from the relay.

        Games that disappeared have their running transfer cancelled.
        Profiles of players not seen before are fetched in the background.
        """
        client = self._client()
        games = client.get_games_and_players([])
        self.store.put_json(GAMES_KEY, games.to_json())

        live = {g.game_id for g in games.games}
        with self._lock:
            self._games = games
            for game_id, record in list(self._transfers.items()):
                if game_id in live:
                    continue
                if record.task is not None:
                    logger.info("Game %s is gone, cancelling its %s", game_id, record.state.name)
                    record.task.cancel()
                self._transfers[game_id] = GameTransfer(TransferState.IDLE)
        logger.debug("Refreshed %d games", len(games.games))

        unknown = [u for u in games.user_ids() if not self.store.contains(player_info_key(u))]
        if unknown:
            data = client.get_games_and_players(unknown)
            for player in data.players:
                threading.Thread(
                    target=self._fetch_player_info,
                    args=(client, player),
                    name=f"player-{player.steam_id}",
                    daemon=True,
                ).start()

    def _fetch_player_info(self, client, player: RemotePlayer) -> None:
        try:
            image_data = client.fetch_avatar(player.avatar_url) if player.avatar_url else b""
            self.store.put_json(player_info_key(player.steam_id), {
                "player": player.to_json(),
                "image_data": base64.b64encode(image_data).decode("ascii"),
                "last_downloaded": datetime.now().isoformat(),
            })
        except GmrSyncError as e:
            logger.warning("Could not fetch player %s: %s", player.steam_id, e)

    def player_info(self, user_id: UserId) -> Optional[tuple[RemotePlayer, bytes]]:
        """Stored profile and avatar image of a player, if fetched."""
        stored = self.store.get_json(player_info_key(user_id))
        if stored is None:
            return None
        return RemotePlayer.from_json(stored["player"]), base64.b64decode(stored.get("image_data", ""))

    def games(self) -> list[GameInfo]:
        with self._lock:
            return [self._info(game) for game in self._games.games]

    def my_games(self) -> list[GameInfo]:
        """Games where the relay is waiting on the user.

        Raises:
            EngineNotReady: If the user is not known yet
        """
        user_id = self.user_id
        if user_id is None:
            raise EngineNotReady("my_games requested without a valid auth state")
        with self._lock:
            return [self._info(game) for game in self._games.games if game.is_user_id_turn(user_id)]

    def _info(self, game: Game) -> GameInfo:
        record = self._transfers.get(game.game_id)
        state = record.state if record is not None else TransferState.IDLE
        return GameInfo(
            game=game,
            state=state,
            parsed=self._analyzed.get((game.game_id, game.current_turn.turn_id)),
        )

    def status(self) -> dict[GameId, TransferState]:
        with self._lock:
            return {game_id: record.state for game_id, record in self._transfers.items()}

    def transfer(self, game_id: GameId) -> GameTransfer:
        with self._lock:
            return self._transfers.get(game_id, GameTransfer())

    def analyzed_save(self, game_id: GameId, turn_id: TurnId) -> Optional[Civ5Save]:
        with self._lock:
            return self._analyzed.get((game_id, turn_id))

    @property
    def anomalies(self) -> list[MatchAnomaly]:
        with self._lock:
            return list(self._anomalies)

    def reset(self, game_id: GameId) -> None:
        """Put a game back to IDLE, cancelling any running transfer."""
        with self._lock:
            record = self._transfers.get(game_id)
            if record is not None and record.task is not None:
                record.task.cancel()
            turn_id = record.turn_id if record is not None else None
            self._transfers[game_id] = GameTransfer(TransferState.IDLE, turn_id=turn_id)

    # Transfer state machine

    def _record_for(self, game: Game) -> GameTransfer:
        """Current record of a game, created or restarted for its current turn."""
        turn_id = game.current_turn.turn_id
        with self._lock:
            record = self._transfers.get(game.game_id)
            if record is not None and record.turn_id not in (None, turn_id):
                logger.info("Game %s moved to turn %s, starting over", game.game_id, turn_id)
                if record.task is not None:
                    record.task.cancel()
                record = None
            if record is None or record.turn_id is None:
                state = record.state if record is not None else TransferState.IDLE
                task = record.task if record is not None else None
                record = GameTransfer(state, turn_id=turn_id, task=task)
                self._transfers[game.game_id] = record
            return record

    def _commit(self, game_id: GameId, expected: GameTransfer, new: GameTransfer) -> bool:
        with self._lock:
            if self._transfers.get(game_id) is not expected:
                logger.debug("Game %s changed underneath, dropping %s", game_id, new.state.name)
                if new.task is not None and new.task is not expected.task:
                    new.task.cancel()
                return False
            self._transfers[game_id] = new
            return True

    def process_transfers(self, now: Optional[float] = None) -> None:
        """Advance every game waiting on the user by one tick."""
        if not self.user_ready():
            return
        now = self.clock() if now is None else now

        for info in self.my_games():
            game = info.game
            record = self._record_for(game)
            logger.debug("Game %s: %s", game.game_id, record.state.name)
            try:
                if record.state == TransferState.IDLE and record.ready(now):
                    self._process_idle(game, record)
                elif record.state == TransferState.DOWNLOADING:
                    self._process_downloading(game, record, now)
                elif record.state == TransferState.UPLOAD_QUEUED and record.ready(now):
                    self._process_upload_queued(game, record, now)
                elif record.state == TransferState.UPLOADING:
                    self._process_uploading(game, record, now)
            except GmrSyncError as e:
                logger.error("Game %s: %s failed: %s", game.game_id, record.state.name, e)

    def _start(self, game_id: GameId, record: GameTransfer, state: TransferState, func, *args) -> bool:
        task = TransferTask(func, *args, name=f"{state.value}-{game_id}")
        if not self._commit(game_id, record, record.moved(state, task=task)):
            return False
        task.start()
        return True

    def _process_idle(self, game: Game, record: GameTransfer) -> None:
        if game.current_turn.is_first_turn:
            # No save exists before the first turn
            logger.info("Game %s is on its first turn, nothing to download", game.game_id)
            self._commit(game.game_id, record, record.moved(TransferState.DOWNLOADED))
            return

        path = self.save_dir / download_filename(game.game_id, game.name)
        logger.info("Downloading game %s to %s", game.game_id, path)
        client = self._client()
        self._start(game.game_id, record, TransferState.DOWNLOADING, client.fetch_latest_save, game.game_id, path)

    def _process_downloading(self, game: Game, record: GameTransfer, now: float) -> None:
        for message in record.task.channel.drain():
            if isinstance(message, Started):
                logger.debug("Game %s: download started, size %s", game.game_id, message.total_size)
            elif isinstance(message, ChunkReceived):
                logger.debug("Game %s: download progress %s", game.game_id, message.percentage)
            elif isinstance(message, TransferFailed):
                self._transfer_failed(game, record, message.message, TransferState.IDLE, now)
                return
            elif isinstance(message, Done):
                self._store_download(game, record, Path(message.result), now)
                return

    def _store_download(self, game: Game, record: GameTransfer, path: Path, now: float) -> None:
        game_id = game.game_id
        turn_id = game.current_turn.turn_id
        try:
            data = path.read_bytes()
            # Kept in the store in case the player deletes the file, and to
            # compare against when the turn comes back
            self.store.put(saved_bytes_key(game_id, turn_id), data)
        except (OSError, PersistenceError) as e:
            self._transfer_failed(game, record, f"Could not keep downloaded save: {e}", TransferState.IDLE, now)
            return

        try:
            parsed = self.codec.parse(data)
        except SaveParseError as e:
            e.path = path
            logger.error("Downloaded save of game %s does not parse: %s", game_id, e)
            self._transfer_failed(game, record, str(e), TransferState.IDLE, now)
            return

        with self._lock:
            if self._commit(game_id, record, record.moved(
                TransferState.DOWNLOADED, attempts=0, next_attempt_at=0.0, last_error=None
            )):
                self._analyzed[(game_id, turn_id)] = parsed
        logger.info("Game %s turn %s downloaded (save turn %s)", game_id, turn_id, parsed.header.turn)

    def _process_upload_queued(self, game: Game, record: GameTransfer, now: float) -> None:
        data = self.store.get(upload_bytes_key(game.game_id))
        if data is None:
            logger.error("Game %s is queued for upload but no save is stored", game.game_id)
            self._commit(game.game_id, record, record.moved(
                TransferState.FAILED, last_error="No save stored for upload"
            ))
            return

        logger.info("Uploading game %s turn %s", game.game_id, game.current_turn.turn_id)
        client = self._client()
        self._start(game.game_id, record, TransferState.UPLOADING, client.submit_turn,
                    game.current_turn.turn_id, data)

    def _process_uploading(self, game: Game, record: GameTransfer, now: float) -> None:
        for message in record.task.channel.drain():
            if isinstance(message, TransferFailed):
                self._transfer_failed(game, record, message.message, TransferState.UPLOAD_QUEUED, now)
                return
            if isinstance(message, Done):
                if self._commit(game.game_id, record, record.moved(
                    TransferState.UPLOAD_COMPLETE, attempts=0, next_attempt_at=0.0, last_error=None
                )):
                    self.store.remove(upload_bytes_key(game.game_id))
                logger.info("Game %s turn uploaded, %s points", game.game_id, message.result)
                return

    def _transfer_failed(
        self, game: Game, record: GameTransfer, message: str, retry_state: TransferState, now: float
    ) -> None:
        attempts = record.attempts + 1
        if self.retry.should_retry(attempts):
            delay = self.retry.delay_for(attempts)
            logger.warning(
                "Game %s: %s failed (attempt %d of %d), retrying in %.0fs: %s",
                game.game_id, record.state.name, attempts, self.retry.max_attempts, delay, message,
            )
            new = record.moved(retry_state, attempts=attempts, next_attempt_at=now + delay, last_error=message)
        else:
            logger.error("Game %s: %s failed, giving up: %s", game.game_id, record.state.name, message)
            new = record.moved(TransferState.FAILED, attempts=attempts, last_error=message)
        self._commit(game.game_id, record, new)

    # New local saves

    def process_new_saves(self) -> int:
        """Handle the turn files the watcher reported once they stop changing.

        A file is read only when its size and modification time are the
        same on two consecutive calls, so a save the game is still writing
        waits for the next call. Nothing is read until the user is known;
        reported files stay queued until then.

        Returns:
            Number of files queued for upload
        """
        if not self.user_ready():
            return 0

        while True:
            try:
                filename = self.new_files.get_nowait()
            except queue.Empty:
                break
            if turn_from_filename(filename) is None:
                logger.debug("Ignoring %s, not a turn save", filename)
                continue
            self._pending_saves.setdefault(filename, None)

        queued = 0
        for filename, seen in list(self._pending_saves.items()):
            try:
                stat = (self.save_dir / filename).stat()
            except OSError:
                logger.debug("%s is gone", filename)
                del self._pending_saves[filename]
                continue
            signature = (stat.st_size, stat.st_mtime_ns)
            if self._handled_saves.get(filename) == signature:
                del self._pending_saves[filename]
                continue
            if seen != signature:
                # Still being written, or first seen on this call
                self._pending_saves[filename] = signature
                continue

            try:
                if self.handle_save(filename):
                    queued += 1
            except EngineNotReady:
                # Signed out in the meantime, try again once the user is known
                break
            except GmrSyncError as e:
                logger.error("Could not handle %s: %s", filename, e)
            del self._pending_saves[filename]
            self._handled_saves[filename] = signature
        return queued

    def handle_save(self, filename: str) -> bool:
        """Queue a new turn file for upload if it belongs to exactly one game.

        Example filename: Casimir III_0028 BC-2320.Civ5Save

        Args:
            filename: Name of a file in the save directory

        Returns:
            True if the file was queued for upload
        """
        turn = turn_from_filename(filename)
        if turn is None:
            logger.debug("Ignoring %s, not a turn save", filename)
            return False

        path = self.save_dir / filename
        try:
            data = path.read_bytes()
        except OSError as e:
            logger.warning("Could not read %s: %s", path, e)
            return False
        try:
            new_save = self.codec.parse(data)
        except SaveParseError as e:
            e.path = path
            logger.error("New save does not parse: %s", e)
            return False
        if new_save.header.turn != turn:
            logger.debug("%s: filename turn %s, header turn %s", filename, turn, new_save.header.turn)

        with self._lock:
            candidates = [MatchCandidate(info.game, info.parsed) for info in self.my_games()]
        result = self.matcher.match(new_save, candidates)
        if result.is_empty or result.is_ambiguous:
            logger.warning("%s: no single game matches (%s)", filename, result.game_ids or "none")
            with self._lock:
                self._anomalies.append(MatchAnomaly(filename, result))
            return False

        game_id = result.game_id
        game = next(c.game for c in candidates if c.game_id == game_id)
        turn_id = game.current_turn.turn_id
        self.store.put(upload_bytes_key(game_id), data)

        with self._lock:
            record = self._record_for(game)
            if record.task is not None:
                record.task.cancel()
            self._transfers[game_id] = record.moved(
                TransferState.UPLOAD_QUEUED, attempts=0, next_attempt_at=0.0, last_error=None
            )
            self._analyzed[(game_id, turn_id)] = new_save
        logger.info("%s matched game %s, queued for upload", filename, game_id)
        return True
