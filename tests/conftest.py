"""
Shared pytest fixtures for gmr_sync tests.

Saves are built byte by byte: a header, then sections separated by the
``40 00 00 00`` marker. Section contents never contain the byte 0x40, so
the only markers in a built save are the ones placed on purpose.
"""

import struct
import threading
import time
from pathlib import Path
from typing import Callable, Optional

import pytest

from gmr_sync.api.models import (
    CurrentTurn,
    Game,
    GamesAndPlayers,
    PlayerOrder,
    RemotePlayer,
)
from gmr_sync.config.schema import Settings
from gmr_sync.core.chunks import CHUNK_BOUNDARY, DEFAULT_CHUNK_COUNT
from gmr_sync.core.errors import TransferNetworkError, UploadRejected
from gmr_sync.core.store import DirectoryStore
from gmr_sync.core.sync_engine import SyncEngine
from gmr_sync.core.transfer import Done, Started


USER_ID = 76561198000000001
OTHER_USER_ID = 76561198000000002
AUTH_KEY = "ABCDEF123456"

DEFAULT_PLAYERS = (("Casimir III", 3), ("Harald", 3), ("Montezuma", 1))


# =============================================================================
# SAVE BUILDER
# =============================================================================


def u32(value: int) -> bytes:
    return struct.pack("<I", value)


def lp(text: str) -> bytes:
    """Length-prefixed UTF-8 string."""
    raw = text.encode("utf-8")
    return u32(len(raw)) + raw


def build_header(turn: int, game: str = "Test Game") -> bytes:
    return (
        b"CIV5"
        + u32(8)
        + lp(game)
        + lp("1.0.3.279")
        + u32(turn)
        + b"\x00"
        + lp("CIVILIZATION_POLAND")
        + lp("HANDICAP_PRINCE")
        + lp("ERA_ANCIENT")
        + lp("ERA_CLASSICAL")
        + lp("GAMESPEED_STANDARD")
        + lp("WORLDSIZE_SMALL")
        + lp("Assets\\Maps\\Continents.lua")
    )


def filler(seed: int, index: int, size: int = 24) -> bytes:
    # Values stay in 1..63 so a filler never holds a marker
    return bytes(((seed * 31 + index * 7 + k * 5) % 63) + 1 for k in range(size))


def build_save(
    turn: int = 28,
    players=DEFAULT_PLAYERS,
    seed: int = 1,
    chunk_count: int = DEFAULT_CHUNK_COUNT,
    names_section: Optional[bytes] = None,
    types_section: Optional[bytes] = None,
    game: str = "Test Game",
) -> bytes:
    """Build a save with ``chunk_count`` markers.

    Sections, in order: header, filler, player names, player types, then
    fillers up to the last marker and a trailing filler.
    """
    if names_section is None:
        names_section = b"".join(lp(name) for name, _ in players) + u32(0)
    if types_section is None:
        types_section = b"".join(u32(player_type) for _, player_type in players)

    sections = [build_header(turn, game), filler(seed, 1), names_section, types_section]
    sections += [filler(seed, i) for i in range(len(sections), chunk_count)]
    return CHUNK_BOUNDARY.join(sections) + CHUNK_BOUNDARY + filler(seed, chunk_count)


def make_game(
    game_id: int,
    turn_id: int,
    user_id: int = USER_ID,
    is_first_turn: bool = False,
    name: Optional[str] = None,
    number: int = 28,
) -> Game:
    return Game(
        game_id=game_id,
        name=name or f"Game {game_id}",
        current_turn=CurrentTurn(
            turn_id=turn_id,
            number=number,
            user_id=user_id,
            started="2021-03-01T12:00:00",
            is_first_turn=is_first_turn,
        ),
        players=[PlayerOrder(USER_ID, 0), PlayerOrder(OTHER_USER_ID, 1)],
    )


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


# =============================================================================
# FAKE RELAY
# =============================================================================


class FakeClient:
    """In-memory relay with the same call shapes as GmrClient.

    Downloads write ``saves[game_id]`` to the requested path. Setting
    ``gate`` makes transfers wait until the test sets it, or until the
    task is cancelled.
    """

    def __init__(self):
        self.user_id: Optional[int] = USER_ID
        self.auth_error: Optional[Exception] = None
        self.games: list[Game] = []
        self.saves: dict[int, bytes] = {}
        self.fail_downloads = False
        self.reject_uploads = False
        self.gate: Optional[threading.Event] = None
        self.downloads: list[int] = []
        self.submitted: list[tuple[int, bytes]] = []
        self.player_requests: list[list[int]] = []

    def _wait(self, stop_request: threading.Event) -> bool:
        if self.gate is None:
            return True
        while not self.gate.wait(0.01):
            if stop_request.is_set():
                return False
        return True

    def authenticate_user(self):
        if self.auth_error is not None:
            raise self.auth_error
        return self.user_id

    def get_games_and_players(self, player_ids=None):
        if player_ids:
            self.player_requests.append(list(player_ids))
            return GamesAndPlayers(players=[
                RemotePlayer(steam_id=p, persona_name=f"Player {p}", avatar_url=f"http://avatars.test/{p}.jpg")
                for p in player_ids
            ])
        return GamesAndPlayers(games=list(self.games))

    def fetch_latest_save(self, channel, stop_request, game_id, path):
        self.downloads.append(game_id)
        channel.send(Started(len(self.saves.get(game_id, b""))))
        if not self._wait(stop_request):
            return
        if self.fail_downloads:
            raise TransferNetworkError("GetLatestSaveFileBytes returned HTTP 503", status_code=503)
        Path(path).write_bytes(self.saves[game_id])
        channel.send(Done(path))

    def submit_turn(self, channel, stop_request, turn_id, data):
        channel.send(Started(len(data)))
        if not self._wait(stop_request):
            return
        if self.reject_uploads:
            raise UploadRejected(0)
        self.submitted.append((turn_id, data))
        channel.send(Done(25))

    def fetch_avatar(self, url):
        return b"avatar:" + url.encode()


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def store(tmp_path):
    """A DirectoryStore in a temporary directory."""
    return DirectoryStore(tmp_path / "store")


@pytest.fixture
def save_dir(tmp_path):
    path = tmp_path / "hotseat"
    path.mkdir()
    return path


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def settings():
    return Settings(max_attempts=3, retry_base_delay=10.0, retry_max_delay=60.0)


@pytest.fixture
def engine(store, save_dir, settings, client):
    """An engine wired to the fake relay, not yet authenticated."""
    return SyncEngine(store, save_dir, settings, client_factory=lambda key: client)


def authenticate(engine: SyncEngine, key: str = AUTH_KEY):
    """Authenticate and return the resulting event."""
    engine.authenticate(key)
    events = []

    def answered():
        event = engine.process()
        if event is not None:
            events.append(event)
        return bool(events)

    assert wait_for(answered), "authentication never answered"
    return events[0]


@pytest.fixture
def ready_engine(engine):
    """An authenticated engine (games not fetched yet)."""
    authenticate(engine)
    return engine
