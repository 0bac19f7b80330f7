"""HTTP client for the Giant Multiplayer Robot relay.

Every request carries the user's auth key. Downloads and uploads are
written to run inside a ``TransferTask``: they take the task's progress
channel and stop request as their first arguments.
"""

import os
import threading
from pathlib import Path
from typing import Optional

import requests

from .models import GamesAndPlayers, TurnId, UserId
from .. import __version__
from ..core.errors import TransferIoError, TransferNetworkError, UploadRejected
from ..core.transfer import ChunkReceived, Done, ProgressChannel, Started
from ..logging_config import get_logger

logger = get_logger("api")

DEFAULT_BASE_URL = "http://multiplayerrobot.com/api/Diplomacy/"
DEFAULT_TIMEOUT = (10.0, 60.0)  # (connect, read) seconds
DOWNLOAD_CHUNK_SIZE = 64 * 1024

# SubmitTurn ResultType meaning the turn was accepted
RESULT_TYPE_OK = 1


class GmrClient:
    """Relay API calls for one auth key."""

    def __init__(
        self,
        auth_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: tuple[float, float] = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        if not auth_key:
            raise ValueError("An auth key is required")
        self.auth_key = auth_key
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers["User-Agent"] = f"gmr-sync/{__version__}"

    def __repr__(self):
        return f"GmrClient({self.base_url})"

    def _url(self, endpoint: str) -> str:
        return self.base_url + endpoint

    def _request(self, method: str, endpoint: str, params: Optional[dict] = None, **kwargs) -> requests.Response:
        query = {"authKey": self.auth_key}
        query.update(params or {})
        logger.debug("%s %s %s", method, endpoint, {k: v for k, v in query.items() if k != "authKey"})
        try:
            response = self.session.request(
                method, self._url(endpoint), params=query, timeout=self.timeout, **kwargs
            )
            response.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise TransferNetworkError(f"{endpoint} returned HTTP {status}", status_code=status) from e
        except requests.RequestException as e:
            raise TransferNetworkError(f"{endpoint} failed: {e}") from e
        return response

    def authenticate_user(self) -> Optional[UserId]:
        """Resolve the auth key to a user id.

        Returns:
            The user id, or None if the relay does not know the key
        """
        text = self._request("GET", "AuthenticateUser").text.strip()
        if not text or text == "null":
            return None
        try:
            return int(text)
        except ValueError:
            logger.warning("Unexpected AuthenticateUser response: %r", text[:100])
            return None

    def get_games_and_players(self, player_ids: list[UserId] | None = None) -> GamesAndPlayers:
        """Get the user's games, and profiles for the requested players.

        Args:
            player_ids: Users whose profiles should be included

        Returns:
            Parsed response
        """
        player_id_text = "_".join(str(p) for p in player_ids or [])
        response = self._request("GET", "GetGamesAndPlayers", {"playerIDText": player_id_text})
        try:
            return GamesAndPlayers.from_json(response.json())
        except (ValueError, KeyError, TypeError) as e:
            raise TransferNetworkError(f"Unexpected GetGamesAndPlayers response: {e}") from e

    def fetch_latest_save(
        self,
        channel: ProgressChannel,
        stop_request: threading.Event,
        game_id: int,
        path: Path,
    ) -> None:
        """Stream the latest save of a game to disk.

        The file is written next to its destination and renamed into place
        once complete, so a half-written save never appears in the save
        directory.

        Raises:
            TransferNetworkError: If the relay cannot be reached
            TransferIoError: If the file cannot be written
        """
        path = Path(path)
        partial = path.with_name(path.name + ".part")
        response = self._request("GET", "GetLatestSaveFileBytes", {"gameId": game_id}, stream=True)
        with response:
            total_size = int(response.headers.get("Content-Length", "").strip() or 0) or None
            channel.send(Started(total_size))
            downloaded = 0
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                with open(partial, "wb") as f:
                    for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        if stop_request.is_set():
                            logger.info("Download of game %s cancelled", game_id)
                            break
                        if not chunk:
                            continue
                        f.write(chunk)
                        downloaded += len(chunk)
                        percentage = downloaded * 100.0 / total_size if total_size else None
                        channel.send(ChunkReceived(percentage))
            except requests.RequestException as e:
                raise TransferNetworkError(f"Download of game {game_id} interrupted: {e}") from e
            except OSError as e:
                raise TransferIoError(f"Could not write {partial}: {e}") from e

        if stop_request.is_set():
            partial.unlink(missing_ok=True)
            return

        try:
            os.replace(partial, path)
        except OSError as e:
            raise TransferIoError(f"Could not move download into {path}: {e}") from e
        logger.debug("Downloaded %d bytes of game %s to %s", downloaded, game_id, path)
        channel.send(Done(path))

    def upload_save(self, turn_id: TurnId, data: bytes) -> int:
        """Submit a finished turn.

        Args:
            turn_id: Relay turn the save completes
            data: Raw save bytes

        Returns:
            Points earned for the turn

        Raises:
            UploadRejected: If the relay did not accept the turn
            TransferNetworkError: If the relay cannot be reached
        """
        response = self._request(
            "POST",
            "SubmitTurn",
            {"turnId": turn_id},
            data=data,
            headers={"Content-Type": "application/octet-stream"},
        )
        try:
            body = response.json()
        except ValueError as e:
            raise UploadRejected(None) from e
        result_type = body.get("ResultType") if isinstance(body, dict) else None
        if result_type != RESULT_TYPE_OK:
            raise UploadRejected(result_type)
        return int(body.get("PointsEarned") or 0)

    def submit_turn(
        self,
        channel: ProgressChannel,
        stop_request: threading.Event,
        turn_id: TurnId,
        data: bytes,
    ) -> None:
        """``upload_save`` shaped for a ``TransferTask``."""
        channel.send(Started(len(data)))
        if stop_request.is_set():
            return
        points = self.upload_save(turn_id, data)
        logger.info("Turn %s accepted, %d points earned", turn_id, points)
        channel.send(Done(points))

    def fetch_avatar(self, url: str) -> bytes:
        """Download a player's avatar image."""
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise TransferNetworkError(f"Avatar download failed: {e}") from e
        return response.content
