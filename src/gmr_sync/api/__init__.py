"""Relay API module.

Submodules:
    client: GmrClient, the requests based HTTP client
    models: Dataclasses for the relay's JSON responses
"""

from .client import GmrClient
from .models import CurrentTurn, Game, GamesAndPlayers, PlayerOrder, RemotePlayer

__all__ = [
    "GmrClient",
    "CurrentTurn",
    "Game",
    "GamesAndPlayers",
    "PlayerOrder",
    "RemotePlayer",
]
