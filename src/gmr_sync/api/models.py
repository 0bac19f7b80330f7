"""Data models for relay API responses.

The relay answers in PascalCase JSON. Each model is built with
``from_json`` and turned back into the same shape with ``to_json`` so the
last known games list can be stored and reloaded unchanged.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

GameId = int
TurnId = int
UserId = int


@dataclass
class PlayerOrder:
    """A seat in a game"""
    user_id: UserId
    turn_order: int

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "PlayerOrder":
        return cls(user_id=int(data["UserId"]), turn_order=int(data["TurnOrder"]))

    def to_json(self) -> dict[str, Any]:
        return {"UserId": self.user_id, "TurnOrder": self.turn_order}


@dataclass
class CurrentTurn:
    """The turn a game is waiting on"""
    turn_id: TurnId
    number: int
    user_id: UserId
    started: str = ""
    expires: Optional[str] = None
    skipped: bool = False
    player_number: int = 0
    is_first_turn: bool = False

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "CurrentTurn":
        return cls(
            turn_id=int(data["TurnId"]),
            number=int(data["Number"]),
            user_id=int(data["UserId"]),
            started=data.get("Started") or "",
            expires=data.get("Expires"),
            skipped=bool(data.get("Skipped", False)),
            player_number=int(data.get("PlayerNumber", 0)),
            is_first_turn=bool(data.get("IsFirstTurn", False)),
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "TurnId": self.turn_id,
            "Number": self.number,
            "UserId": self.user_id,
            "Started": self.started,
            "Expires": self.expires,
            "Skipped": self.skipped,
            "PlayerNumber": self.player_number,
            "IsFirstTurn": self.is_first_turn,
        }


@dataclass
class Game:
    """A game the user takes part in"""
    game_id: GameId
    name: str
    current_turn: CurrentTurn
    players: list[PlayerOrder] = field(default_factory=list)
    type: int = 0

    def is_user_id_turn(self, user_id: UserId) -> bool:
        """Check whether the relay is waiting on this user."""
        return self.current_turn.user_id == user_id

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "Game":
        return cls(
            game_id=int(data["GameId"]),
            name=data.get("Name") or "",
            current_turn=CurrentTurn.from_json(data["CurrentTurn"]),
            players=[PlayerOrder.from_json(p) for p in data.get("Players") or []],
            type=int(data.get("Type", 0)),
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "GameId": self.game_id,
            "Name": self.name,
            "Players": [p.to_json() for p in self.players],
            "CurrentTurn": self.current_turn.to_json(),
            "Type": self.type,
        }


@dataclass
class RemotePlayer:
    """Public profile of a player as reported by the relay"""
    steam_id: UserId
    persona_name: str = ""
    avatar_url: str = ""
    persona_state: int = 0
    game_id: int = 0

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "RemotePlayer":
        return cls(
            steam_id=int(data["SteamID"]),
            persona_name=data.get("PersonaName") or "",
            avatar_url=data.get("AvatarUrl") or "",
            persona_state=int(data.get("PersonaState", 0)),
            game_id=int(data.get("GameID", 0)),
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "SteamID": self.steam_id,
            "PersonaName": self.persona_name,
            "AvatarUrl": self.avatar_url,
            "PersonaState": self.persona_state,
            "GameID": self.game_id,
        }


@dataclass
class GamesAndPlayers:
    """Response of GetGamesAndPlayers"""
    games: list[Game] = field(default_factory=list)
    players: list[RemotePlayer] = field(default_factory=list)
    current_total_points: int = 0

    def get_game(self, game_id: GameId) -> Optional[Game]:
        for game in self.games:
            if game.game_id == game_id:
                return game
        return None

    def user_ids(self) -> list[UserId]:
        """All distinct user ids seated in any game, sorted."""
        return sorted({p.user_id for game in self.games for p in game.players})

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "GamesAndPlayers":
        return cls(
            games=[Game.from_json(g) for g in data.get("Games") or []],
            players=[RemotePlayer.from_json(p) for p in data.get("Players") or []],
            current_total_points=int(data.get("CurrentTotalPoints", 0)),
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "Games": [g.to_json() for g in self.games],
            "Players": [p.to_json() for p in self.players],
            "CurrentTotalPoints": self.current_total_points,
        }
