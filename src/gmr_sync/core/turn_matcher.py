"""Work out which game a new local save belongs to.

The game writes turn files named after the next leader, not after the
relay game, so the owner is found by content: the new save is compared
with the last downloaded save of every game waiting on the user, and the
closest one wins. Anything other than exactly one winner is reported and
left to the user.
"""

from dataclasses import dataclass, field
from typing import Optional, Sequence

from .errors import TurnMatchAmbiguous, TurnMatchNotFound
from .save_parser import Civ5Save
from ..api.models import Game, GameId
from ..logging_config import get_logger

logger = get_logger("turn_matcher")


@dataclass(frozen=True)
class MatchCandidate:
    """A game that may own the save, with its last analyzed save if any."""
    game: Game
    last_save: Optional[Civ5Save] = None

    @property
    def game_id(self) -> GameId:
        return self.game.game_id


@dataclass(frozen=True)
class MatchResult:
    """Outcome of a match.

    ``game_ids`` holds every game tied for the best score, in ascending id
    order. ``scores`` holds the difference score of every game compared.
    """
    game_ids: tuple[GameId, ...] = ()
    scores: dict[GameId, int] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.game_ids

    @property
    def is_ambiguous(self) -> bool:
        return len(self.game_ids) > 1

    @property
    def game_id(self) -> GameId:
        """The single matching game.

        Raises:
            TurnMatchNotFound: If no game matched
            TurnMatchAmbiguous: If several games matched
        """
        if self.is_empty:
            raise TurnMatchNotFound("No game matches the save")
        if self.is_ambiguous:
            raise TurnMatchAmbiguous(self.game_ids)
        return self.game_ids[0]


class TurnMatcher:
    """Select the most likely owning game for a new save."""

    def match(self, new_save: Civ5Save, candidates: Sequence[MatchCandidate]) -> MatchResult:
        """Match a save against the games waiting on the user.

        A turn 0 save can only belong to a game that has not started yet.
        Any other save must be the same turn as, or one turn after, the
        last analyzed save of a game to be considered; the candidates left
        are ranked by difference score.

        Args:
            new_save: The freshly written local save
            candidates: Games where it is the user's turn

        Returns:
            MatchResult with zero, one or several games
        """
        new_turn = new_save.header.turn

        if new_turn == 0:
            first_turn = sorted(c.game_id for c in candidates if c.game.current_turn.is_first_turn)
            logger.debug("First turn save, candidates %s", first_turn)
            return MatchResult(game_ids=tuple(first_turn))

        scores: dict[GameId, int] = {}
        for candidate in candidates:
            game_id = candidate.game_id
            if candidate.last_save is None:
                logger.warning("Game %s has no analyzed save, can not compare", game_id)
                continue

            last_turn = candidate.last_save.header.turn
            if new_turn not in (last_turn, last_turn + 1):
                logger.debug(
                    "Game %s: turns aren't close enough (new %s, last %s)", game_id, new_turn, last_turn
                )
                continue

            scores[game_id] = new_save.difference_score(candidate.last_save)
            logger.debug("Game %s: difference score %s", game_id, scores[game_id])

        if not scores:
            logger.warning("No games found to compare for turn %s", new_turn)
            return MatchResult(scores=scores)

        best = min(scores.values())
        winners = tuple(sorted(game_id for game_id, score in scores.items() if score == best))
        if len(winners) > 1:
            logger.warning("Games %s tie with difference score %s", winners, best)
        else:
            logger.info("Smallest difference found: game %s (score %s)", winners[0], best)
        return MatchResult(game_ids=winners, scores=scores)
