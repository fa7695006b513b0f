"""
Turn Engine — clue rotation for one game.

On each clue from the player at turnOrder[currentTurnIndex]:
  1. record the word under (round, player)
  2. next player in the same round, or
  3. next round starting again at index 0, or
  4. game complete → guessReady
Exactly one of 2–4 applies.
"""
import logging
import random
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from engine.errors import EmptyWord, NotYourTurn, ValidationFailed
from models.room import NO_ACTIVE_TURN, RoomSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TurnAdvance:
    player_id: str
    word: str
    recorded_round: int
    first_of_round: bool
    next_round: int
    next_turn_index: int
    game_complete: bool


class TurnEngine:
    def __init__(self, rng: Optional[random.Random] = None, max_word_length: int = 40):
        self._rng = rng or random.SystemRandom()
        self.max_word_length = max_word_length

    def new_turn_order(self, selected_ids: Iterable[str]) -> List[str]:
        """Fresh shuffled permutation of the selected players, no duplicates."""
        order = list(dict.fromkeys(selected_ids))
        self._rng.shuffle(order)
        return order

    def clean_clue(self, text: str) -> str:
        word = (text or "").strip()
        if not word:
            raise EmptyWord("Clue word cannot be empty")
        if len(word) > self.max_word_length:
            raise ValidationFailed(
                f"Clue word is too long (maximum {self.max_word_length} characters)"
            )
        return word

    @staticmethod
    def advance(
        turn_order: List[str], turn_index: int, current_round: int, total_rounds: int
    ) -> Tuple[int, int, bool]:
        """Return (next_round, next_turn_index, game_complete)."""
        if turn_index + 1 < len(turn_order):
            return current_round, turn_index + 1, False
        if current_round < total_rounds:
            return current_round + 1, 0, False
        return current_round, NO_ACTIVE_TURN, True

    def submit(self, snapshot: RoomSnapshot, player_id: str, text: str) -> TurnAdvance:
        info = snapshot.info
        current = snapshot.current_turn_player_id()
        if current is None:
            raise NotYourTurn("No turn is active right now")
        if player_id != current:
            raise NotYourTurn("It is not your turn")
        word = self.clean_clue(text)

        next_round, next_index, done = self.advance(
            info.turn_order, info.current_turn_index, info.current_round, info.total_rounds
        )
        if done:
            logger.debug("[%s] Last clue of round %d received", snapshot.code, info.current_round)
        return TurnAdvance(
            player_id=player_id,
            word=word,
            recorded_round=info.current_round,
            first_of_round=info.current_turn_index == 0,
            next_round=next_round,
            next_turn_index=next_index,
            game_complete=done,
        )
