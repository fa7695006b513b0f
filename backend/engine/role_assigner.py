"""
Role Assigner — splits the selected players into spies and knowers.

Called by the state machine when the host starts a game. Pure: reads no
store, writes no store; the caller turns the result into a patch.

Rules:
- spy count is clamped to [0, selected - 1] so at least one knower holds the word
- custom word mode: the host wrote the word, so the host is never a spy and
  the count is re-clamped to the remaining pool
- spies are a uniform sample without replacement; everyone else is a knower
"""
import logging
import random
from typing import Dict, Iterable, List, Optional

from models.room import Role, WordMode

logger = logging.getLogger(__name__)


def clamp_spy_count(spy_count: int, selected_count: int) -> int:
    return max(0, min(spy_count, selected_count - 1))


class RoleAssigner:
    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.SystemRandom()

    def eligible_spies(
        self, selected_ids: List[str], word_mode: WordMode, host_id: str
    ) -> List[str]:
        if word_mode == WordMode.CUSTOM:
            return [pid for pid in selected_ids if pid != host_id]
        return list(selected_ids)

    def assign(
        self,
        selected_ids: Iterable[str],
        spy_count: int,
        word_mode: WordMode,
        host_id: str,
    ) -> Dict[str, Role]:
        """
        Return {player_id: Role} for every selected player.

        Raises ValueError when fewer than two players are selected; the state
        machine validates this first and surfaces it as ValidationFailed.
        """
        selected = list(dict.fromkeys(selected_ids))
        if len(selected) < 2:
            raise ValueError(f"Need at least 2 selected players; got {len(selected)}.")

        pool = self.eligible_spies(selected, word_mode, host_id)
        count = min(clamp_spy_count(spy_count, len(selected)), len(pool))
        spies = set(self._rng.sample(pool, count))

        roles = {pid: (Role.SPY if pid in spies else Role.KNOWER) for pid in selected}
        logger.debug(
            "Assigned %d spies among %d players (mode=%s)",
            len(spies), len(selected), word_mode.value,
        )
        return roles
