"""
Vote Tally — turns ballots into the accused spies and a result.

Every id on every ballot is counted, repeats included, so malformed
ballots are counted as-is and the tally never rejects. Only players
of the current game can be ranked. Ties are broken by turn order position.

The word-guess win is layered on top at reveal time: if any spy guessed the
secret word, the spies win regardless of the vote result.
"""
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Set

from models.room import Outcome
from utils.text import words_match

logger = logging.getLogger(__name__)


RESULT_MESSAGES: Dict[Outcome, str] = {
    Outcome.ALL_CAUGHT: "All spies were found! The knowers win.",
    Outcome.SOME_CAUGHT: "Some spies were found, but not all of them.",
    Outcome.NONE_CAUGHT: "The spies escaped! Nobody caught them.",
    Outcome.SPIES_WIN_BY_GUESS: "A spy guessed the secret word! The spies win.",
}


@dataclass(frozen=True)
class TallyResult:
    counts: Dict[str, int]
    guessed_spy_ids: List[str]
    outcome: Outcome

    @property
    def result_text(self) -> str:
        return RESULT_MESSAGES[self.outcome]


def classify(guessed: Set[str], actual: Set[str]) -> Outcome:
    if guessed == actual:
        return Outcome.ALL_CAUGHT
    if guessed & actual:
        return Outcome.SOME_CAUGHT
    return Outcome.NONE_CAUGHT


class VoteTally:
    def count(self, ballots: Mapping[str, Iterable[str]]) -> Dict[str, int]:
        counts: Counter = Counter()
        for accused in ballots.values():
            counts.update(accused)
        return dict(counts)

    def rank(self, counts: Mapping[str, int], candidates: List[str]) -> List[str]:
        """Candidates with at least one vote, most votes first, ties by list position."""
        position = {pid: i for i, pid in enumerate(candidates)}
        voted = [pid for pid in candidates if counts.get(pid, 0) > 0]
        return sorted(voted, key=lambda pid: (-counts[pid], position[pid]))

    def tally(
        self,
        ballots: Mapping[str, Iterable[str]],
        spy_count: int,
        actual_spy_ids: Iterable[str],
        candidates: List[str],
    ) -> TallyResult:
        counts = self.count(ballots)
        ranking = self.rank(counts, candidates)
        guessed = ranking[:max(0, spy_count)]
        outcome = classify(set(guessed), set(actual_spy_ids))
        logger.debug("Tally %s → guessed %s (%s)", counts, guessed, outcome.value)
        return TallyResult(counts=counts, guessed_spy_ids=guessed, outcome=outcome)

    def word_guess_winners(
        self,
        spy_word_guesses: Mapping[str, str],
        actual_spy_ids: Iterable[str],
        word: Optional[str],
    ) -> List[str]:
        """Spies whose guess matches the word (trimmed, case and accent folded)."""
        spies = set(actual_spy_ids)
        return sorted(
            pid for pid, guess in spy_word_guesses.items()
            if pid in spies and words_match(guess, word or "")
        )
