"""
Room State Machine — pure deterministic Python, no I/O.

Given the latest RoomSnapshot and a command, validate the command and
compute the patch that moves the room forward:

  waiting ──begin──▶ arranging ──start──▶ started ──last clue──▶ guessReady
     ▲                  │  ▲                                        │
     └──────cancel──────┘  └─save selection                  finish voting
     ▲                                                              ▼
     └─────────────────────────── end game ◀──────────────────── result

Every rejection raises a RoomError before anything is written. The caller
(RoomSession) commits the patch and launches the listed bulk deletes.
"""
import logging
import random
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Type

from engine.errors import (
    EmptyWord, InvalidState, PermissionDenied, RoomError, ValidationFailed,
)
from engine.role_assigner import RoleAssigner, clamp_spy_count
from engine.turn_engine import TurnEngine
from engine.vote_tally import RESULT_MESSAGES, VoteTally
from engine.word_bank import pick_word
from models.commands import (
    BeginArranging, CancelArranging, CastVotes, Command, EndGame, FinishVoting,
    LeaveRoom, RemovePlayer, RenamePlayer, RevealWord, SaveSelection,
    SetContinuePressed, StartGame, SubmitClue, SubmitSpyWordGuess,
)
from models.room import Outcome, Role, RoomSnapshot, RoomStatus, WordMode
from services.room_store import DELETE, GUESSES, ROUNDS, RoomPatch
from utils.text import clean_name

logger = logging.getLogger(__name__)


@dataclass
class Transition:
    patch: RoomPatch
    status: RoomStatus
    summary: str
    # sub-collections to bulk delete after the patch lands
    clear_collections: List[str] = field(default_factory=list)
    # documents of this generation survive the bulk delete
    keep_game_id: Optional[str] = None
    delete_room: bool = False


def validate_player_name(name: str, max_length: int = 20) -> str:
    cleaned = clean_name(name)
    if not cleaned:
        raise ValidationFailed("Name cannot be empty")
    if len(cleaned) > max_length:
        raise ValidationFailed(f"Name is too long (maximum {max_length} characters)")
    return cleaned


def new_game_id() -> str:
    return uuid.uuid4().hex[:12]


class RoomStateMachine:
    """
    Applies commands to snapshots. Holds no room state of its own, so one
    instance serves every room.
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        min_players: int = 2,
        max_rounds: int = 10,
        max_word_length: int = 40,
        max_name_length: int = 20,
    ):
        self._rng = rng or random.SystemRandom()
        self.min_players = min_players
        self.max_rounds = max_rounds
        self.max_word_length = max_word_length
        self.max_name_length = max_name_length
        self.roles = RoleAssigner(self._rng)
        self.turns = TurnEngine(self._rng, max_word_length=max_word_length)
        self.votes = VoteTally()
        self._handlers: Dict[Type[Command], Callable[[RoomSnapshot, Command], Transition]] = {
            BeginArranging: self._begin_arranging,
            CancelArranging: self._cancel_arranging,
            SaveSelection: self._save_selection,
            StartGame: self._start_game,
            SubmitClue: self._submit_clue,
            CastVotes: self._cast_votes,
            FinishVoting: self._finish_voting,
            SubmitSpyWordGuess: self._submit_spy_word_guess,
            RevealWord: self._reveal_word,
            EndGame: self._end_game,
            SetContinuePressed: self._set_continue_pressed,
            RemovePlayer: self._remove_player,
            RenamePlayer: self._rename_player,
            LeaveRoom: self._leave_room,
        }

    @classmethod
    def from_settings(cls, settings, rng: Optional[random.Random] = None) -> "RoomStateMachine":
        return cls(
            rng=rng,
            min_players=settings.min_players,
            max_rounds=settings.max_rounds,
            max_word_length=settings.max_word_length,
            max_name_length=settings.max_name_length,
        )

    def apply(self, snapshot: RoomSnapshot, command: Command) -> Transition:
        handler = self._handlers.get(type(command))
        if handler is None:
            raise ValidationFailed(f"Unknown command: {type(command).__name__}")
        if snapshot.player(command.actor_id) is None:
            raise PermissionDenied("You are not a player in this room")

        try:
            transition = handler(snapshot, command)
        except RoomError as exc:
            logger.info(
                "[%s] %s from %s rejected: %s",
                snapshot.code, type(command).__name__, command.actor_id, exc.message,
            )
            raise

        if transition.status != snapshot.status:
            logger.info(
                "[%s] Status: %s → %s (%s)",
                snapshot.code, snapshot.status.value, transition.status.value, transition.summary,
            )
        else:
            logger.debug("[%s] %s", snapshot.code, transition.summary)
        return transition

    # ── Guards ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _require_host(snapshot: RoomSnapshot, command: Command, action: str) -> None:
        if not snapshot.is_host(command.actor_id):
            raise PermissionDenied(f"Only the host can {action}")

    @staticmethod
    def _require_status(snapshot: RoomSnapshot, *allowed: RoomStatus) -> None:
        if snapshot.status not in allowed:
            expected = " or ".join(s.value for s in allowed)
            raise InvalidState(
                f"Not allowed while the room is {snapshot.status.value} (needs {expected})"
            )

    @staticmethod
    def _require_locked(snapshot: RoomSnapshot, player_id: str) -> None:
        if player_id not in snapshot.info.locked_players:
            raise PermissionDenied("You are not playing in this game")

    def _known_selection(self, snapshot: RoomSnapshot, player_ids: List[str]) -> List[str]:
        selected = list(dict.fromkeys(player_ids))
        unknown = [pid for pid in selected if snapshot.player(pid) is None]
        if unknown:
            raise ValidationFailed(f"Unknown players: {', '.join(unknown)}")
        if len(selected) < self.min_players:
            raise ValidationFailed(f"Select at least {self.min_players} players")
        return selected

    # ── Lobby ──────────────────────────────────────────────────────────────────

    def _begin_arranging(self, snapshot: RoomSnapshot, command: BeginArranging) -> Transition:
        self._require_host(snapshot, command, "arrange a game")
        self._require_status(snapshot, RoomStatus.WAITING)
        if len(snapshot.players) < self.min_players:
            raise ValidationFailed(f"At least {self.min_players} players must join first")
        patch = RoomPatch().set_info(status=RoomStatus.ARRANGING.value)
        return Transition(patch, RoomStatus.ARRANGING, "host is arranging")

    def _cancel_arranging(self, snapshot: RoomSnapshot, command: CancelArranging) -> Transition:
        self._require_host(snapshot, command, "cancel arranging")
        self._require_status(snapshot, RoomStatus.ARRANGING)
        # lockedPlayers stays so the host can resume with the same selection
        patch = RoomPatch().set_info(status=RoomStatus.WAITING.value)
        return Transition(patch, RoomStatus.WAITING, "arranging cancelled")

    def _save_selection(self, snapshot: RoomSnapshot, command: SaveSelection) -> Transition:
        self._require_host(snapshot, command, "select players")
        self._require_status(snapshot, RoomStatus.ARRANGING)
        selected = self._known_selection(snapshot, command.player_ids)

        patch = RoomPatch().set_info(lockedPlayers=selected)
        for pid in snapshot.players:
            patch.upsert_player(pid, isSelected=pid in selected)
        return Transition(patch, RoomStatus.ARRANGING, f"{len(selected)} players selected")

    def _start_game(self, snapshot: RoomSnapshot, command: StartGame) -> Transition:
        self._require_host(snapshot, command, "start the game")
        self._require_status(snapshot, RoomStatus.ARRANGING)
        settings = command.settings
        info = snapshot.info

        source = settings.selected_ids if settings.selected_ids is not None else info.locked_players
        selected = self._known_selection(snapshot, source)

        if not 1 <= settings.total_rounds <= self.max_rounds:
            raise ValidationFailed(f"Rounds must be between 1 and {self.max_rounds}")

        if settings.word_mode == WordMode.CUSTOM:
            word = (settings.custom_word or "").strip()
            if not word:
                raise EmptyWord("Enter a word for custom mode")
            if len(word) > self.max_word_length:
                raise ValidationFailed(
                    f"Word is too long (maximum {self.max_word_length} characters)"
                )
            category = DELETE
        else:
            word = pick_word(settings.category, self._rng)
            category = settings.category.value

        spy_count = clamp_spy_count(settings.spy_count, len(selected))
        roles = self.roles.assign(selected, spy_count, settings.word_mode, info.host_id)
        spies = sum(1 for role in roles.values() if role == Role.SPY)
        turn_order = self.turns.new_turn_order(selected)
        game_id = new_game_id()

        patch = RoomPatch(game_id=game_id).set_info(
            status=RoomStatus.STARTED.value,
            word=word,
            category=category,
            wordMode=settings.word_mode.value,
            spyCount=spies,
            totalRounds=settings.total_rounds,
            currentRound=1,
            currentTurnIndex=0,
            turnOrder=turn_order,
            lockedPlayers=selected,
            continuePressed={},
            resultText=DELETE,
            outcome=DELETE,
            guessedSpyIds=[],
            spyWordGuesses={},
            wordRevealed=False,
            gameId=game_id,
        )
        for pid in snapshot.players:
            if pid in roles:
                patch.upsert_player(pid, role=roles[pid].value, isSelected=True, isEliminated=False)
            else:
                patch.upsert_player(pid, role=None, isSelected=False)

        return Transition(
            patch,
            RoomStatus.STARTED,
            f"game {game_id} started: {len(selected)} players, {spies} spies, "
            f"{settings.total_rounds} rounds, mode={settings.word_mode.value}",
            clear_collections=[ROUNDS, GUESSES],
            keep_game_id=game_id,
        )

    # ── In game ────────────────────────────────────────────────────────────────

    def _submit_clue(self, snapshot: RoomSnapshot, command: SubmitClue) -> Transition:
        self._require_status(snapshot, RoomStatus.STARTED)
        turn = self.turns.submit(snapshot, command.actor_id, command.text)

        patch = RoomPatch(game_id=snapshot.info.game_id)
        patch.round_words[turn.recorded_round] = {turn.player_id: turn.word}
        if turn.first_of_round:
            patch.fresh_rounds.add(turn.recorded_round)
        patch.set_info(currentRound=turn.next_round, currentTurnIndex=turn.next_turn_index)

        status = RoomStatus.STARTED
        if turn.game_complete:
            status = RoomStatus.GUESS_READY
            patch.set_info(status=status.value)
        return Transition(
            patch, status,
            f"clue from {turn.player_id} in round {turn.recorded_round}",
        )

    def _set_continue_pressed(self, snapshot: RoomSnapshot, command: SetContinuePressed) -> Transition:
        self._require_status(snapshot, RoomStatus.STARTED)
        self._require_locked(snapshot, command.actor_id)
        patch = RoomPatch().set_entry("continuePressed", command.actor_id, command.value)
        return Transition(patch, snapshot.status, f"{command.actor_id} continue={command.value}")

    # ── Voting ─────────────────────────────────────────────────────────────────

    def _cast_votes(self, snapshot: RoomSnapshot, command: CastVotes) -> Transition:
        self._require_status(snapshot, RoomStatus.GUESS_READY)
        self._require_locked(snapshot, command.actor_id)
        info = snapshot.info
        if command.actor_id in snapshot.ballots:
            raise InvalidState("You have already voted")

        accused = list(dict.fromkeys(command.player_ids))
        if len(accused) != info.spy_count:
            raise ValidationFailed(f"Select exactly {info.spy_count} players")
        outsiders = [pid for pid in accused if pid not in info.locked_players]
        if outsiders:
            raise ValidationFailed("You can only vote for players in this game")

        patch = RoomPatch(game_id=info.game_id)
        patch.ballots[command.actor_id] = accused
        return Transition(patch, snapshot.status, f"ballot from {command.actor_id}")

    def _finish_voting(self, snapshot: RoomSnapshot, command: FinishVoting) -> Transition:
        self._require_host(snapshot, command, "finish voting")
        self._require_status(snapshot, RoomStatus.GUESS_READY)
        info = snapshot.info

        missing = [pid for pid in info.locked_players if pid not in snapshot.ballots]
        if missing and not command.force:
            raise InvalidState(
                f"{len(missing)} of {len(info.locked_players)} players have not voted yet"
            )

        result = self.votes.tally(
            snapshot.ballots, info.spy_count, snapshot.spy_ids(), info.turn_order
        )
        patch = RoomPatch().set_info(
            status=RoomStatus.RESULT.value,
            resultText=result.result_text,
            outcome=result.outcome.value,
            guessedSpyIds=result.guessed_spy_ids,
        )
        return Transition(
            patch, RoomStatus.RESULT,
            f"voting finished ({'forced, ' if missing else ''}{result.outcome.value})",
        )

    # ── Result ─────────────────────────────────────────────────────────────────

    def _submit_spy_word_guess(self, snapshot: RoomSnapshot, command: SubmitSpyWordGuess) -> Transition:
        self._require_status(snapshot, RoomStatus.RESULT)
        info = snapshot.info
        if info.word_revealed:
            raise InvalidState("The word has already been revealed")
        if command.actor_id not in snapshot.spy_ids():
            raise PermissionDenied("Only spies can guess the word")
        if command.actor_id in info.spy_word_guesses:
            raise InvalidState("You have already guessed")

        guess = (command.text or "").strip()
        if not guess:
            raise EmptyWord("Guess cannot be empty")
        if len(guess) > self.max_word_length:
            raise ValidationFailed(f"Guess is too long (maximum {self.max_word_length} characters)")

        patch = RoomPatch().set_entry("spyWordGuesses", command.actor_id, guess)
        return Transition(patch, snapshot.status, f"word guess from {command.actor_id}")

    def _reveal_word(self, snapshot: RoomSnapshot, command: RevealWord) -> Transition:
        self._require_host(snapshot, command, "reveal the word")
        self._require_status(snapshot, RoomStatus.RESULT)
        info = snapshot.info
        if info.word_revealed:
            raise InvalidState("The word has already been revealed")

        patch = RoomPatch().set_info(wordRevealed=True)
        winners = self.votes.word_guess_winners(info.spy_word_guesses, snapshot.spy_ids(), info.word)
        if winners:
            patch.set_info(
                resultText=RESULT_MESSAGES[Outcome.SPIES_WIN_BY_GUESS],
                outcome=Outcome.SPIES_WIN_BY_GUESS.value,
            )
        return Transition(
            patch, snapshot.status,
            f"word revealed ({len(winners)} correct spy guesses)",
        )

    def _end_game(self, snapshot: RoomSnapshot, command: EndGame) -> Transition:
        self._require_host(snapshot, command, "end the game")
        self._require_status(snapshot, RoomStatus.STARTED, RoomStatus.GUESS_READY, RoomStatus.RESULT)

        # gameId "" hides every leftover round/ballot row at once
        patch = RoomPatch().set_info(
            status=RoomStatus.WAITING.value,
            word="",
            category=DELETE,
            currentRound=1,
            currentTurnIndex=0,
            turnOrder=[],
            continuePressed=DELETE,
            resultText=DELETE,
            outcome=DELETE,
            guessedSpyIds=DELETE,
            spyWordGuesses=DELETE,
            wordRevealed=DELETE,
            gameId="",
        )
        for pid in snapshot.info.locked_players:
            if snapshot.player(pid) is not None:
                patch.upsert_player(pid, role=None)
        return Transition(
            patch, RoomStatus.WAITING, "game ended",
            clear_collections=[ROUNDS, GUESSES],
        )

    # ── Membership ─────────────────────────────────────────────────────────────

    def _remove_player(self, snapshot: RoomSnapshot, command: RemovePlayer) -> Transition:
        self._require_host(snapshot, command, "remove players")
        self._require_status(snapshot, RoomStatus.WAITING, RoomStatus.ARRANGING)
        target = command.player_id
        if target == snapshot.info.host_id:
            raise ValidationFailed("The host cannot remove themselves")
        if snapshot.player(target) is None:
            raise ValidationFailed("No such player in this room")

        patch = RoomPatch().delete_player(target)
        if target in snapshot.info.locked_players:
            patch.set_info(lockedPlayers=[p for p in snapshot.info.locked_players if p != target])
        return Transition(patch, snapshot.status, f"removed {target}")

    def _rename_player(self, snapshot: RoomSnapshot, command: RenamePlayer) -> Transition:
        name = validate_player_name(command.name, self.max_name_length)
        patch = RoomPatch().upsert_player(command.actor_id, name=name)
        return Transition(patch, snapshot.status, f"{command.actor_id} renamed")

    def _leave_room(self, snapshot: RoomSnapshot, command: LeaveRoom) -> Transition:
        if snapshot.is_host(command.actor_id):
            return Transition(RoomPatch(), snapshot.status, "host left, closing room", delete_room=True)

        locked = snapshot.info.locked_players
        if command.actor_id in locked and snapshot.status.is_active_game:
            # turnOrder and ballots still point at this player
            raise InvalidState("You cannot leave while your game is in progress")

        patch = RoomPatch().delete_player(command.actor_id)
        if command.actor_id in locked:
            patch.set_info(lockedPlayers=[p for p in locked if p != command.actor_id])
        return Transition(patch, snapshot.status, f"{command.actor_id} left")
