"""
Denormalized, per-player view of a room — what a client renders.

Built from a RoomSnapshot for one viewer. Secret data is filtered here:
spies never receive the word, and roles, votes and spy guesses of other
players only appear once the game reaches the result phase.
"""
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel

from engine.vote_tally import VoteTally
from models.room import (
    Category, Outcome, Role, RoomSnapshot, RoomStatus, WordMode,
)


class Destination(str, Enum):
    LOBBY = "lobby"
    SELECT_PLAYERS = "select_players"
    GAME_SETTINGS = "game_settings"
    GAME = "game"
    VOTING = "voting"
    RESULT = "result"
    REMOVED = "removed"
    CLOSED = "closed"


class PlayerView(BaseModel):
    id: str
    name: str
    avatar_name: Optional[str] = None
    is_host: bool = False
    is_selected: bool = False
    has_continued: bool = False
    has_voted: bool = False
    # only filled in for the viewer themself, or for everyone once in result
    role: Optional[Role] = None


class RoomView(BaseModel):
    code: str
    status: RoomStatus
    destination: Destination
    game_id: str = ""
    host_id: str
    is_host: bool = False
    me: Optional[PlayerView] = None
    players: List[PlayerView] = []

    # settings of the current / last game
    word_mode: Optional[WordMode] = None
    category: Optional[Category] = None
    spy_count: int = 0
    total_rounds: int = 0
    locked_players: List[str] = []

    # game
    my_role: Optional[Role] = None
    word: Optional[str] = None
    am_selected: bool = False
    current_round: int = 0
    current_turn_player_id: Optional[str] = None
    is_my_turn: bool = False
    waiting_for_continue: List[str] = []
    clues: Dict[int, Dict[str, str]] = {}

    # voting
    has_voted: bool = False
    votes_cast: int = 0
    voters_total: int = 0
    my_votes: List[str] = []

    # result
    result_text: Optional[str] = None
    outcome: Optional[Outcome] = None
    guessed_spy_ids: List[str] = []
    spy_ids: List[str] = []
    vote_counts: Dict[str, int] = {}
    spy_word_guesses: Dict[str, str] = {}
    has_guessed_word: bool = False
    word_revealed: bool = False

    @classmethod
    def removed(cls, code: str, host_id: str = "") -> "RoomView":
        return cls(code=code, status=RoomStatus.WAITING, destination=Destination.REMOVED, host_id=host_id)

    @classmethod
    def closed(cls, code: str) -> "RoomView":
        return cls(code=code, status=RoomStatus.WAITING, destination=Destination.CLOSED, host_id="")

    @classmethod
    def build(cls, snapshot: RoomSnapshot, viewer_id: str) -> "RoomView":
        info = snapshot.info
        status = info.status
        me_state = snapshot.player(viewer_id)
        if me_state is None:
            return cls.removed(snapshot.code, info.host_id)

        is_host = snapshot.is_host(viewer_id)
        locked = list(info.locked_players)
        in_game = status.is_active_game
        am_selected = viewer_id in locked if in_game else me_state.is_selected
        reveal_all = status == RoomStatus.RESULT
        spy_ids = snapshot.spy_ids()

        # players in turn order during a game, join order otherwise
        if in_game and info.turn_order:
            ordered = [snapshot.players[p] for p in info.turn_order if p in snapshot.players]
            ordered += [p for p in snapshot.players_in_join_order() if p.id not in info.turn_order]
        else:
            ordered = snapshot.players_in_join_order()

        players = [
            PlayerView(
                id=p.id,
                name=p.name,
                avatar_name=p.avatar_name,
                is_host=snapshot.is_host(p.id),
                is_selected=(p.id in locked) if in_game else p.is_selected,
                has_continued=bool(info.continue_pressed.get(p.id)),
                has_voted=p.id in snapshot.ballots,
                role=p.role if in_game and (reveal_all or p.id == viewer_id) else None,
            )
            for p in ordered
        ]
        me = next(p for p in players if p.id == viewer_id)

        my_role = me_state.role if in_game and am_selected else None
        word: Optional[str] = None
        if in_game and am_selected and (my_role == Role.KNOWER or info.word_revealed):
            word = info.word or None

        turn_player = snapshot.current_turn_player_id()
        view = cls(
            code=snapshot.code,
            status=status,
            destination=_destination(status, is_host, am_selected, bool(locked)),
            game_id=info.game_id,
            host_id=info.host_id,
            is_host=is_host,
            me=me,
            players=players,
            word_mode=info.word_mode,
            category=info.category,
            spy_count=info.spy_count,
            total_rounds=info.total_rounds,
            locked_players=locked,
            my_role=my_role,
            word=word,
            am_selected=am_selected,
        )
        if not in_game:
            return view

        view.current_round = info.current_round
        view.current_turn_player_id = turn_player
        view.is_my_turn = turn_player is not None and turn_player == viewer_id
        view.waiting_for_continue = [p for p in locked if not info.continue_pressed.get(p)]
        view.clues = {r: dict(words) for r, words in sorted(snapshot.rounds.items())}
        view.has_voted = viewer_id in snapshot.ballots
        view.votes_cast = sum(1 for voter in snapshot.ballots if voter in locked)
        view.voters_total = len(locked)
        view.my_votes = list(snapshot.ballots.get(viewer_id, []))
        view.has_guessed_word = viewer_id in info.spy_word_guesses
        view.word_revealed = info.word_revealed

        if reveal_all:
            view.result_text = info.result_text
            view.outcome = info.outcome
            view.guessed_spy_ids = list(info.guessed_spy_ids)
            view.spy_ids = [p for p in info.turn_order if p in spy_ids]
            view.vote_counts = VoteTally().count(snapshot.ballots)
            view.spy_word_guesses = dict(info.spy_word_guesses)
        return view


def _destination(status: RoomStatus, is_host: bool, am_selected: bool, has_selection: bool) -> Destination:
    if status == RoomStatus.ARRANGING:
        if not is_host:
            return Destination.LOBBY
        return Destination.GAME_SETTINGS if has_selection else Destination.SELECT_PLAYERS
    if status.is_active_game and not am_selected:
        # not playing this game: wait in the lobby until it ends
        return Destination.LOBBY
    return {
        RoomStatus.STARTED: Destination.GAME,
        RoomStatus.GUESS_READY: Destination.VOTING,
        RoomStatus.RESULT: Destination.RESULT,
    }.get(status, Destination.LOBBY)
