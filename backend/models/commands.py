"""
Commands accepted by the room state machine.

Every command names the device id that issued it (`actor_id`). The HTTP and
WebSocket layers build these from request payloads; the state machine never
sees transport details.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from models.room import Category, WordMode


class GameSettings(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    word_mode: WordMode = WordMode.RANDOM
    custom_word: Optional[str] = None
    category: Category = Category.WORLD
    spy_count: int = 1
    total_rounds: int = 3
    # None = start with the room's saved lockedPlayers
    selected_ids: Optional[List[str]] = None


class Command(BaseModel):
    actor_id: str


class BeginArranging(Command):
    pass


class CancelArranging(Command):
    pass


class SaveSelection(Command):
    player_ids: List[str]


class StartGame(Command):
    settings: GameSettings = Field(default_factory=GameSettings)


class SubmitClue(Command):
    text: str


class CastVotes(Command):
    player_ids: List[str]


class FinishVoting(Command):
    force: bool = False


class SubmitSpyWordGuess(Command):
    text: str


class RevealWord(Command):
    pass


class EndGame(Command):
    pass


class SetContinuePressed(Command):
    value: bool = True


class RemovePlayer(Command):
    player_id: str


class RenamePlayer(Command):
    name: str


class LeaveRoom(Command):
    pass


class StartGameRequest(BaseModel):
    """HTTP body for starting a game."""
    player_id: str
    settings: GameSettings = Field(default_factory=GameSettings)
