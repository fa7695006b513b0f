import logging
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Timezone-aware UTC datetime (replaces deprecated datetime.utcnow)."""
    return datetime.now(timezone.utc)


# currentTurnIndex once every clue of the last round is in
NO_ACTIVE_TURN = -1

# Reserved key inside rounds/round{N} documents holding the generation id
ROUND_GAME_ID_KEY = "_gameId"

_ROUND_DOC_RE = re.compile(r"^round(\d+)$")


class RoomStatus(str, Enum):
    WAITING = "waiting"
    ARRANGING = "arranging"
    STARTED = "started"
    GUESS_READY = "guessReady"
    RESULT = "result"

    @classmethod
    def parse(cls, value: Any) -> "RoomStatus":
        """Case-insensitive parse that also reads spellings older clients wrote."""
        if isinstance(value, RoomStatus):
            return value
        raw = str(value or "").strip().lower()
        for status in cls:
            if status.value.lower() == raw:
                return status
        legacy = _LEGACY_STATUSES.get(raw)
        if legacy is not None:
            logger.warning("Legacy room status %r read as %r", value, legacy.value)
            return legacy
        if not raw:
            return cls.WAITING
        raise ValueError(f"Unknown room status: {value!r}")

    @property
    def is_active_game(self) -> bool:
        return self in (RoomStatus.STARTED, RoomStatus.GUESS_READY, RoomStatus.RESULT)


_LEGACY_STATUSES: Dict[str, RoomStatus] = {
    "the game": RoomStatus.STARTED,
    "in game": RoomStatus.STARTED,
    "guessing": RoomStatus.GUESS_READY,
}


class Role(str, Enum):
    SPY = "spy"
    KNOWER = "knower"


class WordMode(str, Enum):
    RANDOM = "random"
    CUSTOM = "custom"


class Category(str, Enum):
    WORLD = "world"
    TURKIYE = "turkiye"
    WORLD_FOOTBALL = "world_football"
    NFL = "nfl"


class Outcome(str, Enum):
    ALL_CAUGHT = "all_caught"
    SOME_CAUGHT = "some_caught"
    NONE_CAUGHT = "none_caught"
    SPIES_WIN_BY_GUESS = "spies_win_by_guess"


# older clients may have stored values outside these enums
_INFO_ENUMS = {"category": Category, "word_mode": WordMode, "outcome": Outcome}


class _Document(BaseModel):
    """Base for stored shapes: snake_case in Python, camelCase in the store."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_document(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json", by_alias=True)
        # native timestamps so the store can range-query them
        for name, field in type(self).model_fields.items():
            value = getattr(self, name)
            if isinstance(value, datetime):
                data[field.alias or name] = value
        return data


class RoomInfo(_Document):
    host_id: str
    status: RoomStatus = RoomStatus.WAITING
    word: str = ""
    category: Optional[Category] = None
    word_mode: Optional[WordMode] = None
    spy_count: int = 1
    total_rounds: int = 3
    current_round: int = 1
    current_turn_index: int = 0
    turn_order: List[str] = []
    locked_players: List[str] = []
    continue_pressed: Dict[str, bool] = {}
    result_text: Optional[str] = None
    outcome: Optional[Outcome] = None
    guessed_spy_ids: List[str] = []
    spy_word_guesses: Dict[str, str] = {}
    word_revealed: bool = False
    game_id: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: Any) -> RoomStatus:
        return RoomStatus.parse(value)

    @field_validator("category", "word_mode", "outcome", mode="before")
    @classmethod
    def _unknown_enum_is_none(cls, value: Any, info: ValidationInfo) -> Any:
        if not value:
            return None
        enum = _INFO_ENUMS[info.field_name]
        try:
            return enum(value)
        except ValueError:
            logger.warning("Unknown %s %r stored on room, ignoring it", info.field_name, value)
            return None

    @field_validator("word", mode="before")
    @classmethod
    def _word_none_is_empty(cls, value: Any) -> Any:
        return value or ""


class PlayerState(_Document):
    id: str
    name: str = "Anonymous"
    role: Optional[Role] = None
    is_selected: bool = False
    is_eliminated: bool = False
    avatar_name: Optional[str] = None
    joined_at: datetime = Field(default_factory=_utcnow)

    @field_validator("role", mode="before")
    @classmethod
    def _parse_role(cls, value: Any) -> Optional[str]:
        # Older clients stored "host" here; host is info.hostId, not a role
        raw = str(value or "").strip().lower()
        return raw if raw in (Role.SPY.value, Role.KNOWER.value) else None

    @field_validator("is_selected", "is_eliminated", mode="before")
    @classmethod
    def _none_is_false(cls, value: Any) -> Any:
        return bool(value)


class RoomSnapshot(BaseModel):
    """Everything one room holds, with stale-generation rows already dropped."""

    code: str
    info: RoomInfo
    players: Dict[str, PlayerState] = {}
    rounds: Dict[int, Dict[str, str]] = {}
    ballots: Dict[str, List[str]] = {}

    @classmethod
    def from_documents(
        cls,
        code: str,
        room_doc: Dict[str, Any],
        player_docs: Dict[str, Dict[str, Any]],
        round_docs: Dict[str, Dict[str, Any]],
        guess_docs: Dict[str, Dict[str, Any]],
    ) -> "RoomSnapshot":
        info = RoomInfo.model_validate(room_doc.get("info") or {})
        players = {
            pid: PlayerState.model_validate({**data, "id": pid})
            for pid, data in player_docs.items()
        }

        rounds: Dict[int, Dict[str, str]] = {}
        for doc_id, data in round_docs.items():
            match = _ROUND_DOC_RE.match(doc_id)
            if not match:
                continue
            if (data or {}).get(ROUND_GAME_ID_KEY, "") != info.game_id:
                continue
            rounds[int(match.group(1))] = {
                k: str(v) for k, v in data.items() if k != ROUND_GAME_ID_KEY
            }

        ballots: Dict[str, List[str]] = {}
        for voter_id, data in guess_docs.items():
            data = data or {}
            if data.get("gameId", "") != info.game_id:
                continue
            if isinstance(data.get("votes"), list):
                ballots[voter_id] = [str(v) for v in data["votes"]]
            elif data.get("vote"):
                # single-vote ballots from older clients
                ballots[voter_id] = [str(data["vote"])]

        return cls(code=code, info=info, players=players, rounds=rounds, ballots=ballots)

    # ── Lookups ──────────────────────────────────────────────────────────────

    @property
    def status(self) -> RoomStatus:
        return self.info.status

    def is_host(self, player_id: str) -> bool:
        return bool(player_id) and player_id == self.info.host_id

    def player(self, player_id: str) -> Optional[PlayerState]:
        return self.players.get(player_id)

    def spy_ids(self) -> Set[str]:
        locked = set(self.info.locked_players)
        return {
            p.id for p in self.players.values()
            if p.role == Role.SPY and p.id in locked
        }

    def current_turn_player_id(self) -> Optional[str]:
        order = self.info.turn_order
        idx = self.info.current_turn_index
        if self.status != RoomStatus.STARTED or not 0 <= idx < len(order):
            return None
        return order[idx]

    def players_in_join_order(self) -> List[PlayerState]:
        return sorted(self.players.values(), key=lambda p: p.joined_at)


# ── HTTP request models ───────────────────────────────────────────────────────

class CreateRoomRequest(BaseModel):
    player_id: str
    host_name: str
    avatar_name: Optional[str] = None


class CreateRoomResponse(BaseModel):
    room_code: str
    host_id: str


class JoinRoomRequest(BaseModel):
    player_id: str
    player_name: str
    avatar_name: Optional[str] = None


class JoinRoomResponse(BaseModel):
    room_code: str
    player_id: str


class PlayerRequest(BaseModel):
    """Body of every intent endpoint: who is acting."""
    player_id: str


class SelectionRequest(PlayerRequest):
    player_ids: List[str]


class TextRequest(PlayerRequest):
    text: str


class FinishVotingRequest(PlayerRequest):
    force: bool = False


class ContinueRequest(PlayerRequest):
    value: bool = True


class RenameRequest(PlayerRequest):
    name: str
