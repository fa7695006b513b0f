"""
RoomStore contract — the shared document store every client commits to.

A room lives at rooms/{code}:
  info                   — map of room fields (hostId, status, word, ...)
  players/{playerId}     — {name, role, isSelected, isEliminated, avatarName, joinedAt}
  rounds/round{N}        — {playerId: word, ..., "_gameId": generation}
  guesses/{playerId}     — {votes: [playerId, ...], gameId: generation}

Writes go through RoomPatch: one patch is one atomic batch within one room.
Bulk deletes of sub-collections are separate, best-effort and multi-step.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, Set

from models.room import ROUND_GAME_ID_KEY, RoomSnapshot

PLAYERS = "players"
ROUNDS = "rounds"
GUESSES = "guesses"
SUBCOLLECTIONS = (PLAYERS, ROUNDS, GUESSES)


class _Delete:
    """Marker value: remove the field instead of writing it."""

    def __repr__(self) -> str:
        return "DELETE"


DELETE = _Delete()


def round_doc_id(round_number: int) -> str:
    return f"round{round_number}"


def generation_of(collection: str, data: Dict[str, Any]) -> str:
    """gameId a rounds/guesses document was written under ("" if unstamped)."""
    key = ROUND_GAME_ID_KEY if collection == ROUNDS else "gameId"
    return str((data or {}).get(key, ""))


@dataclass
class RoomPatch:
    # info.<field> → value (or DELETE)
    info: Dict[str, Any] = field(default_factory=dict)
    # info.<map>.<key> → value, e.g. {"spyWordGuesses": {playerId: "paris"}}
    info_entries: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    # playerId → fields merged into players/{playerId}; None deletes the record
    players: Dict[str, Optional[Dict[str, Any]]] = field(default_factory=dict)
    # round number → {playerId: word}, merged into rounds/round{N}
    round_words: Dict[int, Dict[str, str]] = field(default_factory=dict)
    # rounds whose document is replaced rather than merged (first clue of a round)
    fresh_rounds: Set[int] = field(default_factory=set)
    # voterId → accused ids, replaces guesses/{voterId}
    ballots: Dict[str, List[str]] = field(default_factory=dict)
    # generation stamped on round and ballot documents written by this patch
    game_id: str = ""

    def is_empty(self) -> bool:
        return not (
            self.info or self.info_entries or self.players
            or self.round_words or self.ballots
        )

    def set_info(self, **fields: Any) -> "RoomPatch":
        self.info.update(fields)
        return self

    def set_entry(self, map_name: str, key: str, value: Any) -> "RoomPatch":
        self.info_entries.setdefault(map_name, {})[key] = value
        return self

    def upsert_player(self, player_id: str, **fields: Any) -> "RoomPatch":
        existing = self.players.get(player_id) or {}
        self.players[player_id] = {**existing, **fields}
        return self

    def delete_player(self, player_id: str) -> "RoomPatch":
        self.players[player_id] = None
        return self


class Subscription(Protocol):
    def unsubscribe(self) -> None: ...


# Receives every committed state of the room; None once the room is deleted.
ChangeCallback = Callable[[Optional[RoomSnapshot]], None]


class RoomStore(Protocol):
    async def get(self, room_code: str) -> Optional[RoomSnapshot]: ...

    async def create_room(
        self, room_code: str, info: Dict[str, Any], host: Dict[str, Any]
    ) -> bool: ...

    async def commit(self, room_code: str, patch: RoomPatch) -> None: ...

    async def delete_collection(
        self, room_code: str, collection: str, keep_game_id: Optional[str] = None
    ) -> None: ...

    async def delete_room(self, room_code: str) -> None: ...

    async def delete_rooms_idle_since(self, cutoff: datetime) -> int: ...

    def subscribe(self, room_code: str, on_change: ChangeCallback) -> Subscription: ...

    def close(self) -> None: ...


def build_room_store(settings) -> RoomStore:
    """Construct the configured backend. Called once from the app lifespan."""
    if settings.room_store == "memory":
        from services.memory_store import InMemoryRoomStore
        return InMemoryRoomStore()
    from services.firestore_service import FirestoreRoomStore
    return FirestoreRoomStore(
        project=settings.google_cloud_project,
        emulator_host=settings.firestore_emulator_host,
    )
