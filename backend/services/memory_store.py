"""
In-process RoomStore with the same contract as the Firestore backend.

Used by the test suite and by local development (ROOM_STORE=memory).
Change notifications are queued on the event loop with call_soon, so they
arrive asynchronously and in commit order, like Firestore snapshot events.
"""
import asyncio
import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from engine.errors import RoomNotFound
from models.room import ROUND_GAME_ID_KEY, RoomSnapshot
from services.room_store import (
    DELETE, GUESSES, PLAYERS, ROUNDS, ChangeCallback, RoomPatch,
    generation_of, round_doc_id,
)

logger = logging.getLogger(__name__)


@dataclass
class _RoomData:
    room: Dict[str, Any]
    players: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    rounds: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    guesses: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def collection(self, name: str) -> Dict[str, Dict[str, Any]]:
        return {PLAYERS: self.players, ROUNDS: self.rounds, GUESSES: self.guesses}[name]

    def snapshot(self, code: str) -> RoomSnapshot:
        return RoomSnapshot.from_documents(
            code,
            copy.deepcopy(self.room),
            copy.deepcopy(self.players),
            copy.deepcopy(self.rounds),
            copy.deepcopy(self.guesses),
        )


class MemorySubscription:
    def __init__(self, store: "InMemoryRoomStore", room_code: str, on_change: ChangeCallback):
        self._store = store
        self.room_code = room_code
        self.on_change = on_change
        self.loop = asyncio.get_running_loop()
        self.active = True

    def deliver(self, snapshot: Optional[RoomSnapshot]) -> None:
        if self.active:
            self.loop.call_soon(self._fire, snapshot)

    def _fire(self, snapshot: Optional[RoomSnapshot]) -> None:
        # unsubscribe may land between scheduling and delivery
        if self.active:
            self.on_change(snapshot)

    def unsubscribe(self) -> None:
        self.active = False
        self._store._drop(self)


class InMemoryRoomStore:
    def __init__(self):
        self._rooms: Dict[str, _RoomData] = {}
        self._subscriptions: Dict[str, List[MemorySubscription]] = {}
        self.commit_count = 0

    # ── Reads ─────────────────────────────────────────────────────────────────

    async def get(self, room_code: str) -> Optional[RoomSnapshot]:
        data = self._rooms.get(room_code)
        return data.snapshot(room_code) if data else None

    # ── Writes ────────────────────────────────────────────────────────────────

    async def create_room(
        self, room_code: str, info: Dict[str, Any], host: Dict[str, Any]
    ) -> bool:
        if room_code in self._rooms:
            return False
        data = _RoomData(room={"info": copy.deepcopy(info)})
        data.players[host["id"]] = {k: v for k, v in copy.deepcopy(host).items() if k != "id"}
        self._rooms[room_code] = data
        self._notify(room_code)
        return True

    async def commit(self, room_code: str, patch: RoomPatch) -> None:
        data = self._rooms.get(room_code)
        if data is None:
            raise RoomNotFound(f"Room {room_code} not found")
        if patch.is_empty():
            return

        info = data.room.setdefault("info", {})
        for key, value in patch.info.items():
            _assign(info, key, value)
        for map_name, entries in patch.info_entries.items():
            target = info.get(map_name)
            if not isinstance(target, dict):
                target = info[map_name] = {}
            for key, value in entries.items():
                _assign(target, key, value)

        for player_id, fields in patch.players.items():
            if fields is None:
                data.players.pop(player_id, None)
                continue
            doc = data.players.setdefault(player_id, {})
            for key, value in fields.items():
                _assign(doc, key, value)

        for round_number, words in patch.round_words.items():
            doc_id = round_doc_id(round_number)
            if round_number in patch.fresh_rounds or doc_id not in data.rounds:
                data.rounds[doc_id] = {}
            data.rounds[doc_id].update(copy.deepcopy(words))
            data.rounds[doc_id][ROUND_GAME_ID_KEY] = patch.game_id

        for voter_id, votes in patch.ballots.items():
            data.guesses[voter_id] = {"votes": list(votes), "gameId": patch.game_id}

        self.commit_count += 1
        self._notify(room_code)

    async def delete_collection(
        self, room_code: str, collection: str, keep_game_id: Optional[str] = None
    ) -> None:
        data = self._rooms.get(room_code)
        if data is None:
            return
        docs = data.collection(collection)
        doomed = [
            doc_id for doc_id, doc in docs.items()
            if keep_game_id is None or generation_of(collection, doc) != keep_game_id
        ]
        for doc_id in doomed:
            docs.pop(doc_id, None)
        if doomed:
            logger.debug("[%s] Deleted %d %s documents", room_code, len(doomed), collection)
            self._notify(room_code)

    async def delete_room(self, room_code: str) -> None:
        if self._rooms.pop(room_code, None) is not None:
            self._notify(room_code)

    async def delete_rooms_idle_since(self, cutoff: datetime) -> int:
        stale = [
            code for code, data in self._rooms.items()
            if _last_activity(data) is not None and _last_activity(data) < cutoff
        ]
        for code in stale:
            await self.delete_room(code)
        return len(stale)

    # ── Subscriptions ─────────────────────────────────────────────────────────

    def subscribe(self, room_code: str, on_change: ChangeCallback) -> MemorySubscription:
        sub = MemorySubscription(self, room_code, on_change)
        self._subscriptions.setdefault(room_code, []).append(sub)
        data = self._rooms.get(room_code)
        sub.deliver(data.snapshot(room_code) if data else None)
        return sub

    def subscriber_count(self, room_code: str) -> int:
        return len(self._subscriptions.get(room_code, []))

    def _drop(self, sub: MemorySubscription) -> None:
        subs = self._subscriptions.get(sub.room_code, [])
        if sub in subs:
            subs.remove(sub)
        if not subs:
            self._subscriptions.pop(sub.room_code, None)

    def _notify(self, room_code: str) -> None:
        subs = self._subscriptions.get(room_code)
        if not subs:
            return
        data = self._rooms.get(room_code)
        for sub in list(subs):
            sub.deliver(data.snapshot(room_code) if data else None)

    def close(self) -> None:
        for subs in list(self._subscriptions.values()):
            for sub in list(subs):
                sub.unsubscribe()


def _assign(target: Dict[str, Any], key: str, value: Any) -> None:
    if value is DELETE:
        target.pop(key, None)
    else:
        target[key] = copy.deepcopy(value)


def _last_activity(data: _RoomData) -> Optional[datetime]:
    info = data.room.get("info", {})
    value = info.get("updatedAt") or info.get("createdAt")
    return value if isinstance(value, datetime) else None
