"""Shared builders for the test suite."""
from typing import Dict, Iterable, List, Optional

from engine.state_machine import RoomStateMachine, Transition
from models.commands import (
    BeginArranging, Command, GameSettings, SaveSelection, StartGame, SubmitClue,
)
from models.room import RoomSnapshot, RoomStatus
from services.memory_store import InMemoryRoomStore


def make_snapshot(
    players: Iterable[str] = ("host", "p1", "p2"),
    host: str = "host",
    roles: Optional[Dict[str, str]] = None,
    rounds: Optional[Dict[str, Dict]] = None,
    guesses: Optional[Dict[str, Dict]] = None,
    code: str = "ABC123",
    **info,
) -> RoomSnapshot:
    """Build a snapshot straight from store-shaped documents."""
    roles = roles or {}
    info_doc = {"hostId": host, "status": "waiting", **info}
    player_docs = {
        pid: {"name": pid.title(), "role": roles.get(pid), "joinedAt": f"2024-01-01T00:00:{i:02d}Z"}
        for i, pid in enumerate(players)
    }
    return RoomSnapshot.from_documents(
        code, {"info": info_doc}, player_docs, rounds or {}, guesses or {}
    )


def started_snapshot(turn_order: List[str], **info) -> RoomSnapshot:
    players = list(dict.fromkeys(["host", *turn_order]))
    info.setdefault("lockedPlayers", list(turn_order))
    return make_snapshot(players=players, status="started", turnOrder=turn_order, **info)


class Table:
    """A room in the in-memory store driven straight through the state machine."""

    def __init__(self, store: InMemoryRoomStore, machine: RoomStateMachine, code: str, host: str, players: List[str]):
        self.store = store
        self.machine = machine
        self.code = code
        self.host = host
        self.players = players

    async def snapshot(self) -> RoomSnapshot:
        return await self.store.get(self.code)

    async def do(self, command: Command) -> Transition:
        transition = self.machine.apply(await self.snapshot(), command)
        if transition.delete_room:
            await self.store.delete_room(self.code)
            return transition
        await self.store.commit(self.code, transition.patch)
        for collection in transition.clear_collections:
            await self.store.delete_collection(self.code, collection, keep_game_id=transition.keep_game_id)
        return transition

    async def start(self, selected: Optional[List[str]] = None, **settings) -> RoomSnapshot:
        selected = selected or self.players
        await self.do(BeginArranging(actor_id=self.host))
        await self.do(SaveSelection(actor_id=self.host, player_ids=selected))
        await self.do(StartGame(actor_id=self.host, settings=GameSettings(**settings)))
        return await self.snapshot()

    async def play_all_clues(self) -> RoomSnapshot:
        snapshot = await self.snapshot()
        while snapshot.status == RoomStatus.STARTED:
            player = snapshot.current_turn_player_id()
            await self.do(SubmitClue(actor_id=player, text=f"clue-{player}-{snapshot.info.current_round}"))
            snapshot = await self.snapshot()
        return snapshot
