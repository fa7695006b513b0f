"""
Room HTTP endpoints.

Routes:
  POST   /api/rooms                              — Create room + register host as first player
  POST   /api/rooms/{code}/join                  — Join (or rejoin) a room by device id
  GET    /api/rooms/{code}?playerId=             — Room view for one player
  POST   /api/rooms/{code}/arrange               — Host opens player selection
  POST   /api/rooms/{code}/cancel                — Host goes back to the lobby
  POST   /api/rooms/{code}/selection             — Host saves the selected players
  POST   /api/rooms/{code}/start                 — Host starts the game with settings
  POST   /api/rooms/{code}/clue                  — Current player submits a clue word
  POST   /api/rooms/{code}/continue              — Player read their card
  POST   /api/rooms/{code}/votes                 — Player casts their ballot
  POST   /api/rooms/{code}/finish-voting         — Host closes voting (force=true skips waiting)
  POST   /api/rooms/{code}/spy-guess             — Spy guesses the secret word
  POST   /api/rooms/{code}/reveal                — Host reveals the word
  POST   /api/rooms/{code}/end                   — Host ends the game, back to waiting
  POST   /api/rooms/{code}/rename                — Player changes their name
  POST   /api/rooms/{code}/leave                 — Player leaves (host leaving closes the room)
  DELETE /api/rooms/{code}/players/{player_id}   — Host removes a player

Every intent returns the acting player's room view after the commit.
RoomError subclasses are turned into JSON responses by the handler in main.py.
"""
import logging
from typing import Callable

from fastapi import APIRouter, Depends, Query, Request

from engine.state_machine import RoomStateMachine
from models.commands import StartGameRequest
from models.room import (
    ContinueRequest, CreateRoomRequest, CreateRoomResponse,
    FinishVotingRequest, JoinRoomRequest, JoinRoomResponse, PlayerRequest,
    RenameRequest, SelectionRequest, TextRequest,
)
from models.view import RoomView
from services.room_session import RoomSession, create_room, join_room
from services.room_store import RoomStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["rooms"])


def get_store(request: Request) -> RoomStore:
    return request.app.state.store


def get_machine(request: Request) -> RoomStateMachine:
    return request.app.state.machine


async def _run_intent(
    store: RoomStore,
    machine: RoomStateMachine,
    code: str,
    player_id: str,
    intent: Callable[[RoomSession], object],
) -> RoomView:
    session = RoomSession(store, code, player_id, machine)
    await session.load()
    ok = await intent(session)
    # request/response callers get the cleanup done before the reply
    await session.settle()
    if not ok and session.last_error is not None:
        raise session.last_error
    return await _reload(session)


async def _reload(session: RoomSession) -> RoomView:
    snapshot = await session.store.get(session.room_code)
    if snapshot is None:
        return RoomView.closed(session.room_code)
    return RoomView.build(snapshot, session.player_id)


@router.post("/rooms", response_model=CreateRoomResponse, status_code=201)
async def create(body: CreateRoomRequest, store: RoomStore = Depends(get_store)):
    """Create a new room and register the host as the first player."""
    code = await create_room(store, body.player_id, body.host_name, body.avatar_name)
    return CreateRoomResponse(room_code=code, host_id=body.player_id)


@router.post("/rooms/{code}/join", response_model=JoinRoomResponse)
async def join(code: str, body: JoinRoomRequest, store: RoomStore = Depends(get_store)):
    """Join by device id. Calling again with the same id only refreshes the name."""
    snapshot = await join_room(store, code, body.player_id, body.player_name, body.avatar_name)
    return JoinRoomResponse(room_code=snapshot.code, player_id=body.player_id)


@router.get("/rooms/{code}", response_model=RoomView)
async def get_room(
    code: str,
    player_id: str = Query(..., alias="playerId", description="Device id of the viewer"),
    store: RoomStore = Depends(get_store),
    machine: RoomStateMachine = Depends(get_machine),
):
    """
    The room as this player sees it.
    The word and other players' roles are filtered per viewer.
    """
    return await RoomSession(store, code, player_id, machine).load()


@router.post("/rooms/{code}/arrange", response_model=RoomView)
async def begin_arranging(code: str, body: PlayerRequest, store=Depends(get_store), machine=Depends(get_machine)):
    return await _run_intent(store, machine, code, body.player_id, lambda s: s.begin_arranging())


@router.post("/rooms/{code}/cancel", response_model=RoomView)
async def cancel_arranging(code: str, body: PlayerRequest, store=Depends(get_store), machine=Depends(get_machine)):
    return await _run_intent(store, machine, code, body.player_id, lambda s: s.cancel_arranging())


@router.post("/rooms/{code}/selection", response_model=RoomView)
async def save_selection(code: str, body: SelectionRequest, store=Depends(get_store), machine=Depends(get_machine)):
    return await _run_intent(
        store, machine, code, body.player_id, lambda s: s.save_selection(body.player_ids)
    )


@router.post("/rooms/{code}/start", response_model=RoomView)
async def start_game(code: str, body: StartGameRequest, store=Depends(get_store), machine=Depends(get_machine)):
    """Assign roles, pick the word and shuffle the turn order."""
    return await _run_intent(
        store, machine, code, body.player_id, lambda s: s.start_game(body.settings)
    )


@router.post("/rooms/{code}/clue", response_model=RoomView)
async def submit_clue(code: str, body: TextRequest, store=Depends(get_store), machine=Depends(get_machine)):
    return await _run_intent(
        store, machine, code, body.player_id, lambda s: s.submit_clue_word(body.text)
    )


@router.post("/rooms/{code}/continue", response_model=RoomView)
async def set_continue(code: str, body: ContinueRequest, store=Depends(get_store), machine=Depends(get_machine)):
    return await _run_intent(
        store, machine, code, body.player_id, lambda s: s.set_continue_pressed(body.value)
    )


@router.post("/rooms/{code}/votes", response_model=RoomView)
async def cast_votes(code: str, body: SelectionRequest, store=Depends(get_store), machine=Depends(get_machine)):
    return await _run_intent(
        store, machine, code, body.player_id, lambda s: s.cast_votes(body.player_ids)
    )


@router.post("/rooms/{code}/finish-voting", response_model=RoomView)
async def finish_voting(code: str, body: FinishVotingRequest, store=Depends(get_store), machine=Depends(get_machine)):
    """Tally the ballots. Without force, every selected player must have voted."""
    return await _run_intent(
        store, machine, code, body.player_id, lambda s: s.finish_voting(body.force)
    )


@router.post("/rooms/{code}/spy-guess", response_model=RoomView)
async def spy_guess(code: str, body: TextRequest, store=Depends(get_store), machine=Depends(get_machine)):
    return await _run_intent(
        store, machine, code, body.player_id, lambda s: s.submit_spy_word_guess(body.text)
    )


@router.post("/rooms/{code}/reveal", response_model=RoomView)
async def reveal_word(code: str, body: PlayerRequest, store=Depends(get_store), machine=Depends(get_machine)):
    return await _run_intent(store, machine, code, body.player_id, lambda s: s.reveal_word())


@router.post("/rooms/{code}/end", response_model=RoomView)
async def end_game(code: str, body: PlayerRequest, store=Depends(get_store), machine=Depends(get_machine)):
    return await _run_intent(store, machine, code, body.player_id, lambda s: s.end_game())


@router.post("/rooms/{code}/rename", response_model=RoomView)
async def rename(code: str, body: RenameRequest, store=Depends(get_store), machine=Depends(get_machine)):
    return await _run_intent(store, machine, code, body.player_id, lambda s: s.rename(body.name))


@router.post("/rooms/{code}/leave", response_model=RoomView)
async def leave(code: str, body: PlayerRequest, store=Depends(get_store), machine=Depends(get_machine)):
    return await _run_intent(store, machine, code, body.player_id, lambda s: s.leave())


@router.delete("/rooms/{code}/players/{target_id}", response_model=RoomView)
async def remove_player(
    code: str,
    target_id: str,
    player_id: str = Query(..., alias="playerId", description="Device id of the host"),
    store: RoomStore = Depends(get_store),
    machine: RoomStateMachine = Depends(get_machine),
):
    """Host removes a player from the lobby. The removed client is routed to 'removed'."""
    return await _run_intent(store, machine, code, player_id, lambda s: s.remove_player(target_id))
