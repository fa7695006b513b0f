"""
WebSocket Hub — live room view per connected player.

URL: /ws/{room_code}?playerId={device_id}

Connection flow:
  1. Validate room + player exist (close 4404 / 4403 otherwise)
  2. Accept, open a RoomSession and send the first "room_state"
  3. Every store change that alters this player's view → "room_state"
  4. Message loop (_dispatch_message); commit failures arrive as "error"
  5. On disconnect: close the session (the player stays in the room)

Client → server message types:
  ping              — keep-alive heartbeat → responds with "pong"
  begin_arranging   — host opens player selection
  cancel_arranging  — host returns to the lobby
  save_selection    — {playerIds}
  start_game        — {wordMode, customWord, category, spyCount, totalRounds, selectedIds}
  submit_clue       — {text}
  continue          — {value}
  cast_votes        — {playerIds}
  finish_voting     — {force}
  spy_guess         — {text}
  reveal_word
  end_game
  remove_player     — {playerId}
  rename            — {name}
  leave

Server → client:
  {"type": "room_state", "room": RoomView}
  {"type": "error", "message": str, "code": str}
  {"type": "pong"}
"""
import asyncio
import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query
from pydantic import ValidationError

from engine.errors import RoomError, ValidationFailed
from models.commands import GameSettings
from models.view import RoomView
from services.room_session import RoomSession
from utils.room_codes import normalize_room_code

logger = logging.getLogger(__name__)

router = APIRouter()


class ConnectionManager:
    """
    Tracks one session per connected player and the queue feeding its socket.
    Only touched from the event loop thread, so no locks.
    """

    def __init__(self):
        # {room_code: {player_id: RoomSession}}
        self._rooms: Dict[str, Dict[str, RoomSession]] = {}

    def register(self, session: RoomSession) -> None:
        previous = self._rooms.setdefault(session.room_code, {}).get(session.player_id)
        if previous is not None and previous is not session:
            # same device reconnected: the old socket stops receiving updates
            previous.close()
        self._rooms[session.room_code][session.player_id] = session
        logger.debug(
            f"[{session.room_code}] {session.player_id} connected ({self.count(session.room_code)} total)"
        )

    def unregister(self, session: RoomSession) -> None:
        sessions = self._rooms.get(session.room_code, {})
        if sessions.get(session.player_id) is session:
            sessions.pop(session.player_id)
        if not sessions:
            self._rooms.pop(session.room_code, None)

    def count(self, room_code: str) -> int:
        return len(self._rooms.get(room_code, {}))

    def is_connected(self, room_code: str, player_id: str) -> bool:
        return player_id in self._rooms.get(room_code, {})


manager = ConnectionManager()


def _state_message(view: RoomView) -> Dict[str, Any]:
    return {"type": "room_state", "room": view.model_dump(mode="json")}


# ── WebSocket endpoint ─────────────────────────────────────────────────────────

@router.websocket("/ws/{room_code}")
async def websocket_endpoint(
    ws: WebSocket,
    room_code: str,
    playerId: str = Query(..., description="Device id used to join the room"),
):
    store = ws.app.state.store
    machine = ws.app.state.machine
    code = normalize_room_code(room_code)

    # ── Validate room and player ───────────────────────────────────────────────
    snapshot = await store.get(code)
    if snapshot is None:
        await ws.close(code=4404, reason="Room not found")
        return
    if snapshot.player(playerId) is None:
        await ws.close(code=4403, reason="Player not found in this room")
        return

    await ws.accept()
    outbox: asyncio.Queue = asyncio.Queue()
    session = RoomSession(store, code, playerId, machine)
    session.add_listener(lambda view: outbox.put_nowait(_state_message(view)))
    session.add_error_listener(lambda error: outbox.put_nowait(error.to_message()))
    sender = asyncio.create_task(_pump(ws, outbox))

    try:
        await session.open()
    except RoomError as exc:
        sender.cancel()
        await ws.close(code=4404, reason=exc.message)
        return
    manager.register(session)

    # ── Message loop ───────────────────────────────────────────────────────────
    try:
        while True:
            raw = await ws.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                outbox.put_nowait({"type": "error", "message": "Invalid JSON", "code": "PARSE_ERROR"})
                continue
            if not isinstance(data, dict):
                outbox.put_nowait({"type": "error", "message": "Expected an object", "code": "PARSE_ERROR"})
                continue

            msg_type = data.get("type", "")
            # intent arguments ride in an optional "data" object
            inner_data = data.get("data") if isinstance(data.get("data"), dict) else {}
            _handle_message(session, outbox, msg_type, inner_data)

    except WebSocketDisconnect:
        pass
    finally:
        manager.unregister(session)
        session.close()
        await _drain(outbox, sender)


async def _pump(ws: WebSocket, outbox: asyncio.Queue) -> None:
    """Single writer for the socket so frames keep their order."""
    while True:
        message = await outbox.get()
        try:
            await ws.send_json(message)
        except (WebSocketDisconnect, RuntimeError) as exc:
            logger.debug("Send failed, dropping socket writer: %s", exc)
            return
        finally:
            outbox.task_done()


async def _drain(outbox: asyncio.Queue, sender: asyncio.Task) -> None:
    if not sender.done():
        try:
            await asyncio.wait_for(outbox.join(), timeout=1.0)
        except asyncio.TimeoutError:
            pass
    sender.cancel()


# ── Message dispatcher ─────────────────────────────────────────────────────────

def _handle_message(
    session: RoomSession,
    outbox: asyncio.Queue,
    msg_type: str,
    data: Dict,
) -> None:
    try:
        _dispatch_message(session, outbox, msg_type, data)
    except RoomError as exc:
        outbox.put_nowait(exc.to_message())
    except ValidationError as exc:
        outbox.put_nowait(ValidationFailed(_first_error(exc)).to_message())
    except Exception:
        logger.exception("[%s] Unhandled error in _handle_message (type=%s)", session.room_code, msg_type)
        outbox.put_nowait({"type": "error", "message": "Internal server error", "code": "SERVER_ERROR"})


def _dispatch_message(
    session: RoomSession,
    outbox: asyncio.Queue,
    msg_type: str,
    data: Dict,
) -> None:
    # intents return the commit task; failures come back through the error listener
    if msg_type == "ping":
        outbox.put_nowait({"type": "pong"})

    elif msg_type == "begin_arranging":
        session.begin_arranging()

    elif msg_type == "cancel_arranging":
        session.cancel_arranging()

    elif msg_type == "save_selection":
        session.save_selection(_id_list(data, "playerIds"))

    elif msg_type == "start_game":
        session.start_game(GameSettings.model_validate(data))

    elif msg_type == "submit_clue":
        session.submit_clue_word(str(data.get("text", "")))

    elif msg_type == "continue":
        session.set_continue_pressed(bool(data.get("value", True)))

    elif msg_type == "cast_votes":
        session.cast_votes(_id_list(data, "playerIds"))

    elif msg_type == "finish_voting":
        session.finish_voting(force=bool(data.get("force", False)))

    elif msg_type == "spy_guess":
        session.submit_spy_word_guess(str(data.get("text", "")))

    elif msg_type == "reveal_word":
        session.reveal_word()

    elif msg_type == "end_game":
        session.end_game()

    elif msg_type == "remove_player":
        session.remove_player(str(data.get("playerId", "")))

    elif msg_type == "rename":
        session.rename(str(data.get("name", "")))

    elif msg_type == "leave":
        session.leave()

    else:
        outbox.put_nowait({
            "type": "error",
            "message": f"Unknown message type: '{msg_type}'",
            "code": "UNKNOWN_TYPE",
        })


def _id_list(data: Dict, key: str) -> list:
    value = data.get(key)
    if not isinstance(value, list):
        raise ValidationFailed(f"'{key}' must be a list of player ids")
    return [str(v) for v in value]


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid payload"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg', 'invalid')}" if location else first.get("msg", "Invalid payload")
