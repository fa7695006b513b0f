"""
RoomSession — one client's live window onto one room.

  UI ─▶ session.intent() ─▶ RoomStateMachine.apply() ─▶ RoomStore.commit()
                                                              │
  UI ◀─ listeners(RoomView) ◀─ session._on_change() ◀─ store subscription

Intents validate synchronously against the latest snapshot and raise
RoomError on bad input; nothing is written in that case. Accepted intents
return the asyncio.Task carrying the commit. Store failures from that task
go to the error listeners (and last_error), never to the intent's caller.
The view only changes when the store reports a change, so a failed write
never shows up on screen.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from config import settings as app_settings
from engine.errors import RoomError, RoomNotFound, StoreUnavailable, ValidationFailed
from engine.state_machine import RoomStateMachine, Transition, validate_player_name
from models.commands import (
    BeginArranging, CancelArranging, CastVotes, Command, EndGame, FinishVoting,
    GameSettings, LeaveRoom, RemovePlayer, RenamePlayer, RevealWord, SaveSelection,
    SetContinuePressed, StartGame, SubmitClue, SubmitSpyWordGuess,
)
from models.room import PlayerState, RoomInfo, RoomSnapshot, RoomStatus
from models.view import RoomView
from services.room_store import RoomPatch, RoomStore
from utils.room_codes import generate_room_code, is_valid_room_code, normalize_room_code

logger = logging.getLogger(__name__)

ViewListener = Callable[[RoomView], None]
ErrorListener = Callable[[RoomError], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RoomSession:
    def __init__(
        self,
        store: RoomStore,
        room_code: str,
        player_id: str,
        machine: Optional[RoomStateMachine] = None,
    ):
        self.store = store
        self.room_code = normalize_room_code(room_code)
        self.player_id = player_id
        self.machine = machine or RoomStateMachine.from_settings(app_settings)
        self.snapshot: Optional[RoomSnapshot] = None
        self.view: Optional[RoomView] = None
        self.last_error: Optional[RoomError] = None
        self._subscription = None
        self._view_listeners: List[ViewListener] = []
        self._error_listeners: List[ErrorListener] = []
        self._background: Set[asyncio.Task] = set()

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    async def load(self) -> RoomView:
        """One-shot read without a subscription (request/response callers)."""
        snapshot = await self.store.get(self.room_code)
        if snapshot is None:
            raise RoomNotFound(f"Room {self.room_code} not found")
        self._on_change(snapshot)
        return self.view

    async def open(self) -> RoomView:
        """Load the room and keep following it until close()."""
        view = await self.load()
        if self._subscription is None:
            self._subscription = self.store.subscribe(self.room_code, self._on_change)
            logger.debug("[%s] Session opened for %s", self.room_code, self.player_id)
        return view

    def close(self) -> None:
        # in-flight commits keep running; their outcome just has no audience
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
            logger.debug("[%s] Session closed for %s", self.room_code, self.player_id)
        self._view_listeners.clear()
        self._error_listeners.clear()

    @property
    def is_open(self) -> bool:
        return self._subscription is not None

    # ── Observers ──────────────────────────────────────────────────────────────

    def add_listener(self, listener: ViewListener) -> Callable[[], None]:
        self._view_listeners.append(listener)
        return lambda: self._view_listeners.remove(listener) if listener in self._view_listeners else None

    def add_error_listener(self, listener: ErrorListener) -> Callable[[], None]:
        self._error_listeners.append(listener)
        return lambda: self._error_listeners.remove(listener) if listener in self._error_listeners else None

    def _on_change(self, snapshot: Optional[RoomSnapshot]) -> None:
        if snapshot is None:
            self.snapshot = None
            view = RoomView.closed(self.room_code)
        else:
            self.snapshot = snapshot
            view = RoomView.build(snapshot, self.player_id)

        if self.view is not None and view == self.view:
            return
        self.view = view
        for listener in list(self._view_listeners):
            try:
                listener(view)
            except Exception:
                logger.exception("[%s] View listener failed", self.room_code)

    def _report(self, error: RoomError) -> None:
        self.last_error = error
        for listener in list(self._error_listeners):
            try:
                listener(error)
            except Exception:
                logger.exception("[%s] Error listener failed", self.room_code)

    # ── Command pipeline ───────────────────────────────────────────────────────

    def _dispatch(self, command: Command) -> "asyncio.Task[bool]":
        if self.snapshot is None:
            raise RoomNotFound(f"Room {self.room_code} not found")
        transition = self.machine.apply(self.snapshot, command)
        return self._spawn(self._commit(transition))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _commit(self, transition: Transition) -> bool:
        try:
            if transition.delete_room:
                await self.store.delete_room(self.room_code)
                return True
            patch = transition.patch
            if not patch.is_empty():
                patch.set_info(updatedAt=_utcnow())
                await self.store.commit(self.room_code, patch)
        except RoomError as exc:
            logger.warning("[%s] Commit failed (%s): %s", self.room_code, transition.summary, exc.message)
            self._report(exc)
            return False

        # cleanup runs on its own; readers gate on gameId so leftovers are harmless
        for collection in transition.clear_collections:
            self._spawn(self._clear(collection, transition.keep_game_id))
        return True

    async def _clear(self, collection: str, keep_game_id: Optional[str]) -> None:
        try:
            await self.store.delete_collection(self.room_code, collection, keep_game_id=keep_game_id)
        except RoomError as exc:
            logger.warning("[%s] Clearing %s failed: %s", self.room_code, collection, exc.message)

    async def settle(self) -> None:
        """Wait for every commit and cleanup this session started."""
        # commits may spawn cleanup tasks while we wait
        while True:
            pending = [task for task in self._background if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # ── Intents ────────────────────────────────────────────────────────────────

    def begin_arranging(self) -> asyncio.Task:
        return self._dispatch(BeginArranging(actor_id=self.player_id))

    def cancel_arranging(self) -> asyncio.Task:
        return self._dispatch(CancelArranging(actor_id=self.player_id))

    def save_selection(self, player_ids: List[str]) -> asyncio.Task:
        return self._dispatch(SaveSelection(actor_id=self.player_id, player_ids=player_ids))

    def start_game(self, settings: GameSettings) -> asyncio.Task:
        return self._dispatch(StartGame(actor_id=self.player_id, settings=settings))

    def submit_clue_word(self, text: str) -> asyncio.Task:
        return self._dispatch(SubmitClue(actor_id=self.player_id, text=text))

    def cast_votes(self, player_ids: List[str]) -> asyncio.Task:
        return self._dispatch(CastVotes(actor_id=self.player_id, player_ids=player_ids))

    def finish_voting(self, force: bool = False) -> asyncio.Task:
        return self._dispatch(FinishVoting(actor_id=self.player_id, force=force))

    def submit_spy_word_guess(self, text: str) -> asyncio.Task:
        return self._dispatch(SubmitSpyWordGuess(actor_id=self.player_id, text=text))

    def reveal_word(self) -> asyncio.Task:
        return self._dispatch(RevealWord(actor_id=self.player_id))

    def end_game(self) -> asyncio.Task:
        return self._dispatch(EndGame(actor_id=self.player_id))

    def set_continue_pressed(self, value: bool = True) -> asyncio.Task:
        return self._dispatch(SetContinuePressed(actor_id=self.player_id, value=value))

    def remove_player(self, player_id: str) -> asyncio.Task:
        return self._dispatch(RemovePlayer(actor_id=self.player_id, player_id=player_id))

    def rename(self, name: str) -> asyncio.Task:
        return self._dispatch(RenamePlayer(actor_id=self.player_id, name=name))

    def leave(self) -> asyncio.Task:
        return self._dispatch(LeaveRoom(actor_id=self.player_id))


# ── Room creation / joining ────────────────────────────────────────────────────

def _new_player(player_id: str, name: str, avatar_name: Optional[str]) -> Dict[str, Any]:
    data = PlayerState(id=player_id, name=name, avatar_name=avatar_name).to_document()
    data["id"] = player_id
    return data


async def create_room(
    store: RoomStore,
    host_id: str,
    host_name: str,
    avatar_name: Optional[str] = None,
    settings=None,
) -> str:
    """
    Create a room hosted by host_id and register the host as its first player.
    Retries with a fresh code when the generated one is taken.
    Returns the room code.
    """
    settings = settings or app_settings
    if not (host_id or "").strip():
        raise ValidationFailed("Device id is required")
    name = validate_player_name(host_name, settings.max_name_length)

    now = _utcnow()
    info = RoomInfo(host_id=host_id, status=RoomStatus.WAITING, created_at=now, updated_at=now)
    host = _new_player(host_id, name, avatar_name)

    for attempt in range(1, settings.room_code_attempts + 1):
        code = generate_room_code(settings.room_code_length)
        if await store.create_room(code, info.to_document(), host):
            logger.info(f"Room {code} created by host {host_id} ({name})")
            return code
        logger.info("Room code %s collided (attempt %d)", code, attempt)
    raise StoreUnavailable("Could not allocate a room code, try again")


async def join_room(
    store: RoomStore,
    room_code: str,
    player_id: str,
    name: str,
    avatar_name: Optional[str] = None,
    settings=None,
) -> RoomSnapshot:
    """
    Idempotent join keyed by device id. A returning player keeps their role
    and selection; only the name (and avatar, when given) is refreshed.
    """
    settings = settings or app_settings
    code = normalize_room_code(room_code)
    if not is_valid_room_code(code, settings.room_code_length):
        raise ValidationFailed(f"Room code must be {settings.room_code_length} letters or digits")
    if not (player_id or "").strip():
        raise ValidationFailed("Device id is required")
    cleaned = validate_player_name(name, settings.max_name_length)

    snapshot = await store.get(code)
    if snapshot is None:
        raise RoomNotFound(f"Room {code} not found")
    host = snapshot.player(snapshot.info.host_id)
    if host is None or not host.name.strip():
        raise RoomNotFound(f"Room {code} is not ready yet")

    patch = RoomPatch()
    if snapshot.player(player_id) is None:
        fields = _new_player(player_id, cleaned, avatar_name)
        fields.pop("id")
        patch.upsert_player(player_id, **fields)
        logger.info(f"Player {player_id} ({cleaned}) joined room {code}")
    else:
        patch.upsert_player(player_id, name=cleaned)
        if avatar_name is not None:
            patch.upsert_player(player_id, avatarName=avatar_name)
        logger.info(f"Player {player_id} ({cleaned}) rejoined room {code}")
    patch.set_info(updatedAt=_utcnow())
    await store.commit(code, patch)
    return await store.get(code) or snapshot
