import asyncio
import logging
import os
from datetime import datetime
from functools import partial
from typing import Any, Callable, Dict, List, Optional

from google.api_core import exceptions as gexc

from engine.errors import RoomNotFound, StoreUnavailable
from models.room import ROUND_GAME_ID_KEY, RoomSnapshot
from services.room_store import (
    DELETE, GUESSES, PLAYERS, ROUNDS, SUBCOLLECTIONS, ChangeCallback, RoomPatch,
    generation_of, round_doc_id,
)

logger = logging.getLogger(__name__)

# Firestore caps a WriteBatch at 500 operations
_DELETE_BATCH_SIZE = 400


class FirestoreRoomStore:
    """
    Async-friendly Firestore wrapper using run_in_executor to avoid
    blocking the event loop. Switch to AsyncClient once stable.
    """

    def __init__(self, project: str = "", emulator_host: Optional[str] = None):
        if emulator_host:
            os.environ["FIRESTORE_EMULATOR_HOST"] = emulator_host
        # Lazy import so the service can be instantiated before GCP creds exist
        from google.cloud import firestore
        from google.cloud.firestore_v1.field_path import FieldPath
        self._firestore = firestore
        self._field_path = FieldPath
        self.db = firestore.Client(project=project or None)
        self._watches: List["_RoomWatch"] = []

    def _run(self, fn):
        """Run a sync Firestore call in the default thread pool."""
        loop = asyncio.get_running_loop()
        return loop.run_in_executor(None, fn)

    async def _call(self, room_code: str, fn: Callable[[], Any]) -> Any:
        try:
            return await self._run(fn)
        except gexc.NotFound as exc:
            raise RoomNotFound(f"Room {room_code} not found") from exc
        except gexc.GoogleAPICallError as exc:
            logger.warning("[%s] Firestore call failed: %s", room_code, exc)
            raise StoreUnavailable("Room storage is unavailable, try again") from exc

    # ── Collection helpers ────────────────────────────────────────────────────

    def _room_ref(self, room_code: str):
        return self.db.collection("rooms").document(room_code)

    def _sub_ref(self, room_code: str, collection: str):
        return self._room_ref(room_code).collection(collection)

    def _info_path(self, *parts: str) -> str:
        return self._field_path("info", *parts).to_api_repr()

    def _encode(self, value: Any) -> Any:
        if value is DELETE:
            return self._firestore.DELETE_FIELD
        if isinstance(value, dict):
            return {k: self._encode(v) for k, v in value.items()}
        return value

    # ── Reads ─────────────────────────────────────────────────────────────────

    async def get(self, room_code: str) -> Optional[RoomSnapshot]:
        def read():
            doc = self._room_ref(room_code).get()
            if not doc.exists:
                return None
            parts = {
                name: {d.id: d.to_dict() or {} for d in self._sub_ref(room_code, name).stream()}
                for name in SUBCOLLECTIONS
            }
            return doc.to_dict() or {}, parts

        result = await self._call(room_code, read)
        if result is None:
            return None
        room_doc, parts = result
        return RoomSnapshot.from_documents(
            room_code, room_doc, parts[PLAYERS], parts[ROUNDS], parts[GUESSES]
        )

    # ── Writes ────────────────────────────────────────────────────────────────

    async def create_room(
        self, room_code: str, info: Dict[str, Any], host: Dict[str, Any]
    ) -> bool:
        host_data = {k: v for k, v in host.items() if k != "id"}

        def write() -> bool:
            batch = self.db.batch()
            batch.create(self._room_ref(room_code), {"info": info})
            batch.set(self._sub_ref(room_code, PLAYERS).document(host["id"]), host_data)
            try:
                batch.commit()
            except gexc.AlreadyExists:
                return False
            return True

        created = await self._call(room_code, write)
        if not created:
            logger.info("[%s] Room code already taken", room_code)
        return created

    async def commit(self, room_code: str, patch: RoomPatch) -> None:
        if patch.is_empty():
            return

        def write():
            batch = self.db.batch()

            info_updates: Dict[str, Any] = {
                self._info_path(key): self._encode(value)
                for key, value in patch.info.items()
            }
            for map_name, entries in patch.info_entries.items():
                for key, value in entries.items():
                    info_updates[self._info_path(map_name, key)] = self._encode(value)
            if info_updates:
                batch.update(self._room_ref(room_code), info_updates)

            players = self._sub_ref(room_code, PLAYERS)
            for player_id, fields in patch.players.items():
                if fields is None:
                    batch.delete(players.document(player_id))
                else:
                    batch.set(players.document(player_id), self._encode(fields), merge=True)

            rounds = self._sub_ref(room_code, ROUNDS)
            for round_number, words in patch.round_words.items():
                data = {**words, ROUND_GAME_ID_KEY: patch.game_id}
                ref = rounds.document(round_doc_id(round_number))
                if round_number in patch.fresh_rounds:
                    batch.set(ref, data)
                else:
                    batch.set(ref, data, merge=True)

            guesses = self._sub_ref(room_code, GUESSES)
            for voter_id, votes in patch.ballots.items():
                batch.set(guesses.document(voter_id), {"votes": list(votes), "gameId": patch.game_id})

            batch.commit()

        await self._call(room_code, write)

    async def delete_collection(
        self, room_code: str, collection: str, keep_game_id: Optional[str] = None
    ) -> None:
        """
        Bulk delete in batches; not atomic, readers may see a partial state.
        A document rewritten after it was listed is left alone, since round
        ids repeat across games and the rewrite belongs to the new one.
        """
        await self._delete_documents(room_code, collection, keep_game_id, guarded=True)

    async def _delete_documents(
        self, room_code: str, collection: str, keep_game_id: Optional[str], guarded: bool
    ) -> None:
        ref = self._sub_ref(room_code, collection)
        docs = await self._call(room_code, lambda: list(ref.stream()))
        doomed = [
            d for d in docs
            if keep_game_id is None or generation_of(collection, d.to_dict() or {}) != keep_game_id
        ]
        deleted = 0
        for start in range(0, len(doomed), _DELETE_BATCH_SIZE):
            chunk = doomed[start:start + _DELETE_BATCH_SIZE]
            deleted += await self._call(room_code, partial(self._delete_chunk, chunk, guarded))
        if doomed:
            logger.debug(
                "[%s] Deleted %d of %d %s documents", room_code, deleted, len(doomed), collection
            )

    def _delete_chunk(self, snapshots: List[Any], guarded: bool) -> int:
        def option_for(snap):
            if not guarded:
                return None
            return self.db.write_option(last_update_time=snap.update_time)

        batch = self.db.batch()
        for snap in snapshots:
            batch.delete(snap.reference, option=option_for(snap))
        try:
            batch.commit()
            return len(snapshots)
        except gexc.FailedPrecondition:
            # a batch is all-or-nothing; retry one by one to keep the rest
            logger.debug("Batch delete hit a rewritten document, retrying singly")

        deleted = 0
        for snap in snapshots:
            try:
                snap.reference.delete(option=option_for(snap))
                deleted += 1
            except gexc.FailedPrecondition:
                logger.debug("Kept %s, it changed after listing", snap.reference.path)
        return deleted

    async def delete_room(self, room_code: str) -> None:
        for collection in SUBCOLLECTIONS:
            await self._delete_documents(room_code, collection, None, guarded=False)
        await self._call(room_code, lambda: self._room_ref(room_code).delete())
        logger.info("[%s] Room deleted", room_code)

    async def delete_rooms_idle_since(self, cutoff: datetime) -> int:
        from google.cloud.firestore_v1.base_query import FieldFilter

        query = self.db.collection("rooms").where(
            filter=FieldFilter("info.updatedAt", "<", cutoff)
        )
        docs = await self._call("*", lambda: list(query.stream()))
        for doc in docs:
            await self.delete_room(doc.id)
        return len(docs)

    # ── Live subscriptions ────────────────────────────────────────────────────

    def subscribe(self, room_code: str, on_change: ChangeCallback) -> "_RoomWatch":
        watch = _RoomWatch(self, room_code, on_change, asyncio.get_running_loop())
        self._watches.append(watch)
        return watch

    def _forget(self, watch: "_RoomWatch") -> None:
        if watch in self._watches:
            self._watches.remove(watch)

    def close(self) -> None:
        for watch in list(self._watches):
            watch.unsubscribe()
        self.db.close()


class _RoomWatch:
    """
    Four Firestore listeners (room doc + players/rounds/guesses) folded into
    one stream of RoomSnapshots. Listener callbacks run on Firestore's
    background thread and are handed to the event loop with
    call_soon_threadsafe; nothing is emitted until every part has reported.
    """

    _PARTS = ("room",) + SUBCOLLECTIONS

    def __init__(self, store: FirestoreRoomStore, room_code: str,
                 on_change: ChangeCallback, loop: asyncio.AbstractEventLoop):
        self._store = store
        self.room_code = room_code
        self._on_change = on_change
        self._loop = loop
        self._active = True
        self._parts: Dict[str, Any] = {}
        self._watches = [store._room_ref(room_code).on_snapshot(self._on_room)]
        for name in SUBCOLLECTIONS:
            self._watches.append(
                store._sub_ref(room_code, name).on_snapshot(partial(self._on_collection, name))
            )

    def _on_room(self, docs, changes, read_time) -> None:
        doc = docs[0] if docs else None
        data = (doc.to_dict() or {}) if doc is not None and doc.exists else None
        self._loop.call_soon_threadsafe(self._apply, "room", data)

    def _on_collection(self, name: str, docs, changes, read_time) -> None:
        data = {d.id: d.to_dict() or {} for d in docs}
        self._loop.call_soon_threadsafe(self._apply, name, data)

    def _apply(self, part: str, data: Any) -> None:
        if not self._active:
            return
        self._parts[part] = data
        if "room" in self._parts and self._parts["room"] is None:
            self._on_change(None)
            return
        if any(p not in self._parts for p in self._PARTS):
            return
        try:
            snapshot = RoomSnapshot.from_documents(
                self.room_code,
                self._parts["room"],
                self._parts[PLAYERS],
                self._parts[ROUNDS],
                self._parts[GUESSES],
            )
        except ValueError:
            logger.exception("[%s] Could not parse room snapshot", self.room_code)
            return
        self._on_change(snapshot)

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        for watch in self._watches:
            watch.unsubscribe()
        self._store._forget(self)
