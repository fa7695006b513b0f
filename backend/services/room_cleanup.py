"""
Abandoned room expiry.

Clients never delete a room unless the host leaves through the app, so rooms
whose players simply closed the page would live forever. Every commit stamps
info.updatedAt; this loop deletes rooms that have been idle for longer than
the configured TTL.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from engine.errors import RoomError
from services.room_store import RoomStore

logger = logging.getLogger(__name__)


async def purge_stale_rooms(
    store: RoomStore, ttl_hours: float, now: Optional[datetime] = None
) -> int:
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(hours=ttl_hours)
    removed = await store.delete_rooms_idle_since(cutoff)
    if removed:
        logger.info(f"Expired {removed} rooms idle since {cutoff.isoformat()}")
    return removed


async def run_cleanup_loop(store: RoomStore, ttl_hours: float, interval_seconds: float) -> None:
    """Runs until cancelled by the app lifespan."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await purge_stale_rooms(store, ttl_hours)
        except RoomError as exc:
            logger.warning("Stale room cleanup failed: %s", exc.message)
