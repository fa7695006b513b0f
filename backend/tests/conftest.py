import random

import pytest

from engine.state_machine import RoomStateMachine
from helpers import Table
from services.memory_store import InMemoryRoomStore
from services.room_session import create_room, join_room


@pytest.fixture
def store():
    return InMemoryRoomStore()


@pytest.fixture
def machine():
    return RoomStateMachine(rng=random.Random(1234))


@pytest.fixture
async def table(store, machine):
    """Host "host" plus p1..p3, all waiting in the lobby."""
    code = await create_room(store, "host", "Hana")
    for pid, name in [("p1", "Ali"), ("p2", "Berk"), ("p3", "Cem")]:
        await join_room(store, code, pid, name)
    return Table(store, machine, code, "host", ["host", "p1", "p2", "p3"])
