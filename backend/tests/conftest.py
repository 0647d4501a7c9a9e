from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.security import create_access_token
from app.db import crud
from app.db.database import Base
from app.db.enums import UserRole
from app.db.models import Task, TaskAssignee, TaskFollower, User, default_notification_preferences
from app.realtime.presence import PresenceTracker
from app.realtime.relay import EventRelay
from app.realtime.rooms import RoomRouter
from app.realtime.typing import TypingTracker


@dataclass
class Emit:
    event: str
    data: Any
    room: Any = None
    skip_sid: Any = None


@dataclass
class FakeServer:
    """
    Records what a socketio.AsyncServer would have sent.

    Room membership is tracked from enter_room/leave_room so tests can ask
    what a single connection actually received.
    """
    emitted: List[Emit] = field(default_factory=list)
    rooms: Dict[str, Set[str]] = field(default_factory=dict)
    fail_events: Set[str] = field(default_factory=set)

    async def enter_room(self, sid, room, namespace=None):
        self.rooms.setdefault(room, set()).add(sid)

    async def leave_room(self, sid, room, namespace=None):
        self.rooms.get(room, set()).discard(sid)

    async def emit(self, event, data=None, to=None, room=None, skip_sid=None, namespace=None, callback=None, **kwargs):
        if event in self.fail_events:
            raise ConnectionError(f"transport closed while sending {event}")
        self.emitted.append(Emit(event, data, room if room is not None else to, skip_sid))

    def known_sids(self) -> Set[str]:
        return set().union(*self.rooms.values()) if self.rooms else set()

    def targets(self, emit: Emit) -> Set[str]:
        skip = emit.skip_sid if isinstance(emit.skip_sid, list) else [emit.skip_sid]
        if emit.room is None:
            sids = self.known_sids()
        else:
            names = emit.room if isinstance(emit.room, list) else [emit.room]
            sids = set()
            for name in names:
                # A sid is always addressable as its own room
                sids |= self.rooms.get(name, {name} if name in self.known_sids() else set())
        return {s for s in sids if s not in skip}

    def received(self, sid: str, event: Optional[str] = None) -> List[Any]:
        return [
            e.data for e in self.emitted
            if sid in self.targets(e) and (event is None or e.event == event)
        ]

    def events(self, event: str) -> List[Emit]:
        return [e for e in self.emitted if e.event == event]

    def reset(self):
        self.emitted.clear()


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'realtime.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def _user(name: str, role: str = UserRole.employee.value, **extra) -> User:
    return User(
        name=name.title(),
        email=f"{name}@officehub.test",
        role=role,
        is_active=extra.pop("is_active", True),
        phone_number=extra.pop("phone_number", None),
        notification_preferences=extra.pop("notification_preferences", default_notification_preferences()),
        **extra,
    )


@pytest.fixture
async def users(session_factory) -> Dict[str, User]:
    """admin, alice, bob, carol (active) and dave (deactivated)."""
    people = {
        "admin": _user("admin", UserRole.admin.value),
        "alice": _user("alice", phone_number="+15550000002"),
        "bob": _user("bob", phone_number="+15550000003"),
        "carol": _user("carol"),
        "dave": _user("dave", is_active=False),
    }
    async with session_factory() as db:
        db.add_all(people.values())
        await db.commit()
    return people


@pytest.fixture
async def task(session_factory, users) -> Task:
    """Task created by the admin, assigned to alice, followed by carol."""
    async with session_factory() as db:
        task = Task(title="Restock shelves", status="todo", priority="medium", created_by_id=users["admin"].id)
        db.add(task)
        await db.flush()
        db.add(TaskAssignee(task_id=task.id, user_id=users["alice"].id))
        db.add(TaskFollower(task_id=task.id, user_id=users["carol"].id))
        await db.commit()
    return task


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def rooms(server) -> RoomRouter:
    return RoomRouter(server)


@pytest.fixture
def presence(rooms, session_factory) -> PresenceTracker:
    return PresenceTracker(rooms, session_factory=session_factory)


@pytest.fixture
def dispatcher():
    mock = MagicMock()
    mock.notify = AsyncMock(return_value=[])
    return mock


@pytest.fixture
async def relay(rooms, presence, dispatcher, session_factory):
    relay = EventRelay(rooms, presence, dispatcher, session_factory=session_factory, typing=TypingTracker())
    yield relay
    await relay.drain()


@pytest.fixture
def connect(rooms, presence):
    """Bring a user online on a connection handle the way the connect handler does."""
    async def _connect(user: User, handle: str, conversations=()):
        rooms.register(handle, user.id)
        await rooms.join_personal_room(handle, user.id)
        await presence.on_connect(user.id, handle)
        if conversations:
            await rooms.join_conversations(handle, conversations)
        return handle
    return _connect


@pytest.fixture
def open_conversation(session_factory):
    """Create a conversation between users the way their first message does."""
    async def _open(conversation_id: str, *members: User) -> str:
        async with session_factory() as db:
            await crud.create_conversation(db, conversation_id, [u.id for u in members])
            await db.commit()
        return conversation_id
    return _open


@pytest.fixture
def token_for():
    def _token(user: User, **kwargs) -> str:
        return create_access_token({"sub": user.id}, **kwargs)
    return _token
