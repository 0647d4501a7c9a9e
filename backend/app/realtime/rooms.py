"""
Room routing for Socket.IO connections.

Rooms:
- user_{user_id} - personal room, holds the user's current connection
- conversation_{conversation_id} - opt-in conversation room

The router keeps its own membership maps next to the Socket.IO server so
that fan-out to an empty room can be detected and skipped, and so callers
can ask which connections belong to which user.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from app.core.logging import realtime_logger as logger

PERSONAL_ROOM_PREFIX = "user_"
CONVERSATION_ROOM_PREFIX = "conversation_"


def personal_room(user_id: int) -> str:
    return f"{PERSONAL_ROOM_PREFIX}{user_id}"


def conversation_room(conversation_id: Any) -> str:
    return f"{CONVERSATION_ROOM_PREFIX}{conversation_id}"


@dataclass
class RoomRouter:
    """
    Connection and room registry wrapping a Socket.IO server.

    Structure:
    - connection_users[handle] = user_id
    - connection_rooms[handle] = set(room names)
    - room_members[room] = set(handles)

    With `distributed=True` (Redis client manager) other instances may hold
    members this process cannot see, so emits are never short-circuited.
    """
    server: Any
    distributed: bool = False
    connection_users: Dict[str, int] = field(default_factory=dict)
    connection_rooms: Dict[str, Set[str]] = field(default_factory=dict)
    room_members: Dict[str, Set[str]] = field(default_factory=dict)

    # ---------------------- connections ----------------------

    def register(self, handle: str, user_id: int) -> None:
        self.connection_users[handle] = user_id
        self.connection_rooms.setdefault(handle, set())

    async def unregister(self, handle: str) -> Set[str]:
        """Forget a connection and drop it from every room. Returns the rooms it was in."""
        rooms = self.connection_rooms.pop(handle, set())
        for room in rooms:
            self._discard_member(room, handle)
        self.connection_users.pop(handle, None)
        return rooms

    def user_for(self, handle: str) -> Optional[int]:
        return self.connection_users.get(handle)

    def connections_for(self, user_id: int) -> List[str]:
        return [h for h, uid in self.connection_users.items() if uid == user_id]

    def rooms_of(self, handle: str) -> Set[str]:
        return set(self.connection_rooms.get(handle, set()))

    def members(self, room: str) -> Set[str]:
        return set(self.room_members.get(room, set()))

    # ---------------------- membership ----------------------

    async def join(self, handle: str, room: str) -> bool:
        """Join a room. Returns False if the connection was already in it."""
        if room in self.connection_rooms.get(handle, set()):
            return False
        await self.server.enter_room(handle, room)
        self.connection_rooms.setdefault(handle, set()).add(room)
        self.room_members.setdefault(room, set()).add(handle)
        return True

    async def leave(self, handle: str, room: str) -> bool:
        if room not in self.connection_rooms.get(handle, set()):
            return False
        await self.server.leave_room(handle, room)
        self.connection_rooms[handle].discard(room)
        self._discard_member(room, handle)
        return True

    async def join_personal_room(self, handle: str, user_id: int) -> str:
        """
        Join the user's personal room.

        Older connections of the same user are evicted so the room always
        targets the most recent connection only.
        """
        room = personal_room(user_id)
        for stale in self.members(room):
            if stale != handle:
                await self.leave(stale, room)
                logger.info(f"Evicted superseded connection {stale} from {room}")
        await self.join(handle, room)
        return room

    async def join_conversations(self, handle: str, conversation_ids: Iterable[Any]) -> List[str]:
        """Join conversation rooms. Returns the ids that were newly joined."""
        joined = []
        for conversation_id in conversation_ids:
            if await self.join(handle, conversation_room(conversation_id)):
                joined.append(str(conversation_id))
        if joined:
            logger.debug(f"Connection {handle} joined conversations {joined}")
        return joined

    async def leave_conversation(self, handle: str, conversation_id: Any) -> bool:
        return await self.leave(handle, conversation_room(conversation_id))

    def _discard_member(self, room: str, handle: str) -> None:
        members = self.room_members.get(room)
        if members is None:
            return
        members.discard(handle)
        if not members:
            del self.room_members[room]

    # ---------------------- fan-out ----------------------

    async def emit_to_room(self, room: str, event: str, payload: Any, skip: Optional[str] = None) -> int:
        """
        Emit to every connection in a room.

        Returns the number of local target connections. An empty room is a
        silent no-op: callers must not assume live delivery happened.
        """
        targets = self.members(room)
        if skip:
            targets.discard(skip)
        if not targets and not self.distributed:
            logger.debug(f"Skipped {event}: room {room} has no members")
            return 0
        await self.server.emit(event, payload, room=room, skip_sid=skip)
        return len(targets)

    async def emit_to_rooms(self, rooms: Iterable[str], event: str, payload: Any) -> int:
        """Emit once to the union of several rooms; each connection receives it once."""
        rooms = sorted(set(rooms))
        live = [r for r in rooms if self.room_members.get(r)]
        targets = set().union(*(self.room_members[r] for r in live)) if live else set()
        if self.distributed:
            live = rooms
        if not live:
            logger.debug(f"Skipped {event}: none of {rooms} has members")
            return 0
        await self.server.emit(event, payload, room=live)
        return len(targets)

    async def emit_to_user(self, user_id: int, event: str, payload: Any) -> int:
        return await self.emit_to_room(personal_room(user_id), event, payload)

    async def emit_to_connection(self, handle: str, event: str, payload: Any) -> None:
        await self.server.emit(event, payload, room=handle)

    async def broadcast(self, event: str, payload: Any, skip_user_id: Optional[int] = None) -> int:
        """Emit to every registered connection except those bound to skip_user_id."""
        skip = self.connections_for(skip_user_id) if skip_user_id is not None else []
        targets = [h for h in self.connection_users if h not in skip]
        if not targets and not self.distributed:
            return 0
        await self.server.emit(event, payload, skip_sid=skip or None)
        return len(targets)

    def clear(self) -> None:
        """Clear all routing state (for testing)."""
        self.connection_users.clear()
        self.connection_rooms.clear()
        self.room_members.clear()
