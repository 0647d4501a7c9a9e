"""
Real-time presence tracking.

One current connection handle per user (last writer wins): a second
device replaces the first instead of adding to it. The in-memory state is
authoritative for this process; the users table carries a best-effort
projection (socket_id / is_online / last_seen) for REST readers.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from app.core.logging import presence_logger as logger
from app.db import crud
from app.realtime.rooms import RoomRouter

USER_ONLINE = "user_online"
USER_OFFLINE = "user_offline"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PresenceState:
    user_id: int
    connection_handle: Optional[str] = None
    online: bool = False
    last_seen: Optional[datetime] = None
    connected_at: Optional[datetime] = None

    def to_payload(self) -> dict:
        return {
            "userId": self.user_id,
            "lastSeen": self.last_seen.isoformat() if self.last_seen else None,
            "online": self.online,
        }


@dataclass
class PresenceTracker:
    rooms: RoomRouter
    session_factory: Optional[Callable] = None
    clock: Callable[[], datetime] = _now
    states: Dict[int, PresenceState] = field(default_factory=dict)

    async def on_connect(self, user_id: int, connection_handle: str) -> PresenceState:
        """Bind the user's current connection and announce them online to everyone else."""
        state = self.states.get(user_id)
        if state is not None and state.online and state.connection_handle != connection_handle:
            logger.info(
                f"User {user_id} reconnected from a new device; "
                f"{state.connection_handle} superseded by {connection_handle}"
            )

        state = PresenceState(
            user_id=user_id,
            connection_handle=connection_handle,
            online=True,
            last_seen=None,
            connected_at=self.clock(),
        )
        self.states[user_id] = state

        await self._persist(state)
        await self._announce(USER_ONLINE, state)
        logger.info(f"User {user_id} came online (connection: {connection_handle})")
        return state

    async def on_disconnect(self, user_id: int, connection_handle: Optional[str] = None) -> Optional[PresenceState]:
        """
        Mark the user offline and announce it.

        A disconnect from a connection that was already superseded by a newer
        one is ignored; returns None in that case.
        """
        state = self.states.get(user_id)
        if state is None or not state.online:
            return None
        if connection_handle is not None and state.connection_handle != connection_handle:
            logger.debug(f"Ignoring disconnect of superseded connection {connection_handle} for user {user_id}")
            return None

        now = self.clock()
        if state.connected_at and now < state.connected_at:
            now = state.connected_at

        state.connection_handle = None
        state.online = False
        state.last_seen = now

        await self._persist(state)
        await self._announce(USER_OFFLINE, state)
        logger.info(f"User {user_id} went offline")
        return state

    async def _persist(self, state: PresenceState) -> None:
        if self.session_factory is None:
            return
        try:
            async with self.session_factory() as db:
                await crud.save_presence(
                    db,
                    state.user_id,
                    socket_id=state.connection_handle,
                    is_online=state.online,
                    last_seen=state.last_seen,
                )
                await db.commit()
        except Exception as e:
            logger.warning(f"Presence update for user {state.user_id} was not saved", error=e)

    async def _announce(self, event: str, state: PresenceState) -> None:
        try:
            await self.rooms.broadcast(event, state.to_payload(), skip_user_id=state.user_id)
        except Exception as e:
            logger.warning(f"Failed to broadcast {event} for user {state.user_id}", error=e)

    def get(self, user_id: int) -> Optional[PresenceState]:
        return self.states.get(user_id)

    def is_online(self, user_id: int) -> bool:
        state = self.states.get(user_id)
        return bool(state and state.online)

    def current_handle(self, user_id: int) -> Optional[str]:
        state = self.states.get(user_id)
        return state.connection_handle if state else None

    def online_user_ids(self) -> List[int]:
        return sorted(uid for uid, s in self.states.items() if s.online)

    def clear(self) -> None:
        """Clear all presence data (for testing)."""
        self.states.clear()
