"""
Socket.IO server implementation.

Handshake:
- the client presents a JWT in the auth object (auth.token) or as a
  Bearer Authorization header
- failures refuse the connection before any room is joined

Rooms:
- user_{user_id} - personal room, joined automatically on connect
- conversation_{conversation_id} - joined on request (join_conversations)

Client events:
- join_conversations, leave_conversation
- send_message, mark_message_read, typing
- create_memo, acknowledge_memo
- update_task

Every client event is answered through the Socket.IO acknowledgement
callback; failures are also reported as a scoped <domain>_error event to
the originating connection only.
"""
from typing import Any, Awaitable, Callable, Dict, Optional

import socketio
from socketio.exceptions import ConnectionRefusedError

from app.core.config import settings
from app.core.exceptions import RealtimeError, Unauthenticated
from app.core.logging import bind_socket_context, realtime_logger as logger
from app.db.database import async_session
from app.realtime.auth import Identity, authenticate_socket
from app.realtime.events import ERROR_EVENTS, ClientEvent, ServerEvent
from app.realtime.presence import PresenceTracker
from app.realtime.relay import EventRelay
from app.realtime.rooms import RoomRouter
from app.realtime.typing import TypingTracker
from app.services.notifications import NotificationDispatcher


def create_server() -> socketio.AsyncServer:
    client_manager = None
    if settings.SOCKETIO_REDIS_URL:
        client_manager = socketio.AsyncRedisManager(settings.SOCKETIO_REDIS_URL)
    return socketio.AsyncServer(
        async_mode="asgi",
        # FastAPI's CORS middleware handles HTTP; the socket endpoint mirrors its origins
        cors_allowed_origins=settings.CORS_ORIGINS,
        client_manager=client_manager,
        logger=False,
        engineio_logger=False,
    )


sio = create_server()

# Process-wide real-time state
rooms = RoomRouter(sio, distributed=bool(settings.SOCKETIO_REDIS_URL))
presence = PresenceTracker(rooms, session_factory=async_session)
typing_tracker = TypingTracker()
dispatcher = NotificationDispatcher()
relay = EventRelay(rooms, presence, dispatcher, typing=typing_tracker)

# Authenticated connections: sid -> Identity
connections: Dict[str, Identity] = {}


def success(data: Any = None) -> dict:
    return {"success": True, "data": data}


def failure(err: RealtimeError) -> dict:
    return {"success": False, "error": err.to_dict()}


@sio.event
async def connect(sid: str, environ: dict, auth: Optional[dict] = None):
    """
    Handle new socket connection.
    Authenticates the user, binds presence and joins the personal room.
    """
    bind_socket_context(sid)
    try:
        identity = await authenticate_socket(auth, environ)
    except RealtimeError as err:
        logger.warning(f"Socket connection refused: {sid} ({err.code})")
        raise ConnectionRefusedError(err.message, err.to_dict())

    connections[sid] = identity
    rooms.register(sid, identity.user_id)
    await rooms.join_personal_room(sid, identity.user_id)
    await presence.on_connect(identity.user_id, sid)

    # Sent once the handler has returned, so it follows the CONNECT ack
    relay.spawn(greet(sid, identity))
    logger.info(f"Socket connected: {sid} (user: {identity.user_id})")
    return True


async def greet(sid: str, identity: Identity) -> None:
    try:
        await rooms.emit_to_connection(sid, ServerEvent.connected.value, {
            "userId": identity.user_id,
            "role": identity.role,
        })
    except Exception as e:
        logger.warning(f"Could not greet connection {sid}", error=e)


@sio.event
async def disconnect(sid: str, *args):
    """
    Handle socket disconnection.
    Clears typing indicators, marks the user offline and forgets the connection.
    """
    identity = connections.pop(sid, None)
    bind_socket_context(sid, identity.user_id if identity else None)
    if identity is None:
        await rooms.unregister(sid)
        logger.info(f"Socket disconnected: {sid} (unauthenticated)")
        return

    # A superseded connection leaves the newer one's typing state alone
    if presence.current_handle(identity.user_id) in (sid, None):
        await relay.clear_typing(identity)
    await presence.on_disconnect(identity.user_id, sid)
    left = await rooms.unregister(sid)
    logger.info(f"Socket disconnected: {sid} (user: {identity.user_id}, rooms: {sorted(left)})")


# ============================================================
# Client event handlers: async (sid, identity, payload) -> ack data
# ============================================================

async def handle_join_conversations(sid: str, identity: Identity, data: Any) -> dict:
    joined = await relay.join_conversations(identity, sid, data)
    await rooms.emit_to_connection(sid, ServerEvent.conversations_joined.value, {"conversationIds": joined})
    return {"conversationIds": joined}


async def handle_leave_conversation(sid: str, identity: Identity, data: Any) -> dict:
    return {"left": await relay.leave_conversation(sid, data)}


async def handle_send_message(sid: str, identity: Identity, data: Any) -> dict:
    return await relay.send_message(identity, data)


async def handle_mark_message_read(sid: str, identity: Identity, data: Any) -> dict:
    return await relay.mark_message_read(identity, data)


async def handle_typing(sid: str, identity: Identity, data: Any) -> dict:
    return await relay.typing_changed(identity, data, handle=sid)


async def handle_create_memo(sid: str, identity: Identity, data: Any) -> dict:
    return await relay.create_memo(identity, data)


async def handle_acknowledge_memo(sid: str, identity: Identity, data: Any) -> dict:
    return await relay.acknowledge_memo(identity, data)


async def handle_update_task(sid: str, identity: Identity, data: Any) -> dict:
    return await relay.update_task(identity, data)


Handler = Callable[[str, Identity, Any], Awaitable[Any]]

HANDLERS: Dict[ClientEvent, Handler] = {
    ClientEvent.join_conversations: handle_join_conversations,
    ClientEvent.leave_conversation: handle_leave_conversation,
    ClientEvent.send_message: handle_send_message,
    ClientEvent.mark_message_read: handle_mark_message_read,
    ClientEvent.typing: handle_typing,
    ClientEvent.create_memo: handle_create_memo,
    ClientEvent.acknowledge_memo: handle_acknowledge_memo,
    ClientEvent.update_task: handle_update_task,
}


async def dispatch(event: ClientEvent, sid: str, data: Any = None) -> dict:
    """Run one client event and return the acknowledgement payload."""
    identity = connections.get(sid)
    bind_socket_context(sid, identity.user_id if identity else None)
    if identity is None:
        err = Unauthenticated("Not authenticated")
        await rooms.emit_to_connection(sid, ServerEvent.error.value, err.to_dict())
        return failure(err)

    try:
        result = await HANDLERS[event](sid, identity, data)
    except RealtimeError as err:
        logger.warning(f"{event.value} from user {identity.user_id} failed: {err.code} - {err.message}")
        await rooms.emit_to_connection(sid, ERROR_EVENTS[event], err.to_dict())
        return failure(err)
    except Exception as e:
        logger.exception(f"Unhandled error in {event.value}", error=e)
        err = RealtimeError()
        await rooms.emit_to_connection(sid, ERROR_EVENTS[event], err.to_dict())
        return failure(err)
    return success(result)


def _bind(event: ClientEvent) -> Callable:
    async def handler(sid: str, data: Any = None):
        return await dispatch(event, sid, data)
    handler.__name__ = f"on_{event.value}"
    return handler


for _event in ClientEvent:
    sio.on(_event.value, handler=_bind(_event))
