from typing import Callable

from fastapi import Depends

from app.core.security import get_bearer_token
from app.db.database import async_session
from app.realtime.auth import Identity, authenticate_token
from app.realtime.presence import PresenceTracker
from app.realtime.relay import EventRelay


def get_session_factory() -> Callable:
    return async_session


async def get_db(session_factory: Callable = Depends(get_session_factory)):
    async with session_factory() as session:
        yield session


async def get_current_identity(
    token: str = Depends(get_bearer_token),
    session_factory: Callable = Depends(get_session_factory),
) -> Identity:
    """Resolve the bearer token into the acting user.

    Raises the same handshake errors as the socket path; the app's
    exception handlers turn them into error envelopes.
    """
    return await authenticate_token(token, session_factory)


def get_relay() -> EventRelay:
    from app.realtime.socket import relay
    return relay


def get_presence() -> PresenceTracker:
    from app.realtime.socket import presence
    return presence
