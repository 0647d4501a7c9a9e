from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_identity, get_db, get_presence
from app.api.responses import ok
from app.core.exceptions import NotFound
from app.db import crud
from app.realtime.auth import Identity
from app.realtime.payloads import iso
from app.realtime.presence import PresenceTracker

router = APIRouter()


@router.get("")
async def online_users(
    identity: Identity = Depends(get_current_identity),
    presence: PresenceTracker = Depends(get_presence),
):
    return ok({"onlineUserIds": presence.online_user_ids()})


@router.get("/{user_id}")
async def user_presence(
    user_id: int,
    identity: Identity = Depends(get_current_identity),
    presence: PresenceTracker = Depends(get_presence),
    db: AsyncSession = Depends(get_db),
):
    state = presence.get(user_id)
    if state is not None:
        return ok(state.to_payload())

    # Not seen by this process; fall back to the persisted projection
    user = await crud.get_user(db, user_id)
    if user is None:
        raise NotFound("User not found")
    return ok({"userId": user.id, "lastSeen": iso(user.last_seen), "online": False})
