"""
Message endpoints.

Writes go through the same relay methods as the socket events, so a
message sent over REST produces the same broadcasts as one sent over the
socket. The conversation listing is the polling fallback for clients
without a live connection.
"""
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_identity, get_db, get_relay
from app.api.responses import ok
from app.db import crud
from app.realtime.auth import Identity
from app.realtime.payloads import build_message_payload
from app.realtime.relay import EventRelay

router = APIRouter()


@router.post("", status_code=201)
async def send_message(
    body: Dict[str, Any] = Body(...),
    identity: Identity = Depends(get_current_identity),
    relay: EventRelay = Depends(get_relay),
):
    message = await relay.send_message(identity, body)
    return ok(message, "Message sent")


@router.patch("/{message_id}/read")
async def mark_message_read(
    message_id: int,
    identity: Identity = Depends(get_current_identity),
    relay: EventRelay = Depends(get_relay),
):
    receipt = await relay.mark_message_read(identity, {"messageId": message_id})
    return ok(receipt, "Message marked as read")


@router.get("/conversation/{conversation_id}")
async def list_conversation_messages(
    conversation_id: str,
    limit: int = Query(50, ge=1, le=200),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    messages = await crud.list_conversation_messages(db, conversation_id, identity.user_id, limit=limit)
    users = {
        u.id: u
        for u in await crud.get_users(db, {m.sender_id for m in messages} | {m.receiver_id for m in messages})
    }
    data = [build_message_payload(m, users.get(m.sender_id), users.get(m.receiver_id)) for m in messages]
    return ok(data, f"{len(data)} messages")
