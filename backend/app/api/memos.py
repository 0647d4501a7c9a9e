"""
Memo endpoints. Administrators broadcast memos; recipients acknowledge them.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends

from app.api.deps import get_current_identity, get_relay
from app.api.responses import ok
from app.realtime.auth import Identity
from app.realtime.relay import EventRelay

router = APIRouter()


@router.post("", status_code=201)
async def create_memo(
    body: Dict[str, Any] = Body(...),
    identity: Identity = Depends(get_current_identity),
    relay: EventRelay = Depends(get_relay),
):
    result = await relay.create_memo(identity, body)
    return ok(result, "Memo created")


@router.post("/{memo_id}/acknowledge")
async def acknowledge_memo(
    memo_id: int,
    body: Optional[Dict[str, Any]] = Body(None),
    identity: Identity = Depends(get_current_identity),
    relay: EventRelay = Depends(get_relay),
):
    ack = await relay.acknowledge_memo(identity, {**(body or {}), "memoId": memo_id})
    return ok(ack, "Memo acknowledged")
