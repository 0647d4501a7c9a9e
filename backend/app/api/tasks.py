from typing import Any, Dict

from fastapi import APIRouter, Body, Depends

from app.api.deps import get_current_identity, get_relay
from app.api.responses import ok
from app.realtime.auth import Identity
from app.realtime.relay import EventRelay

router = APIRouter()


@router.patch("/{task_id}")
async def update_task(
    task_id: int,
    body: Dict[str, Any] = Body(...),
    identity: Identity = Depends(get_current_identity),
    relay: EventRelay = Depends(get_relay),
):
    task = await relay.update_task(identity, {**body, "taskId": task_id})
    return ok(task, "Task updated")
