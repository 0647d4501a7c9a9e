"""
Client-facing payload builders for real-time events.

All payloads use camelCase keys and ISO-8601 timestamps so REST and
socket consumers see the same shapes.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from app.db.models import Memo, Message, Task, User


def iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    # SQLite hands back naive datetimes; everything is stored as UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def build_user_brief(user: Optional[User]) -> Optional[Dict[str, Any]]:
    """Denormalized display fields for a user."""
    if user is None:
        return None
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "isOnline": bool(user.is_online),
        "lastSeen": iso(user.last_seen),
    }


def build_message_payload(
    message: Message,
    sender: Optional[User] = None,
    receiver: Optional[User] = None,
) -> Dict[str, Any]:
    return {
        "id": message.id,
        "conversationId": message.conversation_id,
        "senderId": message.sender_id,
        "receiverId": message.receiver_id,
        "text": message.text,
        "status": message.status,
        "deliveredAt": iso(message.delivered_at),
        "readAt": iso(message.read_at),
        "createdAt": iso(message.created_at),
        "sender": build_user_brief(sender),
        "receiver": build_user_brief(receiver),
    }


def build_memo_payload(
    memo: Memo,
    recipient_ids: Iterable[int],
    created_by: Optional[User] = None,
) -> Dict[str, Any]:
    return {
        "id": memo.id,
        "title": memo.title,
        "content": memo.content,
        "summary": memo.summary,
        "severity": memo.severity,
        "deadline": iso(memo.deadline),
        "createdById": memo.created_by_id,
        "createdBy": build_user_brief(created_by),
        "recipientIds": list(recipient_ids),
        "createdAt": iso(memo.created_at),
    }


def build_memo_ack_payload(
    memo: Memo,
    user: Optional[User],
    acknowledged_at: Optional[datetime],
    comment: Optional[str],
) -> Dict[str, Any]:
    return {
        "memoId": memo.id,
        "title": memo.title,
        "userId": user.id if user else None,
        "user": build_user_brief(user),
        "comment": comment,
        "acknowledgedAt": iso(acknowledged_at),
    }


def build_task_payload(
    task: Task,
    assignee_ids: List[int],
    follower_ids: List[int],
) -> Dict[str, Any]:
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "status": task.status,
        "priority": task.priority,
        "dueDate": iso(task.due_date),
        "completedAt": iso(task.completed_at),
        "createdById": task.created_by_id,
        "assigneeIds": list(assignee_ids),
        "followerIds": list(follower_ids),
        "updatedAt": iso(task.updated_at),
    }
