"""
Event names and domain event values for the real-time layer.
"""
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


class ClientEvent(str, enum.Enum):
    """Events a client may send over the socket."""
    join_conversations = "join_conversations"
    leave_conversation = "leave_conversation"
    send_message = "send_message"
    mark_message_read = "mark_message_read"
    typing = "typing"
    create_memo = "create_memo"
    acknowledge_memo = "acknowledge_memo"
    update_task = "update_task"


class EventKind(str, enum.Enum):
    """Completed state changes handed to the relay for fan-out."""
    message_sent = "message_sent"
    message_read = "message_read"
    typing_changed = "typing_changed"
    memo_created = "memo_created"
    memo_acknowledged = "memo_acknowledged"
    task_updated = "task_updated"


class ServerEvent(str, enum.Enum):
    """Events the server emits to clients."""
    connected = "connected"
    receive_message = "receive_message"
    new_message_notification = "new_message_notification"
    message_read = "message_read"
    user_typing = "user_typing"
    new_memo = "new_memo"
    memo_acknowledged = "memo_acknowledged"
    task_updated = "task_updated"
    user_online = "user_online"
    user_offline = "user_offline"
    conversations_joined = "conversations_joined"
    error = "error"


# Scoped error event per client action; reported to the origin connection only
ERROR_EVENTS = {
    ClientEvent.join_conversations: "conversation_error",
    ClientEvent.leave_conversation: "conversation_error",
    ClientEvent.send_message: "message_error",
    ClientEvent.mark_message_read: "message_error",
    ClientEvent.typing: "typing_error",
    ClientEvent.create_memo: "memo_error",
    ClientEvent.acknowledge_memo: "memo_error",
    ClientEvent.update_task: "task_error",
}


@dataclass(frozen=True)
class DomainEvent:
    """
    Something that already happened and was persisted.

    Consumed once by EventRelay.publish, then discarded.
    """
    kind: EventKind
    payload: Dict[str, Any]
    recipient_ids: Tuple[int, ...] = ()
    actor_id: Optional[int] = None
    conversation_id: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)
