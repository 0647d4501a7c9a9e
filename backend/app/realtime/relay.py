"""
Event relay: persisted mutations in, real-time fan-out and durable
notifications out.

Every write follows the same order:
validate -> authorize -> persist (commit) -> populate -> broadcast -> notify.
Nothing is broadcast unless the commit succeeded. Broadcast and
notification failures are logged and never surface to the writer.

Socket handlers and REST endpoints call the same methods, so both paths
produce identical events.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from pydantic.alias_generators import to_camel
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import (
    AuthorizationDenied, InvalidPayload, NotFound, PersistenceFailure, RealtimeError,
)
from app.core.logging import relay_logger as logger
from app.db import crud
from app.db.database import async_session
from app.db.enums import MessageStatus, TaskStatus
from app.db.models import utcnow
from app.realtime.auth import Identity
from app.realtime.events import DomainEvent, EventKind, ServerEvent
from app.realtime.payloads import (
    build_memo_ack_payload, build_memo_payload, build_message_payload, build_task_payload, iso,
)
from app.realtime.presence import PresenceTracker
from app.realtime.rooms import RoomRouter, conversation_room, personal_room
from app.realtime.schemas import (
    AcknowledgeMemoPayload, CreateMemoPayload, JoinConversationsPayload, LeaveConversationPayload,
    MarkMessageReadPayload, SendMessagePayload, TypingPayload, UpdateTaskPayload, parse_payload,
)
from app.realtime.typing import TypingTracker
from app.services.notifications import DeliveryResult, NotificationDispatcher, NotificationKind

# Task columns that may not be cleared by an update
REQUIRED_TASK_FIELDS = ("title", "status", "priority")


class EventRelay:
    def __init__(
        self,
        rooms: RoomRouter,
        presence: PresenceTracker,
        dispatcher: NotificationDispatcher,
        session_factory: Optional[Callable] = None,
        typing: Optional[TypingTracker] = None,
    ):
        self.rooms = rooms
        self.presence = presence
        self.dispatcher = dispatcher
        self.session_factory = session_factory or async_session
        self.typing = typing or TypingTracker()
        self._background: Set[asyncio.Task] = set()
        self._publishers: Dict[EventKind, Callable[[DomainEvent], Awaitable[List[DeliveryResult]]]] = {
            EventKind.message_sent: self._publish_message_sent,
            EventKind.message_read: self._publish_message_read,
            EventKind.typing_changed: self._publish_typing,
            EventKind.memo_created: self._publish_memo_created,
            EventKind.memo_acknowledged: self._publish_memo_acknowledged,
            EventKind.task_updated: self._publish_task_updated,
        }

    # ---------------------- infrastructure ----------------------

    @asynccontextmanager
    async def transaction(self):
        """Session scope that commits on exit and maps database errors to PersistenceFailure."""
        async with self.session_factory() as db:
            try:
                yield db
                await db.commit()
            except RealtimeError:
                await db.rollback()
                raise
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error("Persistence failed, nothing will be broadcast", error=e)
                raise PersistenceFailure() from e

    async def _deliver(self, description: str, action: Awaitable[Any]) -> Any:
        """Await a best-effort broadcast; failures are logged as delivery failures."""
        try:
            return await action
        except Exception as e:
            logger.warning(f"Delivery failed: {description}", error=e)
            return None

    async def _notify(self, kind: NotificationKind, payload: dict, recipient_ids) -> List[DeliveryResult]:
        try:
            return await self.dispatcher.notify(kind, payload, recipient_ids)
        except Exception as e:
            logger.error(f"Notification dispatch for {kind.value} failed", error=e)
            return []

    def spawn(self, coro: Awaitable[Any]) -> None:
        """Run a follow-up after the current handler returns; awaited by drain()."""
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for background follow-ups (delivered-status updates, connect greetings) to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def publish(self, event: DomainEvent) -> List[DeliveryResult]:
        """Fan out a completed mutation. Never raises."""
        publisher = self._publishers[event.kind]
        try:
            return await publisher(event)
        except Exception as e:
            logger.error(f"Publishing {event.kind.value} failed", error=e)
            return []

    # ---------------------- conversations ----------------------

    async def join_conversations(self, actor: Identity, handle: str, data: Any) -> List[str]:
        """Join conversation rooms; all-or-nothing, participants only."""
        payload = parse_payload(JoinConversationsPayload, data)
        async with self.transaction() as db:
            allowed = await crud.get_joinable_conversation_ids(db, actor.user_id, payload.conversation_ids)
        denied = [c for c in payload.conversation_ids if c not in allowed]
        if denied:
            raise AuthorizationDenied(f"Not a participant in conversations: {denied}")
        return await self.rooms.join_conversations(handle, payload.conversation_ids)

    async def leave_conversation(self, handle: str, data: Any) -> bool:
        payload = parse_payload(LeaveConversationPayload, data)
        return await self.rooms.leave_conversation(handle, payload.conversation_id)

    # ---------------------- messages ----------------------

    async def send_message(self, actor: Identity, data: Any) -> dict:
        payload = parse_payload(SendMessagePayload, data)

        async with self.transaction() as db:
            receiver = await crud.get_user(db, payload.receiver_id)
            if receiver is None or not receiver.is_active:
                raise NotFound("Receiver not found")
            participants = await crud.get_conversation_participant_ids(db, payload.conversation_id)
            if not participants:
                await crud.create_conversation(db, payload.conversation_id, [actor.user_id, receiver.id])
            elif actor.user_id not in participants or receiver.id not in participants:
                raise AuthorizationDenied("Conversation belongs to other participants")
            message = await crud.create_message(
                db,
                conversation_id=payload.conversation_id,
                sender_id=actor.user_id,
                receiver_id=receiver.id,
                text=payload.text,
            )
            sender = await crud.get_user(db, actor.user_id)
            populated = build_message_payload(message, sender, receiver)

        await self.publish(DomainEvent(
            kind=EventKind.message_sent,
            payload=populated,
            recipient_ids=(receiver.id,),
            actor_id=actor.user_id,
            conversation_id=payload.conversation_id,
        ))

        if self.presence.is_online(receiver.id):
            self.spawn(self._advance_delivered(message.id))
        return populated

    async def _advance_delivered(self, message_id: int) -> None:
        try:
            async with self.transaction() as db:
                await crud.mark_message_delivered(db, message_id)
        except Exception as e:
            logger.warning(f"Could not mark message {message_id} as delivered", error=e)

    async def _publish_message_sent(self, event: DomainEvent) -> List[DeliveryResult]:
        await self._deliver(
            ServerEvent.receive_message.value,
            self.rooms.emit_to_room(
                conversation_room(event.conversation_id), ServerEvent.receive_message.value, event.payload,
            ),
        )
        for receiver_id in event.recipient_ids:
            await self._deliver(
                ServerEvent.new_message_notification.value,
                self.rooms.emit_to_user(
                    receiver_id,
                    ServerEvent.new_message_notification.value,
                    {"message": event.payload, "conversationId": event.conversation_id},
                ),
            )
        return []

    async def mark_message_read(self, actor: Identity, data: Any) -> dict:
        payload = parse_payload(MarkMessageReadPayload, data)

        async with self.transaction() as db:
            message = await crud.get_message(db, payload.message_id)
            if message is None:
                raise NotFound("Message not found")
            if message.receiver_id != actor.user_id:
                raise AuthorizationDenied("Only the receiver can mark a message as read")
            already_read = message.status == MessageStatus.read.value
            if not already_read:
                message = await crud.mark_message_read(db, message)
            receipt = {
                "messageId": message.id,
                "conversationId": message.conversation_id,
                "readBy": actor.user_id,
                "readAt": iso(message.read_at),
            }
            sender_id = message.sender_id

        if not already_read:
            await self.publish(DomainEvent(
                kind=EventKind.message_read,
                payload=receipt,
                recipient_ids=(sender_id,),
                actor_id=actor.user_id,
                conversation_id=receipt["conversationId"],
            ))
        return receipt

    async def _publish_message_read(self, event: DomainEvent) -> List[DeliveryResult]:
        rooms = [conversation_room(event.conversation_id)]
        rooms.extend(personal_room(uid) for uid in event.recipient_ids)
        await self._deliver(
            ServerEvent.message_read.value,
            self.rooms.emit_to_rooms(rooms, ServerEvent.message_read.value, event.payload),
        )
        return []

    async def typing_changed(self, actor: Identity, data: Any, handle: Optional[str] = None) -> dict:
        """Ephemeral; tracked in memory only and never acknowledged."""
        payload = parse_payload(TypingPayload, data)
        if handle is not None and conversation_room(payload.conversation_id) not in self.rooms.rooms_of(handle):
            raise AuthorizationDenied("Join the conversation before sending typing indicators")
        if payload.is_typing:
            self.typing.start(payload.conversation_id, actor.user_id)
        else:
            self.typing.stop(payload.conversation_id, actor.user_id)

        indicator = {
            "userId": actor.user_id,
            "name": actor.name,
            "conversationId": payload.conversation_id,
            "isTyping": payload.is_typing,
        }
        await self.publish(DomainEvent(
            kind=EventKind.typing_changed,
            payload=indicator,
            actor_id=actor.user_id,
            conversation_id=payload.conversation_id,
            meta={"handle": handle},
        ))
        return indicator

    async def clear_typing(self, actor: Identity) -> List[str]:
        """Stop every typing indicator of a user that just went away."""
        conversations = self.typing.user_disconnected(actor.user_id)
        for conversation_id in conversations:
            await self.publish(DomainEvent(
                kind=EventKind.typing_changed,
                payload={
                    "userId": actor.user_id,
                    "name": actor.name,
                    "conversationId": conversation_id,
                    "isTyping": False,
                },
                actor_id=actor.user_id,
                conversation_id=conversation_id,
            ))
        return conversations

    async def _publish_typing(self, event: DomainEvent) -> List[DeliveryResult]:
        await self._deliver(
            ServerEvent.user_typing.value,
            self.rooms.emit_to_room(
                conversation_room(event.conversation_id),
                ServerEvent.user_typing.value,
                event.payload,
                skip=event.meta.get("handle"),
            ),
        )
        return []

    # ---------------------- memos ----------------------

    async def create_memo(self, actor: Identity, data: Any) -> dict:
        if not actor.is_admin:
            raise AuthorizationDenied("Only administrators can send memos")
        payload = parse_payload(CreateMemoPayload, data)

        async with self.transaction() as db:
            recipients = await crud.get_users(db, payload.recipient_ids, active_only=True)
            missing = sorted(set(payload.recipient_ids) - {u.id for u in recipients})
            if missing:
                raise NotFound(f"Unknown recipients: {missing}")
            memo = await crud.create_memo(
                db,
                created_by_id=actor.user_id,
                title=payload.title,
                content=payload.content,
                severity=payload.severity.value,
                recipient_ids=payload.recipient_ids,
                summary=payload.summary,
                deadline=payload.deadline,
            )
            creator = await crud.get_user(db, actor.user_id)
            recipient_ids = await crud.get_memo_recipient_ids(db, memo.id)
            populated = build_memo_payload(memo, recipient_ids, creator)

        results = await self.publish(DomainEvent(
            kind=EventKind.memo_created,
            payload=populated,
            recipient_ids=tuple(recipient_ids),
            actor_id=actor.user_id,
        ))
        return {"memo": populated, "notifications": [r.to_dict() for r in results]}

    async def _publish_memo_created(self, event: DomainEvent) -> List[DeliveryResult]:
        for recipient_id in event.recipient_ids:
            if self.presence.is_online(recipient_id):
                await self._deliver(
                    ServerEvent.new_memo.value,
                    self.rooms.emit_to_user(recipient_id, ServerEvent.new_memo.value, event.payload),
                )
        return await self._notify(NotificationKind.memo_created, event.payload, event.recipient_ids)

    async def acknowledge_memo(self, actor: Identity, data: Any) -> dict:
        payload = parse_payload(AcknowledgeMemoPayload, data)

        async with self.transaction() as db:
            memo = await crud.get_memo(db, payload.memo_id)
            if memo is None:
                raise NotFound("Memo not found")
            recipient = await crud.get_memo_recipient(db, memo.id, actor.user_id)
            if recipient is None:
                raise AuthorizationDenied("Only recipients can acknowledge this memo")
            already_acknowledged = recipient.acknowledged_at is not None
            if not already_acknowledged:
                recipient = await crud.acknowledge_memo(db, recipient, payload.comment)
            user = await crud.get_user(db, actor.user_id)
            ack = build_memo_ack_payload(memo, user, recipient.acknowledged_at, recipient.comment)
            creator_id = memo.created_by_id

        if not already_acknowledged:
            await self.publish(DomainEvent(
                kind=EventKind.memo_acknowledged,
                payload=ack,
                recipient_ids=(creator_id,),
                actor_id=actor.user_id,
            ))
        return ack

    async def _publish_memo_acknowledged(self, event: DomainEvent) -> List[DeliveryResult]:
        for creator_id in event.recipient_ids:
            await self._deliver(
                ServerEvent.memo_acknowledged.value,
                self.rooms.emit_to_user(creator_id, ServerEvent.memo_acknowledged.value, event.payload),
            )
        return []

    # ---------------------- tasks ----------------------

    async def update_task(self, actor: Identity, data: Any) -> dict:
        payload = parse_payload(UpdateTaskPayload, data)
        changes = payload.field_changes()
        for field in REQUIRED_TASK_FIELDS:
            if field in changes and changes[field] is None:
                del changes[field]
        if not changes and payload.assignee_ids is None:
            raise InvalidPayload("No task fields to update")

        async with self.transaction() as db:
            task = await crud.get_task(db, payload.task_id)
            if task is None:
                raise NotFound("Task not found")
            previous_assignees = await crud.get_task_assignee_ids(db, task.id)
            is_creator = task.created_by_id == actor.user_id
            may_manage = is_creator or actor.is_admin
            if not may_manage and actor.user_id not in previous_assignees:
                raise AuthorizationDenied("Only the task creator, an assignee or an administrator can update this task")
            if payload.assignee_ids is not None and not may_manage:
                raise AuthorizationDenied("Only the task creator or an administrator can change assignees")

            if payload.assignee_ids is not None:
                known = await crud.get_users(db, payload.assignee_ids, active_only=True)
                missing = sorted(set(payload.assignee_ids) - {u.id for u in known})
                if missing:
                    raise NotFound(f"Unknown assignees: {missing}")

            updated_fields = sorted(to_camel(f) for f in changes)
            if payload.assignee_ids is not None:
                updated_fields.append("assigneeIds")
            new_status = changes.get("status")
            if new_status and new_status != task.status:
                changes["completed_at"] = utcnow() if new_status == TaskStatus.completed.value else None

            task = await crud.update_task(db, task, changes)
            added = []
            if payload.assignee_ids is not None:
                added = await crud.set_task_assignees(db, task.id, payload.assignee_ids)
            assignees = await crud.get_task_assignee_ids(db, task.id)
            followers = await crud.get_task_follower_ids(db, task.id)
            populated = build_task_payload(task, assignees, followers)
            audience = {task.created_by_id, *assignees, *followers, *previous_assignees}

        await self.publish(DomainEvent(
            kind=EventKind.task_updated,
            payload=populated,
            recipient_ids=tuple(sorted(audience)),
            actor_id=actor.user_id,
            meta={"new_assignees": added, "updated_fields": updated_fields},
        ))
        return populated

    async def _publish_task_updated(self, event: DomainEvent) -> List[DeliveryResult]:
        update = {**event.payload, "updatedBy": event.actor_id, "updatedFields": event.meta.get("updated_fields", [])}
        await self._deliver(
            ServerEvent.task_updated.value,
            self.rooms.emit_to_rooms(
                [personal_room(uid) for uid in event.recipient_ids], ServerEvent.task_updated.value, update,
            ),
        )
        new_assignees = event.meta.get("new_assignees") or []
        if new_assignees:
            return await self._notify(NotificationKind.task_assigned, event.payload, new_assignees)
        return []
