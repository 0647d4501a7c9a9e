from datetime import datetime
from typing import Iterable, List, Optional, Set

from sqlalchemy import select, update, desc, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import db_logger, log_operation
from app.db.enums import MessageStatus
from app.db.models import (
    User, Message, Conversation, ConversationParticipant, Memo, MemoRecipient,
    Task, TaskAssignee, TaskFollower, utcnow,
)


# ---------------------- Users / presence ----------------------

async def get_user(db: AsyncSession, user_id: int) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_users(db: AsyncSession, user_ids: Iterable[int], active_only: bool = False) -> List[User]:
    ids = list(set(user_ids))
    if not ids:
        return []
    query = select(User).where(User.id.in_(ids))
    if active_only:
        query = query.where(User.is_active.is_(True))
    result = await db.execute(query.order_by(User.id))
    return list(result.scalars().all())


@log_operation("save_presence", db_logger)
async def save_presence(
    db: AsyncSession,
    user_id: int,
    socket_id: Optional[str],
    is_online: bool,
    last_seen: Optional[datetime],
) -> None:
    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(socket_id=socket_id, is_online=is_online, last_seen=last_seen)
    )


# ---------------------- Messages ----------------------

@log_operation("create_message", db_logger)
async def create_message(
    db: AsyncSession,
    conversation_id: str,
    sender_id: int,
    receiver_id: int,
    text: str,
) -> Message:
    message = Message(
        conversation_id=conversation_id,
        sender_id=sender_id,
        receiver_id=receiver_id,
        text=text,
        status=MessageStatus.sent.value,
        delivered_at=None,
        read_at=None,
        created_at=utcnow(),
    )
    db.add(message)
    await db.flush()
    return message


async def get_message(db: AsyncSession, message_id: int) -> Optional[Message]:
    result = await db.execute(select(Message).where(Message.id == message_id))
    return result.scalar_one_or_none()


async def mark_message_delivered(db: AsyncSession, message_id: int) -> bool:
    """Advance a message from sent to delivered. Returns False if it had already moved on."""
    result = await db.execute(
        update(Message)
        .where(Message.id == message_id, Message.status == MessageStatus.sent.value)
        .values(status=MessageStatus.delivered.value, delivered_at=utcnow())
    )
    return result.rowcount > 0


async def mark_message_read(db: AsyncSession, message: Message) -> Message:
    now = utcnow()
    message.status = MessageStatus.read.value
    message.read_at = now
    if message.delivered_at is None:
        message.delivered_at = now
    await db.flush()
    return message


async def list_conversation_messages(
    db: AsyncSession, conversation_id: str, user_id: int, limit: int = 50
) -> List[Message]:
    """Latest messages of a conversation that the user sent or received."""
    result = await db.execute(
        select(Message)
        .where(
            Message.conversation_id == conversation_id,
            or_(Message.sender_id == user_id, Message.receiver_id == user_id),
        )
        .order_by(desc(Message.created_at), desc(Message.id))
        .limit(limit)
    )
    return list(result.scalars().all())


# ---------------------- Conversations ----------------------

async def get_conversation_participant_ids(db: AsyncSession, conversation_id: str) -> List[int]:
    result = await db.execute(
        select(ConversationParticipant.user_id)
        .where(ConversationParticipant.conversation_id == conversation_id)
        .order_by(ConversationParticipant.user_id)
    )
    return [row[0] for row in result.all()]


async def get_joinable_conversation_ids(db: AsyncSession, user_id: int, conversation_ids: Iterable[str]) -> Set[str]:
    """The subset of conversation_ids the user participates in."""
    ids = list(set(conversation_ids))
    if not ids:
        return set()
    result = await db.execute(
        select(ConversationParticipant.conversation_id).where(
            ConversationParticipant.user_id == user_id,
            ConversationParticipant.conversation_id.in_(ids),
        )
    )
    return {row[0] for row in result.all()}


@log_operation("create_conversation", db_logger)
async def create_conversation(db: AsyncSession, conversation_id: str, participant_ids: Iterable[int]) -> Conversation:
    conversation = Conversation(id=conversation_id, created_at=utcnow())
    db.add(conversation)
    await db.flush()
    for user_id in sorted(set(participant_ids)):
        db.add(ConversationParticipant(conversation_id=conversation_id, user_id=user_id))
    await db.flush()
    return conversation


# ---------------------- Memos ----------------------

@log_operation("create_memo", db_logger)
async def create_memo(
    db: AsyncSession,
    created_by_id: int,
    title: str,
    content: str,
    severity: str,
    recipient_ids: Iterable[int],
    summary: Optional[str] = None,
    deadline: Optional[datetime] = None,
) -> Memo:
    memo = Memo(
        title=title,
        content=content,
        summary=summary,
        severity=severity,
        deadline=deadline,
        created_by_id=created_by_id,
        created_at=utcnow(),
    )
    db.add(memo)
    await db.flush()
    for user_id in sorted(set(recipient_ids)):
        db.add(MemoRecipient(memo_id=memo.id, user_id=user_id))
    await db.flush()
    return memo


async def get_memo(db: AsyncSession, memo_id: int) -> Optional[Memo]:
    result = await db.execute(select(Memo).where(Memo.id == memo_id))
    return result.scalar_one_or_none()


async def get_memo_recipient(db: AsyncSession, memo_id: int, user_id: int) -> Optional[MemoRecipient]:
    result = await db.execute(
        select(MemoRecipient).where(MemoRecipient.memo_id == memo_id, MemoRecipient.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def get_memo_recipient_ids(db: AsyncSession, memo_id: int) -> List[int]:
    result = await db.execute(
        select(MemoRecipient.user_id).where(MemoRecipient.memo_id == memo_id).order_by(MemoRecipient.user_id)
    )
    return [row[0] for row in result.all()]


async def acknowledge_memo(db: AsyncSession, recipient: MemoRecipient, comment: Optional[str]) -> MemoRecipient:
    recipient.acknowledged_at = utcnow()
    recipient.comment = comment
    await db.flush()
    return recipient


# ---------------------- Tasks ----------------------

async def get_task(db: AsyncSession, task_id: int) -> Optional[Task]:
    result = await db.execute(select(Task).where(Task.id == task_id))
    return result.scalar_one_or_none()


async def get_task_assignee_ids(db: AsyncSession, task_id: int) -> List[int]:
    result = await db.execute(
        select(TaskAssignee.user_id).where(TaskAssignee.task_id == task_id).order_by(TaskAssignee.user_id)
    )
    return [row[0] for row in result.all()]


async def get_task_follower_ids(db: AsyncSession, task_id: int) -> List[int]:
    result = await db.execute(
        select(TaskFollower.user_id).where(TaskFollower.task_id == task_id).order_by(TaskFollower.user_id)
    )
    return [row[0] for row in result.all()]


async def set_task_assignees(db: AsyncSession, task_id: int, user_ids: Iterable[int]) -> List[int]:
    """Replace the assignee set of a task. Returns the ids that were newly added."""
    wanted = set(user_ids)
    current = set(await get_task_assignee_ids(db, task_id))

    removed = current - wanted
    if removed:
        result = await db.execute(
            select(TaskAssignee).where(TaskAssignee.task_id == task_id, TaskAssignee.user_id.in_(removed))
        )
        for row in result.scalars().all():
            await db.delete(row)

    added = sorted(wanted - current)
    for user_id in added:
        db.add(TaskAssignee(task_id=task_id, user_id=user_id))
    await db.flush()
    return added


@log_operation("update_task", db_logger)
async def update_task(db: AsyncSession, task: Task, changes: dict) -> Task:
    for field, value in changes.items():
        setattr(task, field, value)
    task.updated_at = utcnow()
    await db.flush()
    return task
