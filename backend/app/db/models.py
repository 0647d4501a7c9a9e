from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, Index, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from app.db.database import Base
from app.db.enums import UserRole, MessageStatus, MemoSeverity, TaskStatus, TaskPriority


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def default_notification_preferences() -> dict:
    return {
        "memo": {"email": True, "sms": False},
        "task_assignment": {"email": True, "sms": False},
    }


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        Index("ix_users_role", "role"),
        Index("ix_users_socket_id", "socket_id"),
    )
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone_number = Column(String(32))
    role = Column(String(20), default=UserRole.employee.value, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    # Durable presence projection, written only by the presence tracker
    socket_id = Column(String(64))
    is_online = Column(Boolean, default=False, nullable=False)
    last_seen = Column(DateTime(timezone=True))
    notification_preferences = Column(JSON, default=default_notification_preferences)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
        Index("ix_messages_status", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(String(64), nullable=False)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    receiver_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    text = Column(Text, nullable=False)
    status = Column(String(20), default=MessageStatus.sent.value, nullable=False)
    delivered_at = Column(DateTime(timezone=True))
    read_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow)

    sender = relationship("User", foreign_keys=[sender_id])
    receiver = relationship("User", foreign_keys=[receiver_id])


class Conversation(Base):
    """A direct conversation; its participants are fixed by the first message."""
    __tablename__ = "conversations"

    id = Column(String(64), primary_key=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    participants = relationship("ConversationParticipant", back_populates="conversation")


class ConversationParticipant(Base):
    __tablename__ = "conversation_participants"
    __table_args__ = (
        UniqueConstraint("conversation_id", "user_id", name="uq_conversation_participant"),
    )

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(String(64), ForeignKey("conversations.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    conversation = relationship("Conversation", back_populates="participants")


class Memo(Base):
    __tablename__ = "memos"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    summary = Column(String(500))
    severity = Column(String(20), default=MemoSeverity.medium.value, nullable=False)
    deadline = Column(DateTime(timezone=True))
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    created_by = relationship("User")
    recipients = relationship("MemoRecipient", back_populates="memo")


class MemoRecipient(Base):
    __tablename__ = "memo_recipients"
    __table_args__ = (
        UniqueConstraint("memo_id", "user_id", name="uq_memo_recipient"),
    )

    id = Column(Integer, primary_key=True, index=True)
    memo_id = Column(Integer, ForeignKey("memos.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    acknowledged_at = Column(DateTime(timezone=True))
    comment = Column(Text)

    memo = relationship("Memo", back_populates="recipients")
    user = relationship("User")


class Task(Base):
    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_status", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    status = Column(String(20), default=TaskStatus.todo.value, nullable=False)
    priority = Column(String(20), default=TaskPriority.medium.value, nullable=False)
    due_date = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    created_by = relationship("User")


class TaskAssignee(Base):
    __tablename__ = "task_assignees"
    __table_args__ = (
        UniqueConstraint("task_id", "user_id", name="uq_task_assignee"),
    )

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    assigned_at = Column(DateTime(timezone=True), default=utcnow)


class TaskFollower(Base):
    __tablename__ = "task_followers"
    __table_args__ = (
        UniqueConstraint("task_id", "user_id", name="uq_task_follower"),
    )

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
