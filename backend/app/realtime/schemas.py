"""
Pydantic schemas for socket payloads and REST bodies.

Clients speak camelCase (receiverId, conversationId); fields are also
accepted by their Python names.
"""
from datetime import datetime
from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from app.core.exceptions import InvalidPayload
from app.db.enums import MemoSeverity, TaskPriority, TaskStatus

T = TypeVar("T", bound=BaseModel)


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        str_strip_whitespace = True


def _as_str(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


# ---------------------- Conversations ----------------------

class JoinConversationsPayload(CamelModel):
    conversation_ids: List[str] = Field(..., min_length=1)

    @field_validator("conversation_ids", mode="before")
    @classmethod
    def coerce_ids(cls, value):
        if isinstance(value, (list, tuple)):
            return [_as_str(v) for v in value]
        return value


class LeaveConversationPayload(CamelModel):
    conversation_id: str = Field(..., min_length=1)

    @field_validator("conversation_id", mode="before")
    @classmethod
    def coerce_id(cls, value):
        return _as_str(value)


# ---------------------- Messages ----------------------

class SendMessagePayload(CamelModel):
    receiver_id: int
    text: str = Field(..., min_length=1, max_length=5000)
    conversation_id: str = Field(..., min_length=1, max_length=64)

    @field_validator("conversation_id", mode="before")
    @classmethod
    def coerce_id(cls, value):
        return _as_str(value)


class MarkMessageReadPayload(CamelModel):
    message_id: int
    conversation_id: Optional[str] = None

    @field_validator("conversation_id", mode="before")
    @classmethod
    def coerce_id(cls, value):
        return _as_str(value)


class TypingPayload(CamelModel):
    conversation_id: str = Field(..., min_length=1)
    is_typing: bool = True

    @field_validator("conversation_id", mode="before")
    @classmethod
    def coerce_id(cls, value):
        return _as_str(value)


# ---------------------- Memos ----------------------

class CreateMemoPayload(CamelModel):
    title: str = Field(..., min_length=1, max_length=255)
    content: str = Field(..., min_length=1)
    summary: Optional[str] = Field(None, max_length=500)
    severity: MemoSeverity = MemoSeverity.medium
    deadline: Optional[datetime] = None
    recipient_ids: List[int] = Field(..., min_length=1)


class AcknowledgeMemoPayload(CamelModel):
    memo_id: int
    comment: Optional[str] = Field(None, max_length=2000)


# ---------------------- Tasks ----------------------

class UpdateTaskPayload(CamelModel):
    task_id: int
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[datetime] = None
    assignee_ids: Optional[List[int]] = None

    def field_changes(self) -> dict:
        """Column changes requested by the client, enum values unwrapped."""
        changes = self.model_dump(exclude_unset=True, exclude={"task_id", "assignee_ids"})
        for key in ("status", "priority"):
            if changes.get(key) is not None:
                changes[key] = changes[key].value if hasattr(changes[key], "value") else changes[key]
        return changes


def parse_payload(model: Type[T], data: Any) -> T:
    """Validate an inbound payload, converting failures into InvalidPayload."""
    if isinstance(data, model):
        return data
    if not isinstance(data, dict):
        raise InvalidPayload("Payload must be an object")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise InvalidPayload(f"{location}: {first.get('msg')}" if location else first.get("msg"))
