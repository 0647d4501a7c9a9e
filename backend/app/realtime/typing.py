"""
Typing indicator tracking for conversations.

Tracks which users are typing in each conversation with TTL-based
expiration. Nothing here is persisted; the tracker only exists so a
disconnect can clear indicators the client never stopped.
"""
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Set

from app.core.config import settings
from app.core.logging import realtime_logger as logger


@dataclass
class TypingUser:
    """Represents a user currently typing."""
    user_id: int
    started_at: float

    def is_expired(self, now: float, timeout: float) -> bool:
        return now - self.started_at > timeout


@dataclass
class TypingTracker:
    """
    Structure:
    - conversation_typing[conversation_id] = {user_id: TypingUser}
    - user_conversations[user_id] = set(conversation_ids)
    """
    ttl_seconds: float = settings.TYPING_TIMEOUT_SECONDS
    clock: Callable[[], float] = time.monotonic
    conversation_typing: Dict[str, Dict[int, TypingUser]] = field(default_factory=dict)
    user_conversations: Dict[int, Set[str]] = field(default_factory=dict)

    def start(self, conversation_id: str, user_id: int) -> bool:
        """
        Mark user as typing. Returns True if this is a new typing state,
        False if it only refreshed an existing one.
        """
        self._cleanup_expired(conversation_id)
        users = self.conversation_typing.setdefault(conversation_id, {})
        was_typing = user_id in users
        users[user_id] = TypingUser(user_id=user_id, started_at=self.clock())
        self.user_conversations.setdefault(user_id, set()).add(conversation_id)
        if not was_typing:
            logger.debug(f"User {user_id} started typing in conversation {conversation_id}")
        return not was_typing

    def stop(self, conversation_id: str, user_id: int) -> bool:
        """Returns True if the user was typing."""
        users = self.conversation_typing.get(conversation_id, {})
        if user_id not in users:
            return False
        del users[user_id]
        if not users:
            self.conversation_typing.pop(conversation_id, None)

        conversations = self.user_conversations.get(user_id)
        if conversations is not None:
            conversations.discard(conversation_id)
            if not conversations:
                del self.user_conversations[user_id]
        return True

    def user_disconnected(self, user_id: int) -> List[str]:
        """Stop typing everywhere. Returns the conversations the user was typing in."""
        conversations = sorted(self.user_conversations.get(user_id, set()))
        for conversation_id in conversations:
            self.stop(conversation_id, user_id)
        return conversations

    def typing_users(self, conversation_id: str) -> List[int]:
        self._cleanup_expired(conversation_id)
        return sorted(self.conversation_typing.get(conversation_id, {}))

    def _cleanup_expired(self, conversation_id: str) -> None:
        users = self.conversation_typing.get(conversation_id)
        if not users:
            return
        now = self.clock()
        expired = [uid for uid, u in users.items() if u.is_expired(now, self.ttl_seconds)]
        for user_id in expired:
            self.stop(conversation_id, user_id)

    def clear(self) -> None:
        """Clear all typing state (for testing)."""
        self.conversation_typing.clear()
        self.user_conversations.clear()
