"""
Durable notification dispatch (email / SMS).

Driven by the same domain events as the live relay but independent of
whether the recipient is connected. Every channel attempt is isolated and
its outcome is collected; nothing here raises to the caller.
"""
import enum
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Iterable, List, Optional

from app.core.config import settings
from app.core.exceptions import DeliveryFailure
from app.core.logging import notify_logger as logger
from app.db import crud
from app.db.database import async_session
from app.db.enums import NotificationChannel, SMS_SEVERITIES, TASK_PRIORITY_SEVERITY
from app.services import templates
from app.services.email import EmailTransport
from app.services.sms import SmsTransport


class NotificationKind(str, enum.Enum):
    memo_created = "memo_created"
    task_assigned = "task_assigned"


# Key into User.notification_preferences for each kind
PREFERENCE_KEYS = {
    NotificationKind.memo_created: "memo",
    NotificationKind.task_assigned: "task_assignment",
}


@dataclass
class DeliveryResult:
    user_id: int
    channel: str
    success: bool
    skipped: bool = False
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def event_severity(kind: NotificationKind, payload: Dict[str, Any]) -> str:
    """Severity on the memo scale; task priorities are mapped onto it."""
    if kind == NotificationKind.task_assigned:
        return TASK_PRIORITY_SEVERITY.get(payload.get("priority") or "medium", "medium")
    return payload.get("severity") or "medium"


def compose(kind: NotificationKind, payload: Dict[str, Any]) -> Dict[str, str]:
    if kind == NotificationKind.memo_created:
        return {
            "subject": templates.memo_email_subject(payload),
            "html": templates.format_memo_email(payload),
            "sms": templates.format_memo_sms(payload),
        }
    return {
        "subject": templates.task_email_subject(payload),
        "html": templates.format_task_email(payload),
        "sms": templates.format_task_sms(payload),
    }


class NotificationDispatcher:
    """Sends email/SMS notifications honouring each recipient's preferences"""

    def __init__(
        self,
        email: Optional[EmailTransport] = None,
        sms: Optional[SmsTransport] = None,
        session_factory: Optional[Callable] = None,
        enabled: Optional[bool] = None,
    ):
        self.email = email or EmailTransport()
        self.sms = sms or SmsTransport()
        self.session_factory = session_factory or async_session
        self.enabled = settings.NOTIFICATIONS_ENABLED if enabled is None else enabled

    async def notify(self, kind, payload: Dict[str, Any], recipient_ids: Iterable[int]) -> List[DeliveryResult]:
        kind = NotificationKind(kind)
        recipient_ids = list(recipient_ids)
        if not self.enabled or not recipient_ids:
            return []

        try:
            async with self.session_factory() as db:
                users = await crud.get_users(db, recipient_ids, active_only=True)
        except Exception as e:
            logger.error(f"Could not load recipients for {kind.value}", error=e, recipients=recipient_ids)
            return []

        preference_key = PREFERENCE_KEYS[kind]
        severity = event_severity(kind, payload)
        content = compose(kind, payload)
        results: List[DeliveryResult] = []

        for user in users:
            prefs = (user.notification_preferences or {}).get(preference_key) or {}

            if prefs.get("email") and user.email:
                results.append(await self._send_email(user.id, user.email, content))

            if prefs.get("sms") and user.phone_number and severity in SMS_SEVERITIES:
                results.append(await self._send_sms(user.id, user.phone_number, content))

        failed = [r for r in results if not r.success and not r.skipped]
        if failed:
            logger.warning(
                f"{len(failed)} of {len(results)} {kind.value} deliveries failed",
                failures=[r.to_dict() for r in failed],
            )
        return results

    async def _send_email(self, user_id: int, address: str, content: Dict[str, str]) -> DeliveryResult:
        channel = NotificationChannel.email.value
        if not self.email.is_configured:
            return DeliveryResult(user_id, channel, success=False, skipped=True, detail="email transport not configured")
        try:
            message_id = await self.email.send(address, content["subject"], content["html"])
            return DeliveryResult(user_id, channel, success=True, detail=message_id)
        except DeliveryFailure as e:
            return DeliveryResult(user_id, channel, success=False, detail=e.message)
        except Exception as e:
            logger.error(f"Unexpected email failure for user {user_id}", error=e)
            return DeliveryResult(user_id, channel, success=False, detail=str(e))

    async def _send_sms(self, user_id: int, number: str, content: Dict[str, str]) -> DeliveryResult:
        channel = NotificationChannel.sms.value
        if not self.sms.is_configured:
            return DeliveryResult(user_id, channel, success=False, skipped=True, detail="sms transport not configured")
        try:
            sid = await self.sms.send(number, content["sms"])
            return DeliveryResult(user_id, channel, success=True, detail=sid)
        except DeliveryFailure as e:
            return DeliveryResult(user_id, channel, success=False, detail=e.message)
        except Exception as e:
            logger.error(f"Unexpected SMS failure for user {user_id}", error=e)
            return DeliveryResult(user_id, channel, success=False, detail=str(e))
