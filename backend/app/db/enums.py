import enum


class UserRole(str, enum.Enum):
    admin = "admin"
    employee = "employee"


class MessageStatus(str, enum.Enum):
    sent = "sent"
    delivered = "delivered"
    read = "read"
    failed = "failed"


class MemoSeverity(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class TaskStatus(str, enum.Enum):
    todo = "todo"
    in_progress = "in-progress"
    blocked = "blocked"
    completed = "completed"
    cancelled = "cancelled"


class TaskPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class NotificationChannel(str, enum.Enum):
    email = "email"
    sms = "sms"


# Severities that are allowed to trigger an SMS
SMS_SEVERITIES = {MemoSeverity.high.value, MemoSeverity.critical.value}

# Task priorities expressed on the memo severity scale
TASK_PRIORITY_SEVERITY = {
    TaskPriority.low.value: MemoSeverity.low.value,
    TaskPriority.medium.value: MemoSeverity.medium.value,
    TaskPriority.high.value: MemoSeverity.high.value,
    TaskPriority.urgent.value: MemoSeverity.critical.value,
}
