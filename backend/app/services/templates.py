"""
Email and SMS bodies for durable notifications.

Inputs are the camelCase payload dicts produced by app.realtime.payloads.
"""
from datetime import datetime
from html import escape
from typing import Any, Dict, Optional

SEVERITY_COLORS = {
    "critical": "#dc3545",
    "high": "#fd7e14",
    "medium": "#ffc107",
    "low": "#6c757d",
}

PRIORITY_COLORS = {
    "urgent": "#dc3545",
    "high": "#fd7e14",
    "medium": "#ffc107",
    "low": "#6c757d",
}

DEFAULT_COLOR = "#6c757d"

FOOTER = (
    '<p style="font-size: 0.9em; color: #6c757d;">'
    "This is an automated message. Please do not reply to this email.</p>"
)


def _format_when(value: Optional[str], date_only: bool = False) -> Optional[str]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return value
    return parsed.strftime("%Y-%m-%d") if date_only else parsed.strftime("%Y-%m-%d %H:%M")


def _badge(label: str, color: str) -> str:
    return (
        '<span style="display: inline-block; padding: 3px 8px; border-radius: 4px; '
        f'background-color: {color}; color: white; font-weight: bold; margin-right: 10px;">'
        f"{escape(label)}</span>"
    )


def memo_email_subject(memo: Dict[str, Any]) -> str:
    return f"New Memo: {memo.get('title', '')}"


def format_memo_email(memo: Dict[str, Any]) -> str:
    severity = memo.get("severity") or "medium"
    parts = [
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">',
        f"<h2>{escape(memo.get('title') or '')}</h2>",
        '<div style="margin-bottom: 15px;">',
        _badge(severity.upper(), SEVERITY_COLORS.get(severity, DEFAULT_COLOR)),
        f"<span>{escape(_format_when(memo.get('createdAt')) or '')}</span>",
        "</div>",
    ]
    if memo.get("summary"):
        parts.append(f"<p><strong>Summary:</strong> {escape(memo['summary'])}</p>")
    parts.append(
        '<div style="background-color: #f8f9fa; padding: 15px; border-radius: 5px; margin: 15px 0;">'
        f"{escape(memo.get('content') or '')}</div>"
    )
    deadline = _format_when(memo.get("deadline"))
    if deadline:
        parts.append(f"<p><strong>Deadline:</strong> {escape(deadline)}</p>")
    parts.append(
        '<div style="margin-top: 25px; padding-top: 15px; border-top: 1px solid #e9ecef;">'
        "<p>Please acknowledge this memo by logging into the system.</p>"
        f"{FOOTER}</div>"
    )
    parts.append("</div>")
    return "".join(parts)


def format_memo_sms(memo: Dict[str, Any]) -> str:
    severity = (memo.get("severity") or "medium").upper()
    message = f"NEW MEMO: {memo.get('title', '')}\n\n"
    message += f"Severity: {severity}\n"
    if memo.get("summary"):
        message += f"{memo['summary']}\n\n"
    deadline = _format_when(memo.get("deadline"))
    if deadline:
        message += f"Deadline: {deadline}\n"
    message += "\nPlease log in to acknowledge."
    return message


def task_email_subject(task: Dict[str, Any]) -> str:
    return f"New Task: {task.get('title', '')}"


def format_task_email(task: Dict[str, Any]) -> str:
    priority = task.get("priority") or "medium"
    status = (task.get("status") or "todo").replace("-", " ").upper()
    parts = [
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">',
        f"<h2>{escape(task.get('title') or '')}</h2>",
        '<div style="margin-bottom: 15px;">',
        _badge(priority.upper(), PRIORITY_COLORS.get(priority, DEFAULT_COLOR)),
        f"<span>Status: {escape(status)}</span>",
        "</div>",
    ]
    if task.get("description"):
        parts.append(
            '<div style="background-color: #f8f9fa; padding: 15px; border-radius: 5px; margin: 15px 0;">'
            f"{escape(task['description'])}</div>"
        )
    due = _format_when(task.get("dueDate"))
    if due:
        parts.append(f"<p><strong>Due Date:</strong> {escape(due)}</p>")
    parts.append(
        '<div style="margin-top: 25px; padding-top: 15px; border-top: 1px solid #e9ecef;">'
        "<p>Please log in to view and update this task.</p>"
        f"{FOOTER}</div>"
    )
    parts.append("</div>")
    return "".join(parts)


def format_task_sms(task: Dict[str, Any]) -> str:
    message = f"NEW TASK: {task.get('title', '')}\n\n"
    message += f"Priority: {(task.get('priority') or 'medium').upper()}\n"
    message += f"Status: {(task.get('status') or 'todo').replace('-', ' ').upper()}\n"
    due = _format_when(task.get("dueDate"), date_only=True)
    if due:
        message += f"Due: {due}\n"
    message += "\nPlease log in for details."
    return message
