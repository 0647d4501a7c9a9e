"""
Structured logging for the real-time layer.

Every line carries the correlation id of the unit of work that produced it:
the X-Request-ID of an HTTP request, or the connection sid while a socket
event is handled. The acting user is attached once it is known.
Production writes one JSON object per line; development writes readable text.
"""
import json
import logging
import time
import uuid
from contextvars import ContextVar
from functools import wraps
from typing import Any, Dict, Optional

from app.core.config import settings

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
actor_id_var: ContextVar[Optional[int]] = ContextVar('actor_id', default=None)
request_start_var: ContextVar[Optional[float]] = ContextVar('request_start', default=None)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def generate_request_id() -> str:
    return uuid.uuid4().hex[:8]


def bind_socket_context(sid: str, user_id: Optional[int] = None) -> None:
    """Correlate everything logged while one socket event is handled."""
    request_id_var.set(sid)
    actor_id_var.set(user_id)
    request_start_var.set(time.time())


def elapsed_ms(start: float) -> float:
    return round((time.time() - start) * 1000, 2)


class StructuredLogger:
    """Logger that renders a record dict with the current correlation context."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)
        self.name = name
        self._is_json = settings.APP_ENV == 'production'

    def _record(
        self,
        level: int,
        message: str,
        context: Dict[str, Any],
        error: Optional[BaseException],
    ) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            'timestamp': time.strftime('%Y-%m-%dT%H:%M:%S%z'),
            'level': logging.getLevelName(level),
            'logger': self.name,
            'message': message,
        }
        for key, value in (('request_id', request_id_var.get()), ('actor_id', actor_id_var.get())):
            if value is not None:
                record[key] = value

        start = request_start_var.get()
        if start:
            record['elapsed_ms'] = elapsed_ms(start)
        if context:
            record['context'] = context
        if error is not None:
            record['error'] = {'type': type(error).__name__, 'message': str(error)}
        return record

    def _render(self, record: Dict[str, Any]) -> str:
        if self._is_json:
            return json.dumps(record, default=str)

        line = f"[{record.get('request_id', '-')}]"
        if 'actor_id' in record:
            line += f"[user {record['actor_id']}]"
        line += f" {record['message']}"
        if 'context' in record:
            line += ' | ' + ' '.join(f"{k}={v}" for k, v in record['context'].items())
        if 'error' in record:
            line += f" | error={record['error']['type']}: {record['error']['message']}"
        return line

    def _log(self, level: int, message: str, error: Optional[BaseException] = None,
             exc_info: bool = False, **context):
        if not self.logger.isEnabledFor(level):
            return
        record = self._record(level, message, context, error)
        self.logger.log(level, self._render(record), exc_info=exc_info)

    def debug(self, message: str, **context):
        self._log(logging.DEBUG, message, **context)

    def info(self, message: str, **context):
        self._log(logging.INFO, message, **context)

    def warning(self, message: str, error: Optional[BaseException] = None, **context):
        self._log(logging.WARNING, message, error, **context)

    def error(self, message: str, error: Optional[BaseException] = None, **context):
        self._log(logging.ERROR, message, error, **context)

    def exception(self, message: str, error: Optional[BaseException] = None, **context):
        self._log(logging.ERROR, message, error, exc_info=True, **context)


api_logger = StructuredLogger('officehub.api')
realtime_logger = StructuredLogger('officehub.realtime')
presence_logger = StructuredLogger('officehub.presence')
relay_logger = StructuredLogger('officehub.relay')
notify_logger = StructuredLogger('officehub.notifications')
db_logger = StructuredLogger('officehub.database')


def log_operation(operation: str, logger: StructuredLogger = db_logger):
    """Time an async persistence helper; failures are logged and re-raised."""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start = time.time()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.error(f"{operation} failed", error=e, duration_ms=elapsed_ms(start))
                raise
            logger.debug(f"{operation} done", duration_ms=elapsed_ms(start))
            return result
        return wrapper
    return decorator
