"""
Error taxonomy for the real-time layer.

Handshake errors refuse the socket connection, action errors are reported
to the originating connection only, and delivery errors are logged and
never reach the writer.
"""
from typing import Optional


class RealtimeError(Exception):
    code = "realtime_error"
    status_code = 500
    default_message = "Real-time operation failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class Unauthenticated(RealtimeError):
    code = "unauthenticated"
    status_code = 401
    default_message = "Authentication token is required"


class InvalidCredential(RealtimeError):
    code = "invalid_credential"
    status_code = 401
    default_message = "Could not validate credentials"


class UnknownSubject(RealtimeError):
    code = "unknown_subject"
    status_code = 401
    default_message = "Token subject does not match an active user"


class AuthorizationDenied(RealtimeError):
    code = "authorization_denied"
    status_code = 403
    default_message = "Not allowed to perform this action"


class InvalidPayload(RealtimeError):
    code = "invalid_payload"
    status_code = 400
    default_message = "Invalid payload"


class NotFound(RealtimeError):
    code = "not_found"
    status_code = 404
    default_message = "Resource not found"


class PersistenceFailure(RealtimeError):
    code = "persistence_failure"
    status_code = 500
    default_message = "Could not save changes"


class DeliveryFailure(RealtimeError):
    code = "delivery_failure"
    status_code = 502
    default_message = "Delivery failed"
