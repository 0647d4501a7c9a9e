"""
Connection authentication.
Validates JWT tokens presented at the socket handshake or on REST calls.
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import InvalidCredential, PersistenceFailure, Unauthenticated, UnknownSubject
from app.core.logging import realtime_logger as logger
from app.core.security import decode_token, subject_id
from app.db import crud
from app.db.database import async_session
from app.db.enums import UserRole


@dataclass(frozen=True)
class Identity:
    """Minimal identity bound to an authenticated connection or request."""
    user_id: int
    role: str
    name: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin.value

    @classmethod
    def from_user(cls, user) -> "Identity":
        return cls(user_id=user.id, role=user.role, name=user.name)


def extract_token(auth: Optional[dict] = None, environ: Optional[dict] = None) -> Optional[str]:
    """
    Extract the bearer token from the handshake.

    Sources, in order:
    1. auth.token (sent in the Socket.IO auth object)
    2. Authorization header
    """
    token = None
    if auth and isinstance(auth, dict):
        token = auth.get("token")

    if not token and environ:
        header = environ.get("HTTP_AUTHORIZATION", "")
        if header.startswith("Bearer "):
            token = header[7:].strip()

    return token or None


async def authenticate_token(token: Optional[str], session_factory=None) -> Identity:
    """
    Resolve a bearer token into an Identity.

    Raises Unauthenticated, InvalidCredential or UnknownSubject, and
    PersistenceFailure when the user lookup itself fails.
    """
    if not token:
        logger.warning("Authentication rejected: no token provided")
        raise Unauthenticated()

    try:
        user_id = subject_id(decode_token(token))
    except InvalidCredential as e:
        logger.warning(f"Authentication rejected: {e.message}")
        raise

    factory = session_factory or async_session
    try:
        async with factory() as db:
            user = await crud.get_user(db, user_id)
    except SQLAlchemyError as e:
        logger.error("Authentication lookup failed", error=e, user_id=user_id)
        raise PersistenceFailure("Could not load user for authentication") from e

    if user is None:
        logger.warning(f"Authentication rejected: user {user_id} not found")
        raise UnknownSubject()
    if not user.is_active:
        logger.warning(f"Authentication rejected: user {user_id} is inactive")
        raise UnknownSubject("User account is inactive")

    return Identity.from_user(user)


async def authenticate_socket(
    auth: Optional[dict] = None,
    environ: Optional[dict] = None,
    session_factory=None,
) -> Identity:
    """Authenticate a Socket.IO handshake; the caller refuses the connection on any error."""
    identity = await authenticate_token(extract_token(auth, environ), session_factory)
    logger.info(f"Socket authenticated for user {identity.name} (ID: {identity.user_id})")
    return identity
