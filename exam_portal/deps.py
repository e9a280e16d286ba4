"""Shared FastAPI dependencies for database access and authorization.

Routes declare what they need as a capability instead of listing roles:

    current_user: User = Depends(require_capability("write"))
"""

from typing import Optional

from fastapi import Depends, Request
from sqlmodel import Session

from exam_portal.database import get_session
from exam_portal.errors import Forbidden, Unauthenticated
from exam_portal.models import User
from exam_portal.services.identity_service import get_session_user

# capability -> roles granted it
CAPABILITIES = {
    "read": ("admin", "moderator", "student"),
    "write": ("admin", "moderator"),
    "take": ("student",),
}


def get_token(request: Request) -> Optional[str]:
    """Bearer header first, then the cookie session set at sign-in."""
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return request.session.get("token")


def get_current_user(
    request: Request, session: Session = Depends(get_session)
) -> Optional[User]:
    """Return the user behind the request's token, if any."""
    token = get_token(request)
    if not token:
        return None
    user = get_session_user(session, token)
    if user is None and request.session.get("token") == token:
        # Clear any stale cookie session
        request.session.clear()
    return user


def require_login(current_user: Optional[User] = Depends(get_current_user)) -> User:
    """Ensure that a user is signed in."""
    if current_user is None:
        raise Unauthenticated("Authentication required")
    return current_user


def require_role(required_roles):
    """Dependency factory that enforces one of the given roles."""

    def wrapper(current_user: User = Depends(require_login)) -> User:
        if current_user.role not in required_roles:
            raise Forbidden("Forbidden")
        return current_user

    return wrapper


def require_capability(capability: str):
    return require_role(CAPABILITIES[capability])
