"""Sign-up, sign-in and bearer-session handling."""

import logging
from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from exam_portal.auth_utils import (
    create_session_token,
    hash_password,
    password_problem,
    verify_password,
)
from exam_portal.config import settings
from exam_portal.email_validator import normalize_email, validate_email_format
from exam_portal.errors import Conflict, Forbidden, Unauthenticated, ValidationError
from exam_portal.models import AuthSession, User

logger = logging.getLogger(__name__)


def find_user_by_email(session: Session, email: str) -> Optional[User]:
    return session.exec(select(User).where(User.email == normalize_email(email))).first()


def create_user(
    session: Session,
    email: str,
    password: str,
    name: str,
    role: str = "student",
    **profile,
) -> User:
    """Validate and insert a new user.

    Raises:
        ValidationError: If name, email or password are unusable
        Conflict: If the email is already registered
    """
    errors = {}
    name_clean = (name or "").strip()
    if not name_clean:
        errors["name"] = "Full name is required."
    email_error = validate_email_format(email)
    if email_error:
        errors["email"] = email_error
    pw_error = password_problem(password)
    if pw_error:
        errors["password"] = pw_error
    if errors:
        raise ValidationError("Invalid sign-up details", errors=errors)

    if find_user_by_email(session, email):
        raise Conflict("Email already in use")

    user = User(
        name=name_clean,
        email=normalize_email(email),
        password_hash=hash_password(password),
        role=role,
        **{k: v for k, v in profile.items() if v is not None},
    )
    session.add(user)
    try:
        session.commit()
    except IntegrityError:
        # a parallel sign-up took the email first
        session.rollback()
        raise Conflict("Email already in use")
    session.refresh(user)
    return user


def sign_up(session: Session, email: str, password: str, name: str, **profile) -> User:
    """Self-registration always produces a student account."""
    user = create_user(session, email, password, name, role="student", **profile)
    logger.info("New student account %s (id=%s)", user.email, user.id)
    return user


def issue_session(session: Session, user: User, now: Optional[datetime] = None) -> AuthSession:
    now = now or datetime.utcnow()
    auth = AuthSession(
        token=create_session_token(),
        user_id=user.id,
        created_at=now,
        expires_at=now + timedelta(hours=settings.SESSION_TTL_HOURS),
    )
    session.add(auth)
    session.commit()
    session.refresh(auth)
    return auth


def sign_in(session: Session, email: str, password: str) -> Tuple[User, AuthSession]:
    """Check credentials and issue a new session token.

    Raises:
        Unauthenticated: If the email/password pair does not match
        Forbidden: If the account has been deactivated
    """
    user = find_user_by_email(session, email or "")
    if not user or not verify_password(password or "", user.password_hash):
        logger.warning("Failed sign-in for %s", normalize_email(email))
        raise Unauthenticated("Invalid credentials")
    if user.status != "active":
        raise Forbidden("Account is inactive")

    user.last_login = datetime.utcnow()
    session.add(user)
    auth = issue_session(session, user)
    session.refresh(user)
    logger.info("User %s signed in", user.id)
    return user, auth


def sign_out(session: Session, token: str) -> None:
    auth = session.exec(select(AuthSession).where(AuthSession.token == token)).first()
    if auth and auth.revoked_at is None:
        auth.revoked_at = datetime.utcnow()
        session.add(auth)
        session.commit()


def revoke_user_sessions(session: Session, user_id: int) -> int:
    """Revoke every live token of a user; returns how many were revoked."""
    now = datetime.utcnow()
    live = session.exec(
        select(AuthSession).where(
            (AuthSession.user_id == user_id) & (AuthSession.revoked_at == None)  # noqa: E711
        )
    ).all()
    for auth in live:
        auth.revoked_at = now
        session.add(auth)
    session.commit()
    return len(live)


def get_session_user(session: Session, token: Optional[str], now: Optional[datetime] = None) -> Optional[User]:
    """Return the user behind a live token, or None."""
    if not token:
        return None
    now = now or datetime.utcnow()
    auth = session.exec(select(AuthSession).where(AuthSession.token == token)).first()
    if not auth or auth.revoked_at is not None or auth.expires_at <= now:
        return None
    user = session.get(User, auth.user_id)
    if not user or user.status != "active":
        return None
    return user


def seed_default_admin(session: Session) -> Optional[User]:
    """Create the configured admin account when no admin exists yet."""
    existing_admin = session.exec(select(User).where(User.role == "admin")).first()
    if existing_admin:
        return None
    admin_user = User(
        name="System Admin",
        email=normalize_email(settings.DEFAULT_ADMIN_EMAIL),
        password_hash=hash_password(settings.DEFAULT_ADMIN_PASSWORD),
        role="admin",
    )
    session.add(admin_user)
    session.commit()
    session.refresh(admin_user)
    logger.info("Seeded default admin user: %s", admin_user.email)
    return admin_user
