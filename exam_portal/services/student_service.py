"""Administrator-side management of student accounts."""

import logging
from typing import List, Optional

from sqlmodel import Session, select

from exam_portal.config import settings
from exam_portal.email_validator import normalize_email, validate_email_format
from exam_portal.errors import Conflict, NotFound, ValidationError
from exam_portal.models import USER_STATUSES, User
from exam_portal.services.identity_service import (
    create_user,
    find_user_by_email,
    revoke_user_sessions,
)

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("student_number", "class_group", "course", "year")
UPDATABLE_FIELDS = ("name", "email", "status") + PROFILE_FIELDS


def list_students(
    session: Session,
    status: Optional[str] = None,
    search: Optional[str] = None,
) -> List[User]:
    stmt = select(User).where(User.role == "student")
    if status:
        stmt = stmt.where(User.status == status)
    students = session.exec(stmt.order_by(User.name)).all()
    if search:
        term = search.lower()
        students = [s for s in students if term in s.name.lower() or term in s.email]
    return students


def get_student(session: Session, student_id: int) -> User:
    user = session.get(User, student_id)
    if not user or user.role != "student":
        raise NotFound("Student not found")
    return user


def create_student(
    session: Session,
    name: str,
    email: str,
    password: Optional[str] = None,
    **profile,
) -> User:
    profile = {k: v for k, v in profile.items() if k in PROFILE_FIELDS}
    user = create_user(
        session,
        email=email,
        password=password or settings.DEFAULT_STUDENT_PASSWORD,
        name=name,
        role="student",
        **profile,
    )
    logger.info("Student %s created (id=%s)", user.email, user.id)
    return user


def update_student(session: Session, student_id: int, updates: dict) -> User:
    """Apply profile/status changes. Role and password are not editable here."""
    student = get_student(session, student_id)
    errors = {}

    for field, value in updates.items():
        if field not in UPDATABLE_FIELDS or value is None:
            continue
        if field == "name":
            value = value.strip()
            if not value:
                errors["name"] = "Full name is required."
                continue
        elif field == "email":
            email_error = validate_email_format(value)
            if email_error:
                errors["email"] = email_error
                continue
            value = normalize_email(value)
            other = find_user_by_email(session, value)
            if other and other.id != student.id:
                raise Conflict("Email already in use")
        elif field == "status" and value not in USER_STATUSES:
            errors["status"] = f"Status must be one of: {', '.join(USER_STATUSES)}."
            continue
        setattr(student, field, value)

    if errors:
        session.rollback()
        raise ValidationError("Invalid student details", errors=errors)

    session.add(student)
    session.commit()
    session.refresh(student)
    if student.status == "inactive":
        revoke_user_sessions(session, student.id)
    return student


def deactivate_student(session: Session, student_id: int) -> User:
    """Soft delete: the account is kept for its attempts but can no longer sign in."""
    student = get_student(session, student_id)
    student.status = "inactive"
    session.add(student)
    session.commit()
    revoked = revoke_user_sessions(session, student.id)
    session.refresh(student)
    logger.info("Student %s deactivated, %d session(s) revoked", student.id, revoked)
    return student
