"""Live exam monitoring: presence sessions and the in-progress attempt overview."""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlmodel import Session, select

from exam_portal.config import settings
from exam_portal.errors import Forbidden, NotFound, ValidationError
from exam_portal.models import (
    ATTEMPT_IN_PROGRESS,
    SESSION_STATUSES,
    Exam,
    ExamAttempt,
    MonitoringSession,
    User,
)
from exam_portal.services.attempt_service import deadline_for, remaining_seconds
from exam_portal.services.exam_service import get_exam
from exam_portal.utils import sanitize_plain

logger = logging.getLogger(__name__)


def create_session(
    session: Session,
    exam_id: int,
    student: User,
    attempt_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> MonitoringSession:
    now = now or datetime.utcnow()
    get_exam(session, exam_id)
    if attempt_id is not None:
        attempt = session.get(ExamAttempt, attempt_id)
        if not attempt or attempt.student_id != student.id or attempt.exam_id != exam_id:
            raise ValidationError("attempt_id does not belong to this exam and student")
    record = MonitoringSession(
        exam_id=exam_id,
        student_id=student.id,
        attempt_id=attempt_id,
        status="in-progress",
        started_at=now,
        created_at=now,
        updated_at=now,
        warnings=[],
    )
    session.add(record)
    session.commit()
    session.refresh(record)
    return record


def update_session(
    session: Session,
    session_id: int,
    student: User,
    status: Optional[str] = None,
    warnings: Optional[List[str]] = None,
    now: Optional[datetime] = None,
) -> MonitoringSession:
    """Owner-only update: change the status and/or append warnings."""
    now = now or datetime.utcnow()
    record = session.get(MonitoringSession, session_id)
    if not record:
        raise NotFound("Session not found")
    if record.student_id != student.id:
        raise Forbidden("You can only update your own session")

    if status is not None:
        if status not in SESSION_STATUSES:
            raise ValidationError(
                "Invalid session status",
                errors={"status": f"Status must be one of: {', '.join(SESSION_STATUSES)}."},
            )
        record.status = status
    if warnings:
        stamped = [
            {"message": sanitize_plain(str(w)), "at": now.isoformat()} for w in warnings
        ]
        # reassign so the JSON column is flagged dirty
        record.warnings = list(record.warnings or []) + stamped
    record.updated_at = now
    session.add(record)
    session.commit()
    session.refresh(record)
    return record


def active_sessions(session: Session, now: Optional[datetime] = None) -> List[MonitoringSession]:
    """Sessions created within the configured monitoring window."""
    now = now or datetime.utcnow()
    since = now - timedelta(hours=settings.ACTIVE_SESSION_WINDOW_HOURS)
    stmt = (
        select(MonitoringSession)
        .where(MonitoringSession.created_at >= since)
        .order_by(MonitoringSession.created_at.desc())
    )
    return session.exec(stmt).all()


def live_attempts(session: Session, now: Optional[datetime] = None) -> List[dict]:
    """Every in-progress attempt with timing and violation counters."""
    now = now or datetime.utcnow()
    attempts = session.exec(
        select(ExamAttempt).where(ExamAttempt.status == ATTEMPT_IN_PROGRESS).order_by(ExamAttempt.started_at)
    ).all()
    rows = []
    for attempt in attempts:
        exam = session.get(Exam, attempt.exam_id)
        student = session.get(User, attempt.student_id)
        if not exam or not student:
            continue
        answered = sum(1 for a in attempt.answers or [] if a.get("answer") not in (None, "", []))
        total_questions = len(exam.question_ids or [])
        rows.append(
            {
                "attempt_id": attempt.id,
                "exam_id": exam.id,
                "exam_title": exam.title,
                "student_id": student.id,
                "student_name": student.name,
                "started_at": attempt.started_at,
                "deadline": deadline_for(exam, attempt),
                "elapsed_seconds": int((now - attempt.started_at).total_seconds()),
                "remaining_seconds": remaining_seconds(exam, attempt, now),
                "answered": answered,
                "total_questions": total_questions,
                "progress": (answered / total_questions * 100) if total_questions else 0,
                "tab_switches": attempt.tab_switches,
                "cheating_warnings": attempt.cheating_warnings,
                "copy_paste_blocks": attempt.copy_paste_blocks,
                "multiple_logins": attempt.multiple_logins,
                "flagged": attempt.tab_switches > 0 or attempt.cheating_warnings > 0,
            }
        )
    return rows
