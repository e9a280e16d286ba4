"""Exam attempt lifecycle: start, auto-save, violations, submission and suspension.

An attempt is ``in_progress`` until it is submitted by the student
(``completed``), forced or timed out (``submitted``), or suspended. Every
write from ``in_progress`` is a conditional update on ``(id, status,
version)`` so two racing requests cannot both close the same attempt.
Violation counters are the exception: they are incremented in place and
only require the attempt to still be open.
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from exam_portal.errors import Conflict, Forbidden, InvalidState, NotFound, ValidationError
from exam_portal.models import (
    ATTEMPT_COMPLETED,
    ATTEMPT_IN_PROGRESS,
    ATTEMPT_SUBMITTED,
    ATTEMPT_SUSPENDED,
    STAFF_ROLES,
    TERMINAL_ATTEMPT_STATUSES,
    ActivityLog,
    Exam,
    ExamAttempt,
    User,
)
from exam_portal.services import grading
from exam_portal.services.exam_service import get_exam, is_open_for_taking
from exam_portal.services.question_service import load_questions
from exam_portal.utils import sanitize_plain, validate_marks

logger = logging.getLogger(__name__)

VIOLATION_COUNTERS = {
    "tab_switch": "tab_switches",
    "copy_paste_block": "copy_paste_blocks",
    "cheating_warning": "cheating_warnings",
    "multiple_login": "multiple_logins",
}
VIOLATION_SEVERITY = {
    "tab_switch": "medium",
    "copy_paste_block": "low",
    "cheating_warning": "high",
    "multiple_login": "high",
}


def get_attempt(session: Session, attempt_id: int) -> ExamAttempt:
    attempt = session.get(ExamAttempt, attempt_id)
    if not attempt:
        raise NotFound("Attempt not found")
    return attempt


def find_open_attempt(session: Session, exam_id: int, student_id: int) -> Optional[ExamAttempt]:
    stmt = select(ExamAttempt).where(
        (ExamAttempt.exam_id == exam_id)
        & (ExamAttempt.student_id == student_id)
        & (ExamAttempt.status == ATTEMPT_IN_PROGRESS)
    )
    return session.exec(stmt).first()


def list_attempts(
    session: Session,
    exam_id: Optional[int] = None,
    student_id: Optional[int] = None,
    terminal_only: bool = False,
) -> List[ExamAttempt]:
    stmt = select(ExamAttempt)
    if exam_id is not None:
        stmt = stmt.where(ExamAttempt.exam_id == exam_id)
    if student_id is not None:
        stmt = stmt.where(ExamAttempt.student_id == student_id)
    if terminal_only:
        stmt = stmt.where(ExamAttempt.status.in_(TERMINAL_ATTEMPT_STATUSES))
    return session.exec(stmt.order_by(ExamAttempt.id)).all()


def ensure_can_view(attempt: ExamAttempt, user: User) -> None:
    """Staff see every attempt; a student only their own."""
    if user.role in STAFF_ROLES:
        return
    if attempt.student_id != user.id:
        raise Forbidden("You can only access your own attempts")


def ensure_owner(attempt: ExamAttempt, user: User) -> None:
    if attempt.student_id != user.id:
        raise Forbidden("You can only modify your own attempts")


def deadline_for(exam: Exam, attempt: ExamAttempt) -> datetime:
    return attempt.started_at + timedelta(minutes=exam.duration_minutes)


def is_expired(exam: Exam, attempt: ExamAttempt, now: Optional[datetime] = None) -> bool:
    now = now or datetime.utcnow()
    return now >= deadline_for(exam, attempt)


def remaining_seconds(exam: Exam, attempt: ExamAttempt, now: Optional[datetime] = None) -> int:
    now = now or datetime.utcnow()
    return max(0, int((deadline_for(exam, attempt) - now).total_seconds()))


def _conditional_update(
    session: Session,
    attempt: ExamAttempt,
    values: dict,
    expected_status: str = ATTEMPT_IN_PROGRESS,
) -> ExamAttempt:
    """Write ``values`` only if the row still has the status and version we read.

    Raises:
        Conflict: If another request changed the attempt first
    """
    stmt = (
        update(ExamAttempt)
        .where(
            (ExamAttempt.id == attempt.id)
            & (ExamAttempt.status == expected_status)
            & (ExamAttempt.version == attempt.version)
        )
        .values(**values, version=attempt.version + 1)
        .execution_options(synchronize_session=False)
    )
    result = session.exec(stmt)
    if result.rowcount != 1:
        session.rollback()
        logger.warning("Attempt %s changed concurrently; update rejected", attempt.id)
        raise Conflict("Attempt was modified by another request")
    session.commit()
    session.refresh(attempt)
    return attempt


def _finalize(
    session: Session,
    exam: Exam,
    attempt: ExamAttempt,
    answers: List[dict],
    status: str,
    now: datetime,
    time_spent: Optional[int] = None,
) -> ExamAttempt:
    """Grade ``answers`` and close the attempt with ``status``."""
    graded = grading.grade(exam, load_questions(session, exam.question_ids or []), answers)
    if time_spent is None:
        elapsed = int((now - attempt.started_at).total_seconds())
        time_spent = max(0, min(elapsed, exam.duration_minutes * 60))
    values = {
        "status": status,
        "ended_at": now,
        "answers": [a.model_dump() for a in graded.answers],
        "total_score": graded.total_score,
        "max_score": graded.max_score,
        "percentage": graded.percentage,
        "needs_review": graded.needs_review,
        "time_spent_seconds": time_spent,
    }
    _conditional_update(session, attempt, values)
    logger.info(
        "Attempt %s %s: %.2f/%.2f (%.1f%%)",
        attempt.id,
        status,
        graded.total_score,
        graded.max_score,
        graded.percentage,
    )
    return attempt


def close_if_expired(session: Session, exam: Exam, attempt: ExamAttempt, now: Optional[datetime] = None) -> bool:
    """Auto-submit an expired attempt when the exam allows it.

    Returns True when the attempt was closed here.
    """
    now = now or datetime.utcnow()
    if attempt.status != ATTEMPT_IN_PROGRESS or not exam.auto_submit:
        return False
    if not is_expired(exam, attempt, now):
        return False
    logger.info("Attempt %s ran out of time; submitting recorded answers", attempt.id)
    _finalize(
        session,
        exam,
        attempt,
        list(attempt.answers or []),
        ATTEMPT_SUBMITTED,
        now,
        time_spent=exam.duration_minutes * 60,
    )
    return True


def _guard_open(
    session: Session,
    exam: Exam,
    attempt: ExamAttempt,
    now: datetime,
    enforce_deadline: bool = True,
) -> None:
    """Reject mutations of closed attempts and, for students, of expired ones."""
    if attempt.status != ATTEMPT_IN_PROGRESS:
        logger.warning("Rejected change to attempt %s in status %s", attempt.id, attempt.status)
        raise InvalidState(f"Attempt is already {attempt.status}")
    if not enforce_deadline:
        return
    if close_if_expired(session, exam, attempt, now):
        raise InvalidState("Time limit reached; the attempt was submitted automatically")
    if is_expired(exam, attempt, now):
        logger.warning("Rejected change to attempt %s after its deadline", attempt.id)
        raise InvalidState("Time limit reached")


def _merge_answers(exam: Exam, questions: dict, recorded: List[dict], incoming: Iterable[Any]) -> List[dict]:
    """Upsert incoming answers over the recorded ones, checking answer shapes."""
    merged = {entry["question_id"]: dict(entry) for entry in recorded or []}
    for entry in grading.normalize_entries(incoming):
        qid = entry["question_id"]
        question = questions.get(qid) if qid in (exam.question_ids or []) else None
        if question is not None and not grading.is_unanswered(entry["answer"]):
            # raises ValidationError for malformed shapes
            grading.answers_match(question, entry["answer"])
        merged[qid] = entry
    return list(merged.values())


def start_attempt(session: Session, exam_id: int, student_id: int, now: Optional[datetime] = None) -> ExamAttempt:
    """Open a new attempt for a student.

    Raises:
        NotFound: If the exam does not exist
        InvalidState: If the exam is not open for taking
        Conflict: If the student already has an attempt in progress
    """
    now = now or datetime.utcnow()
    exam = get_exam(session, exam_id)
    is_open, reason = is_open_for_taking(exam, now)
    if not is_open:
        raise InvalidState(reason)

    existing = find_open_attempt(session, exam_id, student_id)
    if existing and not close_if_expired(session, exam, existing, now):
        raise Conflict("An attempt for this exam is already in progress")

    attempt = ExamAttempt(
        exam_id=exam_id,
        student_id=student_id,
        started_at=now,
        status=ATTEMPT_IN_PROGRESS,
    )
    session.add(attempt)
    try:
        session.commit()
    except IntegrityError:
        # a parallel start won the partial unique index
        session.rollback()
        raise Conflict("An attempt for this exam is already in progress")
    session.refresh(attempt)
    logger.info("Student %s started exam %s (attempt %s)", student_id, exam_id, attempt.id)
    return attempt


def save_answers(
    session: Session,
    attempt_id: int,
    answers: Iterable[Any],
    now: Optional[datetime] = None,
) -> ExamAttempt:
    """Auto-save answers without submitting the attempt."""
    now = now or datetime.utcnow()
    attempt = get_attempt(session, attempt_id)
    exam = get_exam(session, attempt.exam_id)
    _guard_open(session, exam, attempt, now)
    questions = load_questions(session, exam.question_ids or [])
    merged = _merge_answers(exam, questions, attempt.answers, answers)
    return _conditional_update(session, attempt, {"answers": merged})


def record_violation(
    session: Session,
    attempt_id: int,
    kind: str,
    details: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> ExamAttempt:
    """Count an anti-cheating event and log it.

    The status does not change, except when the exam sets a tab-switch limit
    and this event reaches it.
    """
    if kind not in VIOLATION_COUNTERS:
        raise ValidationError(
            f"Unknown violation kind: {kind}",
            errors={"kind": f"Kind must be one of: {', '.join(VIOLATION_COUNTERS)}."},
        )
    now = now or datetime.utcnow()
    attempt = get_attempt(session, attempt_id)
    exam = get_exam(session, attempt.exam_id)
    _guard_open(session, exam, attempt, now)

    counter = VIOLATION_COUNTERS[kind]
    session.add(
        ActivityLog(
            attempt_id=attempt.id,
            exam_id=attempt.exam_id,
            student_id=attempt.student_id,
            activity_type=kind,
            severity=VIOLATION_SEVERITY[kind],
            details=json.dumps(details) if details else None,
            timestamp=now,
        )
    )
    # counts only need the attempt open; version is left untouched
    stmt = (
        update(ExamAttempt)
        .where((ExamAttempt.id == attempt.id) & (ExamAttempt.status == ATTEMPT_IN_PROGRESS))
        .values({counter: getattr(ExamAttempt, counter) + 1})
        .execution_options(synchronize_session=False)
    )
    result = session.exec(stmt)
    if result.rowcount != 1:
        session.rollback()
        logger.warning("Attempt %s closed before %s was recorded", attempt.id, kind)
        raise InvalidState("Attempt is no longer in progress")
    session.commit()
    session.refresh(attempt)
    count = getattr(attempt, counter)
    logger.warning("Attempt %s: %s (#%d)", attempt.id, kind, count)

    if kind == "tab_switch" and exam.tab_switch_limit and count >= exam.tab_switch_limit:
        logger.warning("Attempt %s reached the tab switch limit (%d)", attempt.id, exam.tab_switch_limit)
        suspend_attempt(session, attempt.id, now)
    return attempt


def submit_attempt(
    session: Session,
    attempt_id: int,
    answers: Optional[Iterable[Any]] = None,
    time_spent_seconds: Optional[int] = None,
    now: Optional[datetime] = None,
) -> ExamAttempt:
    """Student submission: merge the final answers, grade, mark ``completed``.

    Raises:
        InvalidState: If the attempt is closed or its time is up
        Conflict: If a concurrent request closed it first
    """
    now = now or datetime.utcnow()
    attempt = get_attempt(session, attempt_id)
    exam = get_exam(session, attempt.exam_id)
    _guard_open(session, exam, attempt, now)
    if time_spent_seconds is not None and time_spent_seconds < 0:
        raise ValidationError("time_spent_seconds cannot be negative")

    questions = load_questions(session, exam.question_ids or [])
    merged = _merge_answers(exam, questions, attempt.answers, answers or [])
    return _finalize(session, exam, attempt, merged, ATTEMPT_COMPLETED, now, time_spent_seconds)


def force_submit(session: Session, attempt_id: int, now: Optional[datetime] = None) -> ExamAttempt:
    """Administrator action: grade whatever answers are recorded and close as ``submitted``."""
    now = now or datetime.utcnow()
    attempt = get_attempt(session, attempt_id)
    exam = get_exam(session, attempt.exam_id)
    _guard_open(session, exam, attempt, now, enforce_deadline=False)
    return _finalize(session, exam, attempt, list(attempt.answers or []), ATTEMPT_SUBMITTED, now)


def suspend_attempt(session: Session, attempt_id: int, now: Optional[datetime] = None) -> ExamAttempt:
    """Close an attempt without grading; its scores stay null."""
    now = now or datetime.utcnow()
    attempt = get_attempt(session, attempt_id)
    exam = get_exam(session, attempt.exam_id)
    _guard_open(session, exam, attempt, now, enforce_deadline=False)
    _conditional_update(session, attempt, {"status": ATTEMPT_SUSPENDED, "ended_at": now})
    logger.info("Attempt %s suspended", attempt.id)
    return attempt


def submit_for_exam(
    session: Session,
    exam_id: int,
    student_id: int,
    answers: Iterable[Any],
    time_spent_seconds: Optional[int] = None,
    now: Optional[datetime] = None,
) -> ExamAttempt:
    """One-shot submission: reuse the open attempt or start one, then submit."""
    now = now or datetime.utcnow()
    attempt = find_open_attempt(session, exam_id, student_id)
    if attempt is None:
        attempt = start_attempt(session, exam_id, student_id, now)
    return submit_attempt(session, attempt.id, answers, time_spent_seconds, now)


def sweep_expired(session: Session, now: Optional[datetime] = None) -> List[ExamAttempt]:
    """Auto-submit every open attempt whose time is up. Returns the closed attempts."""
    now = now or datetime.utcnow()
    closed = []
    open_attempts = session.exec(
        select(ExamAttempt).where(ExamAttempt.status == ATTEMPT_IN_PROGRESS)
    ).all()
    for attempt in open_attempts:
        exam = session.get(Exam, attempt.exam_id)
        if exam is None:
            continue
        try:
            if close_if_expired(session, exam, attempt, now):
                closed.append(attempt)
        except Conflict:
            # closed by its own request in the meantime
            continue
        except (NotFound, ValidationError):
            logger.exception("Could not auto-submit attempt %s", attempt.id)
    return closed


def review_attempt(
    session: Session,
    attempt_id: int,
    scores: List[dict],
) -> ExamAttempt:
    """Award marks to short answers of a graded attempt and recompute its totals.

    Args:
        scores: Dicts with ``question_id``, ``marks`` and optional ``feedback``

    Raises:
        InvalidState: If the attempt has not been graded
        ValidationError: If a question is not reviewable or marks are out of range
    """
    attempt = get_attempt(session, attempt_id)
    if attempt.status not in (ATTEMPT_COMPLETED, ATTEMPT_SUBMITTED) or attempt.max_score is None:
        raise InvalidState("Only graded submissions can be reviewed")
    exam = get_exam(session, attempt.exam_id)

    entries = {a["question_id"]: grading.GradedAnswer(**a) for a in attempt.answers or []}
    for score in scores:
        qid = score.get("question_id")
        entry = entries.get(qid)
        if entry is None or entry.status not in (grading.PENDING_REVIEW, grading.REVIEWED):
            raise ValidationError(
                f"Question {qid} has no answer awaiting review",
                errors={str(qid): "No reviewable answer."},
            )
        marks = score.get("marks")
        try:
            validate_marks(marks, entry.max_points)
        except ValueError as e:
            raise ValidationError(f"Question {qid}: {e}", errors={str(qid): str(e)})
        feedback = score.get("feedback")
        entries[qid] = entry.model_copy(
            update={
                "status": grading.REVIEWED,
                "points_awarded": marks,
                "is_correct": marks == entry.max_points,
                "feedback": sanitize_plain(feedback) if feedback else entry.feedback,
            }
        )

    summary = grading.summarize(exam, attempt.max_score, entries.values())
    values = {
        "answers": [a.model_dump() for a in summary.answers],
        "total_score": summary.total_score,
        "percentage": summary.percentage,
        "needs_review": summary.needs_review,
    }
    _conditional_update(session, attempt, values, expected_status=attempt.status)
    logger.info("Attempt %s reviewed: %.2f/%.2f", attempt.id, summary.total_score, summary.max_score)
    return attempt
