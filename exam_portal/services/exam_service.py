"""Exam authoring, scheduling and the redacted view used while taking an exam."""

import logging
import random
from datetime import datetime, timezone
from typing import List, Optional

from sqlmodel import Session, select

from exam_portal.errors import Conflict, NotFound, ValidationError
from exam_portal.models import (
    EXAM_STATUSES,
    SCORING_MODES,
    Exam,
    ExamAttempt,
    MonitoringSession,
    User,
)
from exam_portal.services.grading import resolve_exam_questions
from exam_portal.services.question_service import load_questions
from exam_portal.utils import sanitize_plain, sanitize_question_text

logger = logging.getLogger(__name__)

MAX_DURATION_MINUTES = 600

SETTING_FIELDS = (
    "randomize_questions",
    "randomize_options",
    "auto_submit",
    "show_results",
    "allow_review",
    "prevent_copy_paste",
    "detect_tab_switch",
)
EDITABLE_FIELDS = (
    "title",
    "description",
    "subject",
    "class_group",
    "duration_minutes",
    "start_time",
    "end_time",
    "question_ids",
    "passing_marks",
    "scoring_mode",
    "correct_points",
    "wrong_points",
    "tab_switch_limit",
    "status",
) + SETTING_FIELDS


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Store datetimes as naive UTC, like ``datetime.utcnow()``."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_exam(session: Session, data: dict) -> dict:
    """Validate exam fields and return cleaned values (including total marks).

    Raises:
        ValidationError: With a per-field ``errors`` mapping
    """
    errors: dict = {}
    cleaned: dict = {}

    title = sanitize_plain(data.get("title") or "")
    if not title:
        errors["title"] = "Exam title is required."
    cleaned["title"] = title

    description = data.get("description")
    cleaned["description"] = sanitize_question_text(description) if description else None
    for field in ("subject", "class_group"):
        value = data.get(field)
        cleaned[field] = sanitize_plain(value) if value else None

    duration = data.get("duration_minutes")
    if isinstance(duration, bool) or not isinstance(duration, int):
        errors["duration_minutes"] = "Duration (minutes) is required."
    elif not 1 <= duration <= MAX_DURATION_MINUTES:
        errors["duration_minutes"] = f"Duration must be between 1 and {MAX_DURATION_MINUTES} minutes."
    cleaned["duration_minutes"] = duration

    start_time = naive_utc(data.get("start_time"))
    end_time = naive_utc(data.get("end_time"))
    if start_time and end_time and end_time <= start_time:
        errors["end_time"] = "End time must be after the start time."
    cleaned["start_time"] = start_time
    cleaned["end_time"] = end_time

    question_ids = data.get("question_ids") or []
    total_marks = 0
    if not isinstance(question_ids, list) or not all(
        isinstance(q, int) and not isinstance(q, bool) for q in question_ids
    ):
        errors["question_ids"] = "Question ids must be a list of integers."
        question_ids = []
    elif len(set(question_ids)) != len(question_ids):
        errors["question_ids"] = "A question can only appear once in an exam."
    else:
        found = load_questions(session, question_ids)
        missing = [qid for qid in question_ids if qid not in found]
        if missing:
            errors["question_ids"] = f"Unknown questions: {missing}"
        else:
            total_marks = sum(found[qid].points for qid in question_ids)
    cleaned["question_ids"] = list(question_ids)
    cleaned["total_marks"] = total_marks

    scoring_mode = data.get("scoring_mode") or "per-question-points"
    if scoring_mode not in SCORING_MODES:
        errors["scoring_mode"] = f"Scoring mode must be one of: {', '.join(SCORING_MODES)}."
    cleaned["scoring_mode"] = scoring_mode

    correct_points = data.get("correct_points", 1)
    wrong_points = data.get("wrong_points", 0)
    if not _is_number(correct_points) or correct_points <= 0:
        errors["correct_points"] = "Points for a correct answer must be positive."
    if not _is_number(wrong_points) or wrong_points > 0:
        errors["wrong_points"] = "Points for a wrong answer must be zero or negative."
    cleaned["correct_points"] = correct_points
    cleaned["wrong_points"] = wrong_points

    passing_marks = data.get("passing_marks", 0)
    if not _is_number(passing_marks) or passing_marks < 0:
        errors["passing_marks"] = "Passing marks must be zero or more."
    elif "question_ids" not in errors and passing_marks > total_marks:
        errors["passing_marks"] = f"Passing marks cannot exceed the total marks ({total_marks})."
    cleaned["passing_marks"] = passing_marks

    limit = data.get("tab_switch_limit")
    if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 1):
        errors["tab_switch_limit"] = "Tab switch limit must be a positive whole number."
    cleaned["tab_switch_limit"] = limit

    status = data.get("status") or "draft"
    if status not in EXAM_STATUSES:
        errors["status"] = f"Status must be one of: {', '.join(EXAM_STATUSES)}."
    cleaned["status"] = status

    for field in SETTING_FIELDS:
        if field in data and data[field] is not None:
            cleaned[field] = bool(data[field])

    if errors:
        raise ValidationError("Invalid exam", errors=errors)
    return cleaned


def list_exams(session: Session, status: Optional[str] = None) -> List[Exam]:
    stmt = select(Exam)
    if status:
        stmt = stmt.where(Exam.status == status)
    return session.exec(stmt.order_by(Exam.id)).all()


def get_exam(session: Session, exam_id: int) -> Exam:
    exam = session.get(Exam, exam_id)
    if not exam:
        raise NotFound("Exam not found")
    return exam


def create_exam(session: Session, data: dict, created_by: Optional[int] = None) -> Exam:
    cleaned = validate_exam(session, data)
    exam = Exam(**cleaned, created_by=created_by)
    session.add(exam)
    session.commit()
    session.refresh(exam)
    logger.info("Exam %s (%s) created by user %s", exam.id, exam.title, created_by)
    return exam


def update_exam(session: Session, exam_id: int, updates: dict) -> Exam:
    exam = get_exam(session, exam_id)
    merged = {field: getattr(exam, field) for field in EDITABLE_FIELDS}
    merged.update({k: v for k, v in updates.items() if k in EDITABLE_FIELDS})
    cleaned = validate_exam(session, merged)

    for field, value in cleaned.items():
        setattr(exam, field, value)
    exam.updated_at = datetime.utcnow()
    session.add(exam)
    session.commit()
    session.refresh(exam)
    return exam


def delete_exam(session: Session, exam_id: int) -> None:
    """Delete an exam that nobody has attempted yet.

    Raises:
        Conflict: If attempts or monitoring sessions reference the exam
    """
    exam = get_exam(session, exam_id)
    has_attempts = session.exec(select(ExamAttempt).where(ExamAttempt.exam_id == exam_id)).first()
    has_sessions = session.exec(
        select(MonitoringSession).where(MonitoringSession.exam_id == exam_id)
    ).first()
    if has_attempts or has_sessions:
        raise Conflict("Exam has attempts; mark it completed instead of deleting it")
    session.delete(exam)
    session.commit()
    logger.info("Exam %s deleted", exam_id)


def recompute_total_marks(session: Session, exam: Exam) -> Exam:
    """Refresh the stored total from the current question points (missing ids count 0)."""
    found = load_questions(session, exam.question_ids or [])
    exam.total_marks = sum(found[qid].points for qid in exam.question_ids or [] if qid in found)
    exam.updated_at = datetime.utcnow()
    session.add(exam)
    return exam


def is_open_for_taking(exam: Exam, now: Optional[datetime] = None) -> tuple[bool, str]:
    """Return whether a new attempt may start, with the reason when not."""
    now = now or datetime.utcnow()
    if exam.status not in ("scheduled", "active"):
        return False, f"Exam is {exam.status}"
    if exam.start_time and now < exam.start_time:
        return False, "Exam has not started yet"
    if exam.end_time and now > exam.end_time:
        return False, "Exam window has closed"
    return True, ""


def _shuffled(items: list, rng: random.Random) -> list:
    items = list(items)
    rng.shuffle(items)
    return items


def exam_for_taking(session: Session, exam: Exam, viewer: User) -> dict:
    """Build the exam payload shown while taking it.

    Correct answers and explanations are never included, whatever the role.
    Shuffling is seeded per (exam, viewer) so a reload shows the same order.

    Raises:
        InvalidReference: If the exam lists deleted questions
    """
    questions = resolve_exam_questions(exam, load_questions(session, exam.question_ids or []))
    rng = random.Random(f"{exam.id}:{viewer.id}")
    if exam.randomize_questions:
        questions = _shuffled(questions, rng)

    student_questions = []
    for q in questions:
        options = list(q.options or [])
        # index-keyed answers depend on the original option positions
        if exam.randomize_options and not isinstance(q.correct_answer, int):
            options = _shuffled(options, rng)
        student_questions.append(
            {
                "id": q.id,
                "question_text": q.question_text,
                "type": q.type,
                "options": options,
                "points": q.points,
            }
        )

    return {
        "id": exam.id,
        "title": exam.title,
        "description": exam.description,
        "subject": exam.subject,
        "duration_minutes": exam.duration_minutes,
        "start_time": exam.start_time,
        "end_time": exam.end_time,
        "total_marks": exam.total_marks,
        "passing_marks": exam.passing_marks,
        "status": exam.status,
        "settings": exam_settings(exam),
        "questions": student_questions,
    }


def exam_settings(exam: Exam) -> dict:
    settings = {field: getattr(exam, field) for field in SETTING_FIELDS}
    settings["tab_switch_limit"] = exam.tab_switch_limit
    return settings
