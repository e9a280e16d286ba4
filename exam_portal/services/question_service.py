"""Question bank management."""

import logging
from datetime import datetime
from typing import Any, List, Optional

from sqlmodel import Session, select

from exam_portal.errors import NotFound, ValidationError
from exam_portal.models import DIFFICULTIES, QUESTION_TYPES, Exam, Question
from exam_portal.utils import sanitize_plain, sanitize_question_text

logger = logging.getLogger(__name__)

# Validation constraints
QUESTION_MAX_LENGTH = 5000
OPTION_MAX_LENGTH = 1000
MIN_OPTIONS = 2
MAX_OPTIONS = 10
MIN_POINTS = 1
MAX_POINTS = 100
TRUE_FALSE_OPTIONS = ["True", "False"]

EDITABLE_FIELDS = (
    "question_text",
    "type",
    "options",
    "correct_answer",
    "points",
    "subject",
    "topic",
    "difficulty",
    "explanation",
)


def _clean_options(raw_options: Any, errors: dict) -> List[str]:
    if raw_options is None:
        return []
    if not isinstance(raw_options, list):
        errors["options"] = "Options must be a list."
        return []
    cleaned = []
    for opt in raw_options:
        if not isinstance(opt, str):
            errors["options"] = "Options must be text."
            return []
        opt_clean = sanitize_plain(opt)
        if not opt_clean:
            errors["options"] = "All options must be provided and non-empty."
            return []
        if len(opt_clean) > OPTION_MAX_LENGTH:
            errors["options"] = f"Options must be at most {OPTION_MAX_LENGTH} characters."
            return []
        cleaned.append(opt_clean)
    return cleaned


def _is_option_reference(value: Any, options: List[str]) -> bool:
    """A single-answer key is either an option string or an option index."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return 0 <= value < len(options)
    return isinstance(value, str) and value in options


def validate_question(data: dict) -> dict:
    """Validate question fields and return the cleaned values.

    Raises:
        ValidationError: With a per-field ``errors`` mapping
    """
    errors: dict = {}
    cleaned: dict = {}

    text = sanitize_question_text(data.get("question_text") or "")
    if not text:
        errors["question_text"] = "Question text is required."
    elif len(text) > QUESTION_MAX_LENGTH:
        errors["question_text"] = f"Question text must be at most {QUESTION_MAX_LENGTH} characters."
    cleaned["question_text"] = text

    qtype = data.get("type")
    if qtype not in QUESTION_TYPES:
        errors["type"] = f"Type must be one of: {', '.join(QUESTION_TYPES)}."

    options = _clean_options(data.get("options"), errors)
    correct = data.get("correct_answer")

    if qtype == "true-false":
        options = options or list(TRUE_FALSE_OPTIONS)
        if len(options) != 2:
            errors["options"] = "True/false questions have exactly two options."
        elif not (isinstance(correct, bool) or _is_option_reference(correct, options)):
            errors["correct_answer"] = "Correct answer must be true/false or one of the options."
        elif isinstance(correct, bool):
            # store the key as the option students see
            correct = options[0] if correct else options[1]
    elif qtype == "multiple-choice":
        if "options" in errors:
            pass
        elif not MIN_OPTIONS <= len(options) <= MAX_OPTIONS:
            errors["options"] = f"Provide between {MIN_OPTIONS} and {MAX_OPTIONS} options."
        elif len({o.lower() for o in options}) != len(options):
            errors["options"] = "All options must be unique."
        elif not _is_option_reference(correct, options):
            errors["correct_answer"] = "Correct answer must be one of the options or an option index."
    elif qtype == "multiple-answer":
        if "options" in errors:
            pass
        elif not MIN_OPTIONS <= len(options) <= MAX_OPTIONS:
            errors["options"] = f"Provide between {MIN_OPTIONS} and {MAX_OPTIONS} options."
        elif len({o.lower() for o in options}) != len(options):
            errors["options"] = "All options must be unique."
        elif not isinstance(correct, list) or not correct:
            errors["correct_answer"] = "Select at least one correct option."
        elif not all(isinstance(c, str) and c in options for c in correct):
            errors["correct_answer"] = "Correct answers must all be listed options."
        else:
            # keep option order, drop duplicates
            correct = [o for o in options if o in set(correct)]
    elif qtype == "short-answer":
        if options:
            errors["options"] = "Short-answer questions take no options."
        if correct is not None and not isinstance(correct, str):
            errors["correct_answer"] = "A model answer must be text."
        elif isinstance(correct, str):
            correct = sanitize_plain(correct) or None
    cleaned["type"] = qtype
    cleaned["options"] = options
    cleaned["correct_answer"] = correct

    points = data.get("points", 1)
    if isinstance(points, bool) or not isinstance(points, int):
        errors["points"] = "Points must be a whole number."
    elif not MIN_POINTS <= points <= MAX_POINTS:
        errors["points"] = f"Points must be between {MIN_POINTS} and {MAX_POINTS}."
    cleaned["points"] = points

    difficulty = data.get("difficulty") or "medium"
    if difficulty not in DIFFICULTIES:
        errors["difficulty"] = f"Difficulty must be one of: {', '.join(DIFFICULTIES)}."
    cleaned["difficulty"] = difficulty

    for field in ("subject", "topic"):
        value = data.get(field)
        cleaned[field] = sanitize_plain(value) if value else None
    explanation = data.get("explanation")
    cleaned["explanation"] = sanitize_question_text(explanation) if explanation else None

    if errors:
        raise ValidationError("Invalid question", errors=errors)
    return cleaned


def list_questions(
    session: Session,
    subject: Optional[str] = None,
    qtype: Optional[str] = None,
    search: Optional[str] = None,
) -> List[Question]:
    stmt = select(Question)
    if subject:
        stmt = stmt.where(Question.subject == subject)
    if qtype:
        stmt = stmt.where(Question.type == qtype)
    questions = session.exec(stmt.order_by(Question.id)).all()
    if search:
        term = search.lower()
        questions = [
            q
            for q in questions
            if term in q.question_text.lower()
            or term in (q.subject or "").lower()
            or term in (q.topic or "").lower()
        ]
    return questions


def get_question(session: Session, question_id: int) -> Question:
    question = session.get(Question, question_id)
    if not question:
        raise NotFound("Question not found")
    return question


def load_questions(session: Session, question_ids: List[int]) -> dict:
    """Fetch questions by id; missing ids are simply absent from the result."""
    if not question_ids:
        return {}
    rows = session.exec(select(Question).where(Question.id.in_(question_ids))).all()
    return {q.id: q for q in rows}


def create_question(session: Session, data: dict, created_by: Optional[int] = None) -> Question:
    cleaned = validate_question(data)
    question = Question(**cleaned, created_by=created_by)
    session.add(question)
    session.commit()
    session.refresh(question)
    logger.info("Question %s created by user %s", question.id, created_by)
    return question


def update_question(session: Session, question_id: int, updates: dict) -> Question:
    """Edit a question in place.

    Exams that reference it keep the reference; their stored total marks are
    refreshed so they stay equal to the sum of question points.
    """
    question = get_question(session, question_id)
    merged = {field: getattr(question, field) for field in EDITABLE_FIELDS}
    merged.update({k: v for k, v in updates.items() if k in EDITABLE_FIELDS})
    cleaned = validate_question(merged)

    for field, value in cleaned.items():
        setattr(question, field, value)
    question.updated_at = datetime.utcnow()
    session.add(question)
    session.commit()
    session.refresh(question)

    _refresh_exam_totals(session, question.id)
    return question


def delete_question(session: Session, question_id: int) -> None:
    """Delete a question.

    Exams still listing it will fail grading with InvalidReference until an
    administrator edits them.
    """
    question = get_question(session, question_id)
    session.delete(question)
    session.commit()
    logger.info("Question %s deleted", question_id)


def _refresh_exam_totals(session: Session, question_id: int) -> None:
    from exam_portal.services.exam_service import recompute_total_marks

    for exam in session.exec(select(Exam)).all():
        if question_id in (exam.question_ids or []):
            recompute_total_marks(session, exam)
    session.commit()
