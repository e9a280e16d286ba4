"""Auto-grading of submitted answers.

Pure functions over already-loaded records: nothing here touches the
database, so callers decide when (and whether) a graded result is stored.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from exam_portal.errors import InvalidReference, ValidationError
from exam_portal.models import Exam, Question

PER_QUESTION_POINTS = "per-question-points"
UNIFORM_MARKING_SCHEME = "uniform-marking-scheme"

# Per-answer outcomes
CORRECT = "correct"
INCORRECT = "incorrect"
UNANSWERED = "unanswered"
PENDING_REVIEW = "pending_review"
REVIEWED = "reviewed"
UNSCORED = "unscored"

SINGLE_ANSWER_TYPES = ("multiple-choice", "true-false")


class GradedAnswer(BaseModel):
    model_config = ConfigDict(frozen=True)

    question_id: Any
    answer: Any = None
    flagged: bool = False
    time_spent: Optional[float] = None
    status: str
    is_correct: Optional[bool] = None
    points_awarded: float = 0
    max_points: float = 0
    feedback: Optional[str] = None


class GradedSubmission(BaseModel):
    """Result of grading one set of answers against one exam."""

    model_config = ConfigDict(frozen=True)

    answers: Tuple[GradedAnswer, ...]
    raw_score: float
    total_score: float
    max_score: float
    percentage: float
    needs_review: bool
    scoring_mode: str


def resolve_exam_questions(exam: Exam, questions_by_id: Mapping[Any, Question]) -> List[Question]:
    """Return the exam's questions in exam order.

    Raises:
        InvalidReference: If any referenced question is missing
    """
    missing = [qid for qid in exam.question_ids or [] if qid not in questions_by_id]
    if missing:
        raise InvalidReference(
            f"Exam {exam.id} references missing questions: {missing}",
            missing_ids=missing,
        )
    return [questions_by_id[qid] for qid in exam.question_ids or []]


def is_unanswered(answer: Any) -> bool:
    if answer is None:
        return True
    if isinstance(answer, str) and answer == "":
        return True
    if isinstance(answer, (list, tuple, set)) and len(answer) == 0:
        return True
    return False


def _strict_equals(left: Any, right: Any) -> bool:
    # bool is an int subclass; keep True from matching 1
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    return type(left) is type(right) and left == right


def _set_key(value: Any) -> tuple:
    if isinstance(value, bool):
        return ("bool", value)
    if isinstance(value, (int, float)):
        return ("number", value)
    if isinstance(value, str):
        return ("str", value)
    raise ValidationError(f"Unsupported value in multiple-answer selection: {value!r}")


def answers_match(question: Question, answer: Any) -> Optional[bool]:
    """Decide correctness of a non-empty answer.

    Returns ``None`` for question types that need manual review.

    Raises:
        ValidationError: If the answer's shape does not fit the question type
    """
    if question.type in SINGLE_ANSWER_TYPES:
        if isinstance(answer, (list, tuple, set, dict)):
            raise ValidationError(
                f"Question {question.id} expects a single value",
                errors={str(question.id): "Expected a single value."},
            )
        return _strict_equals(answer, question.correct_answer)

    if question.type == "multiple-answer":
        if not isinstance(answer, (list, tuple, set)):
            raise ValidationError(
                f"Question {question.id} expects a list of selections",
                errors={str(question.id): "Expected a list of selections."},
            )
        submitted = {_set_key(v) for v in answer}
        expected = {_set_key(v) for v in question.correct_answer or []}
        return submitted == expected

    # short-answer: left for an administrator
    return None


def _awarded_points(exam: Exam, question: Question, is_correct: bool) -> float:
    if exam.scoring_mode == UNIFORM_MARKING_SCHEME:
        weight = question.points
        return (exam.correct_points if is_correct else exam.wrong_points) * weight
    return question.points if is_correct else 0


def normalize_entries(submitted_answers: Iterable[Any]) -> List[Dict[str, Any]]:
    """Accept dicts or ``(question_id, answer)`` pairs; the last entry per question wins."""
    by_question: Dict[Any, Dict[str, Any]] = {}
    for entry in submitted_answers or []:
        if isinstance(entry, Mapping):
            if "question_id" not in entry:
                raise ValidationError("Each answer needs a question_id")
            item = {
                "question_id": entry["question_id"],
                "answer": entry.get("answer"),
                "flagged": bool(entry.get("flagged", False)),
                "time_spent": entry.get("time_spent"),
            }
        else:
            try:
                question_id, answer = entry
            except (TypeError, ValueError):
                raise ValidationError(f"Malformed answer entry: {entry!r}")
            item = {"question_id": question_id, "answer": answer, "flagged": False, "time_spent": None}
        # dict keeps first-insertion order, so re-assignment preserves position
        by_question[item["question_id"]] = item
    return list(by_question.values())


def summarize(exam: Exam, max_score: float, answers: Iterable[GradedAnswer]) -> GradedSubmission:
    """Aggregate graded answers into totals.

    The total is clamped to ``[0, max_score]`` and the percentage is 0 when
    ``max_score`` is 0.
    """
    answers = tuple(answers)
    max_score = float(max_score)
    raw_score = float(sum(a.points_awarded for a in answers))
    total_score = min(max(raw_score, 0.0), max_score)
    percentage = (total_score / max_score * 100) if max_score > 0 else 0.0
    return GradedSubmission(
        answers=answers,
        raw_score=raw_score,
        total_score=total_score,
        max_score=max_score,
        percentage=percentage,
        needs_review=any(a.status == PENDING_REVIEW for a in answers),
        scoring_mode=exam.scoring_mode,
    )


def grade(
    exam: Exam,
    questions_by_id: Mapping[Any, Question],
    submitted_answers: Iterable[Any],
) -> GradedSubmission:
    """Grade a student's answers for ``exam``.

    Args:
        exam: The exam being submitted
        questions_by_id: Question records keyed by id; must cover the exam
        submitted_answers: Dicts with ``question_id``/``answer`` (plus optional
            ``flagged``/``time_spent``) or ``(question_id, answer)`` pairs

    Returns:
        An immutable GradedSubmission

    Raises:
        InvalidReference: If the exam's question list cannot be resolved
        ValidationError: If an answer's shape does not fit its question
    """
    questions = resolve_exam_questions(exam, questions_by_id)
    exam_question_ids = set(exam.question_ids or [])

    graded = []
    for entry in normalize_entries(submitted_answers):
        qid = entry["question_id"]
        if qid not in exam_question_ids:
            graded.append(GradedAnswer(**entry, status=UNSCORED))
            continue

        question = questions_by_id[qid]
        if is_unanswered(entry["answer"]):
            graded.append(GradedAnswer(**entry, status=UNANSWERED, max_points=question.points))
            continue

        is_correct = answers_match(question, entry["answer"])
        if is_correct is None:
            graded.append(GradedAnswer(**entry, status=PENDING_REVIEW, max_points=question.points))
            continue

        graded.append(
            GradedAnswer(
                **entry,
                status=CORRECT if is_correct else INCORRECT,
                is_correct=is_correct,
                points_awarded=_awarded_points(exam, question, is_correct),
                max_points=question.points,
            )
        )

    # every exam question counts toward the maximum, answered or not
    return summarize(exam, sum(q.points for q in questions), graded)


def letter_grade(percentage: float) -> str:
    """Convert percentage to letter grade (A/B/C/D/F)."""
    if percentage >= 90:
        return "A"
    elif percentage >= 80:
        return "B"
    elif percentage >= 70:
        return "C"
    elif percentage >= 60:
        return "D"
    else:
        return "F"


def is_passing(exam: Exam, total_score: Optional[float]) -> bool:
    if total_score is None:
        return False
    return total_score >= (exam.passing_marks or 0)
