"""Submission routes: one-shot submit, listings and manual review."""

from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel
from sqlmodel import Session

from exam_portal.config import settings
from exam_portal.database import get_session
from exam_portal.deps import require_capability
from exam_portal.models import Exam, User
from exam_portal.routers.attempts import AnswerIn
from exam_portal.serializers import attempt_to_dict
from exam_portal.services import attempt_service
from exam_portal.services.exam_service import get_exam
from exam_portal.utils import paginate

router = APIRouter()


class SubmissionIn(BaseModel):
    exam_id: int
    answers: List[AnswerIn] = []
    time_spent_seconds: Optional[int] = None


class ScoreIn(BaseModel):
    question_id: int
    marks: float
    feedback: Optional[str] = None


class ReviewIn(BaseModel):
    scores: List[ScoreIn]


def _serialize_all(session: Session, attempts, viewer: User) -> list:
    exams = {}
    out = []
    for attempt in attempts:
        if attempt.exam_id not in exams:
            exams[attempt.exam_id] = session.get(Exam, attempt.exam_id)
        out.append(attempt_to_dict(attempt, exams[attempt.exam_id], viewer))
    return out


@router.post("/submissions")
def api_create_submission(
    payload: SubmissionIn = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("take")),
):
    """Grade and store a submission, starting the attempt if none is open."""
    attempt = attempt_service.submit_for_exam(
        session,
        payload.exam_id,
        current_user.id,
        [a.model_dump() for a in payload.answers],
        payload.time_spent_seconds,
    )
    exam = get_exam(session, attempt.exam_id)
    return {"submission": attempt_to_dict(attempt, exam, current_user)}


@router.get("/submissions")
def api_list_submissions(
    exam_id: Optional[int] = Query(None),
    student_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("write")),
):
    attempts = attempt_service.list_attempts(
        session, exam_id=exam_id, student_id=student_id, terminal_only=True
    )
    page_items, meta = paginate(attempts, page, settings.PAGE_SIZE)
    return {"submissions": _serialize_all(session, page_items, current_user), "pagination": meta}


@router.get("/submissions/my")
def api_my_submissions(
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("take")),
):
    attempts = attempt_service.list_attempts(session, student_id=current_user.id, terminal_only=True)
    return {"submissions": _serialize_all(session, attempts, current_user)}


@router.get("/submissions/{attempt_id}")
def api_get_submission(
    attempt_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("read")),
):
    attempt = attempt_service.get_attempt(session, attempt_id)
    attempt_service.ensure_can_view(attempt, current_user)
    exam = get_exam(session, attempt.exam_id)
    return {"submission": attempt_to_dict(attempt, exam, current_user)}


@router.post("/submissions/{attempt_id}/review")
def api_review_submission(
    attempt_id: int,
    payload: ReviewIn = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("write")),
):
    """Award marks to short answers waiting for manual review."""
    attempt = attempt_service.review_attempt(
        session, attempt_id, [s.model_dump() for s in payload.scores]
    )
    exam = get_exam(session, attempt.exam_id)
    return {"submission": attempt_to_dict(attempt, exam, current_user)}
