"""Exam-taking routes: start, auto-save, violations, submit, and staff overrides."""

from typing import Any, List, Optional

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel
from sqlmodel import Session, select

from exam_portal.database import get_session
from exam_portal.deps import require_capability
from exam_portal.models import ATTEMPT_IN_PROGRESS, ActivityLog, User
from exam_portal.serializers import activity_to_dict, attempt_to_dict
from exam_portal.services import attempt_service
from exam_portal.services.exam_service import get_exam

router = APIRouter()


class AnswerIn(BaseModel):
    question_id: int
    answer: Any = None
    flagged: bool = False
    time_spent: Optional[float] = None


class AnswersPayload(BaseModel):
    answers: List[AnswerIn] = []


class SubmitPayload(BaseModel):
    answers: List[AnswerIn] = []
    time_spent_seconds: Optional[int] = None


class ViolationIn(BaseModel):
    kind: str
    details: Optional[dict] = None


def _attempt_response(session: Session, attempt, viewer: User) -> dict:
    exam = get_exam(session, attempt.exam_id)
    data = attempt_to_dict(attempt, exam, viewer)
    if attempt.status == ATTEMPT_IN_PROGRESS:
        data["deadline"] = attempt_service.deadline_for(exam, attempt)
        data["remaining_seconds"] = attempt_service.remaining_seconds(exam, attempt)
    return {"attempt": data}


@router.post("/exams/{exam_id}/attempts")
def api_start_attempt(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("take")),
):
    attempt = attempt_service.start_attempt(session, exam_id, current_user.id)
    return _attempt_response(session, attempt, current_user)


@router.get("/attempts/{attempt_id}")
def api_get_attempt(
    attempt_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("read")),
):
    attempt = attempt_service.get_attempt(session, attempt_id)
    attempt_service.ensure_can_view(attempt, current_user)
    # time may have run out since the last request
    attempt_service.close_if_expired(session, get_exam(session, attempt.exam_id), attempt)
    return _attempt_response(session, attempt, current_user)


@router.put("/attempts/{attempt_id}/answers")
def api_save_answers(
    attempt_id: int,
    payload: AnswersPayload = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("take")),
):
    """Auto-save answers without submitting the attempt."""
    attempt_service.ensure_owner(attempt_service.get_attempt(session, attempt_id), current_user)
    attempt = attempt_service.save_answers(session, attempt_id, [a.model_dump() for a in payload.answers])
    return _attempt_response(session, attempt, current_user)


@router.post("/attempts/{attempt_id}/violations")
def api_record_violation(
    attempt_id: int,
    payload: ViolationIn = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("take")),
):
    attempt_service.ensure_owner(attempt_service.get_attempt(session, attempt_id), current_user)
    attempt = attempt_service.record_violation(session, attempt_id, payload.kind, payload.details)
    return _attempt_response(session, attempt, current_user)


@router.post("/attempts/{attempt_id}/submit")
def api_submit_attempt(
    attempt_id: int,
    payload: SubmitPayload = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("take")),
):
    attempt_service.ensure_owner(attempt_service.get_attempt(session, attempt_id), current_user)
    attempt = attempt_service.submit_attempt(
        session,
        attempt_id,
        [a.model_dump() for a in payload.answers],
        payload.time_spent_seconds,
    )
    return _attempt_response(session, attempt, current_user)


@router.post("/attempts/{attempt_id}/force-submit")
def api_force_submit(
    attempt_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("write")),
):
    attempt = attempt_service.force_submit(session, attempt_id)
    return _attempt_response(session, attempt, current_user)


@router.post("/attempts/{attempt_id}/suspend")
def api_suspend(
    attempt_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("write")),
):
    attempt = attempt_service.suspend_attempt(session, attempt_id)
    return _attempt_response(session, attempt, current_user)


@router.get("/attempts/{attempt_id}/activity")
def api_attempt_activity(
    attempt_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("write")),
):
    attempt_service.get_attempt(session, attempt_id)
    logs = session.exec(
        select(ActivityLog).where(ActivityLog.attempt_id == attempt_id).order_by(ActivityLog.timestamp)
    ).all()
    return {"activity": [activity_to_dict(log) for log in logs]}
