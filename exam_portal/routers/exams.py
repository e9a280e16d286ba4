"""Exam authoring routes, the redacted taking view and per-exam results."""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel
from sqlmodel import Session

from exam_portal.database import get_session
from exam_portal.deps import require_capability
from exam_portal.errors import InvalidState, NotFound
from exam_portal.models import STAFF_ROLES, User
from exam_portal.serializers import attempt_to_dict, exam_to_dict
from exam_portal.services import exam_service, stats_service
from exam_portal.services.attempt_service import find_open_attempt, list_attempts

router = APIRouter()


class ExamIn(BaseModel):
    title: str
    description: Optional[str] = None
    subject: Optional[str] = None
    class_group: Optional[str] = None
    duration_minutes: int
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    question_ids: List[int] = []
    passing_marks: float = 0
    scoring_mode: str = "per-question-points"
    correct_points: float = 1
    wrong_points: float = 0
    randomize_questions: bool = False
    randomize_options: bool = False
    auto_submit: bool = True
    show_results: bool = True
    allow_review: bool = True
    prevent_copy_paste: bool = True
    detect_tab_switch: bool = True
    tab_switch_limit: Optional[int] = None
    status: str = "draft"


class ExamUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    subject: Optional[str] = None
    class_group: Optional[str] = None
    duration_minutes: Optional[int] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    question_ids: Optional[List[int]] = None
    passing_marks: Optional[float] = None
    scoring_mode: Optional[str] = None
    correct_points: Optional[float] = None
    wrong_points: Optional[float] = None
    randomize_questions: Optional[bool] = None
    randomize_options: Optional[bool] = None
    auto_submit: Optional[bool] = None
    show_results: Optional[bool] = None
    allow_review: Optional[bool] = None
    prevent_copy_paste: Optional[bool] = None
    detect_tab_switch: Optional[bool] = None
    tab_switch_limit: Optional[int] = None
    status: Optional[str] = None


@router.get("/exams")
def api_list_exams(
    status: Optional[str] = Query(None, pattern="^(draft|scheduled|active|completed)$"),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("read")),
):
    exams = exam_service.list_exams(session, status=status)
    if current_user.role not in STAFF_ROLES:
        # drafts are authoring work in progress
        exams = [e for e in exams if e.status != "draft"]
    return {"exams": [exam_to_dict(e) for e in exams]}


@router.post("/exams")
def api_create_exam(
    payload: ExamIn = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("write")),
):
    exam = exam_service.create_exam(session, payload.model_dump(), created_by=current_user.id)
    return {"exam": exam_to_dict(exam)}


@router.get("/exams/{exam_id}")
def api_get_exam(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("read")),
):
    return {"exam": exam_to_dict(exam_service.get_exam(session, exam_id))}


@router.put("/exams/{exam_id}")
def api_update_exam(
    exam_id: int,
    payload: ExamUpdate = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("write")),
):
    exam = exam_service.update_exam(session, exam_id, payload.model_dump(exclude_unset=True))
    return {"exam": exam_to_dict(exam)}


@router.delete("/exams/{exam_id}")
def api_delete_exam(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("write")),
):
    exam_service.delete_exam(session, exam_id)
    return {"success": True}


@router.get("/exams/{exam_id}/take")
def api_exam_for_taking(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("read")),
):
    """Exam with its questions, stripped of every answer key."""
    exam = exam_service.get_exam(session, exam_id)
    if current_user.role not in STAFF_ROLES and exam.status == "draft":
        raise NotFound("Exam not found")
    if current_user.role not in STAFF_ROLES:
        is_open, reason = exam_service.is_open_for_taking(exam)
        # a student already inside the exam keeps access until the attempt closes
        if not is_open and find_open_attempt(session, exam.id, current_user.id) is None:
            raise InvalidState(reason)
    return {"exam": exam_service.exam_for_taking(session, exam, current_user)}


@router.get("/exams/{exam_id}/results")
def api_exam_results(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("write")),
):
    exam = exam_service.get_exam(session, exam_id)
    attempts = list_attempts(session, exam_id=exam_id, terminal_only=True)
    return {
        "results": stats_service.exam_results(session, exam),
        "submissions": [attempt_to_dict(a, exam) for a in attempts],
    }
