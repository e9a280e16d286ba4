"""Question bank routes."""

from typing import Any, List, Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel
from sqlmodel import Session

from exam_portal.database import get_session
from exam_portal.deps import require_capability
from exam_portal.models import STAFF_ROLES, User
from exam_portal.serializers import question_to_dict
from exam_portal.services import question_service

router = APIRouter()


class QuestionIn(BaseModel):
    question_text: str
    type: str
    options: List[str] = []
    correct_answer: Any = None
    points: int = 1
    subject: Optional[str] = None
    topic: Optional[str] = None
    difficulty: Optional[str] = None
    explanation: Optional[str] = None


class QuestionUpdate(BaseModel):
    question_text: Optional[str] = None
    type: Optional[str] = None
    options: Optional[List[str]] = None
    correct_answer: Any = None
    points: Optional[int] = None
    subject: Optional[str] = None
    topic: Optional[str] = None
    difficulty: Optional[str] = None
    explanation: Optional[str] = None


@router.get("/questions")
def api_list_questions(
    subject: Optional[str] = Query(None),
    type: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("read")),
):
    """List the question bank; answer keys only go to staff."""
    questions = question_service.list_questions(session, subject=subject, qtype=type, search=search)
    include_answer = current_user.role in STAFF_ROLES
    return {"questions": [question_to_dict(q, include_answer=include_answer) for q in questions]}


@router.post("/questions")
def api_create_question(
    payload: QuestionIn = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("write")),
):
    question = question_service.create_question(session, payload.model_dump(), created_by=current_user.id)
    return {"question": question_to_dict(question)}


@router.get("/questions/{question_id}")
def api_get_question(
    question_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("write")),
):
    return {"question": question_to_dict(question_service.get_question(session, question_id))}


@router.put("/questions/{question_id}")
def api_update_question(
    question_id: int,
    payload: QuestionUpdate = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("write")),
):
    question = question_service.update_question(session, question_id, payload.model_dump(exclude_unset=True))
    return {"question": question_to_dict(question)}


@router.delete("/questions/{question_id}")
def api_delete_question(
    question_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("write")),
):
    question_service.delete_question(session, question_id)
    return {"success": True}
