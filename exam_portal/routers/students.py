"""Student account management (administrators and moderators)."""

from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel
from sqlmodel import Session

from exam_portal.config import settings
from exam_portal.database import get_session
from exam_portal.deps import require_capability
from exam_portal.models import User
from exam_portal.serializers import user_to_dict
from exam_portal.services import student_service
from exam_portal.utils import paginate

router = APIRouter()


class StudentIn(BaseModel):
    name: str
    email: str
    password: Optional[str] = None
    student_number: Optional[str] = None
    class_group: Optional[str] = None
    course: Optional[str] = None
    year: Optional[str] = None


class StudentUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    status: Optional[str] = None
    student_number: Optional[str] = None
    class_group: Optional[str] = None
    course: Optional[str] = None
    year: Optional[str] = None


@router.get("/students")
def api_list_students(
    status: Optional[str] = Query(None, pattern="^(active|inactive)$"),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("write")),
):
    students = student_service.list_students(session, status=status, search=search)
    page_items, meta = paginate(students, page, settings.PAGE_SIZE)
    return {"students": [user_to_dict(s) for s in page_items], "pagination": meta}


@router.post("/students")
def api_create_student(
    payload: StudentIn = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("write")),
):
    data = payload.model_dump()
    student = student_service.create_student(
        session,
        name=data.pop("name"),
        email=data.pop("email"),
        password=data.pop("password"),
        **data,
    )
    return {"student": user_to_dict(student)}


@router.put("/students/{student_id}")
def api_update_student(
    student_id: int,
    payload: StudentUpdate = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("write")),
):
    student = student_service.update_student(session, student_id, payload.model_dump(exclude_unset=True))
    return {"student": user_to_dict(student)}


@router.delete("/students/{student_id}")
def api_delete_student(
    student_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("write")),
):
    student_service.deactivate_student(session, student_id)
    return {"success": True}
