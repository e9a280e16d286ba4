"""Sign-up, sign-in, sign-out and profile routes."""

from typing import Optional

from fastapi import APIRouter, Body, Depends, Request
from pydantic import BaseModel
from sqlmodel import Session

from exam_portal.database import get_session
from exam_portal.deps import get_current_user, get_token, require_login
from exam_portal.models import User
from exam_portal.serializers import user_to_dict
from exam_portal.services import identity_service

router = APIRouter()


class SignUpIn(BaseModel):
    email: str
    password: str
    name: str
    student_number: Optional[str] = None
    class_group: Optional[str] = None
    course: Optional[str] = None
    year: Optional[str] = None


class SignInIn(BaseModel):
    email: str
    password: str


@router.post("/auth/signup")
def api_sign_up(payload: SignUpIn = Body(...), session: Session = Depends(get_session)):
    user = identity_service.sign_up(
        session,
        email=payload.email,
        password=payload.password,
        name=payload.name,
        student_number=payload.student_number,
        class_group=payload.class_group,
        course=payload.course,
        year=payload.year,
    )
    return {"user": user_to_dict(user)}


@router.post("/auth/signin")
def api_sign_in(request: Request, payload: SignInIn = Body(...), session: Session = Depends(get_session)):
    user, auth = identity_service.sign_in(session, payload.email, payload.password)
    # Browser clients ride on the cookie session; API clients use the token
    request.session["token"] = auth.token
    return {"token": auth.token, "expires_at": auth.expires_at, "user": user_to_dict(user)}


@router.post("/auth/signout")
def api_sign_out(
    request: Request,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_login),
):
    identity_service.sign_out(session, get_token(request))
    request.session.clear()
    return {"success": True}


@router.get("/auth/session")
def api_get_session(current_user: Optional[User] = Depends(get_current_user)):
    return {"user": user_to_dict(current_user) if current_user else None}


@router.get("/user/profile")
def api_profile(current_user: User = Depends(require_login)):
    return {"profile": user_to_dict(current_user)}
