"""Live monitoring and dashboard analytics."""

from typing import List, Optional

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel
from sqlmodel import Session

from exam_portal.database import get_session
from exam_portal.deps import require_capability
from exam_portal.models import User
from exam_portal.serializers import attempt_to_dict, session_to_dict
from exam_portal.services import attempt_service, monitoring_service, stats_service

router = APIRouter()


class SessionIn(BaseModel):
    exam_id: int
    attempt_id: Optional[int] = None


class SessionUpdate(BaseModel):
    status: Optional[str] = None
    warnings: Optional[List[str]] = None


@router.post("/sessions")
def api_create_session(
    payload: SessionIn = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("take")),
):
    record = monitoring_service.create_session(session, payload.exam_id, current_user, payload.attempt_id)
    return {"session": session_to_dict(record)}


@router.put("/sessions/{session_id}")
def api_update_session(
    session_id: int,
    payload: SessionUpdate = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("take")),
):
    record = monitoring_service.update_session(
        session, session_id, current_user, status=payload.status, warnings=payload.warnings
    )
    return {"session": session_to_dict(record)}


@router.get("/monitoring/active")
def api_active_sessions(
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("write")),
):
    return {"sessions": [session_to_dict(s) for s in monitoring_service.active_sessions(session)]}


@router.get("/monitoring/attempts")
def api_live_attempts(
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("write")),
):
    return {"attempts": monitoring_service.live_attempts(session)}


@router.post("/monitoring/sweep")
def api_sweep_expired(
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("write")),
):
    """Auto-submit every attempt whose time limit has passed."""
    closed = attempt_service.sweep_expired(session)
    return {"submitted": [attempt_to_dict(a) for a in closed]}


@router.get("/analytics/stats")
def api_stats(
    session: Session = Depends(get_session),
    current_user: User = Depends(require_capability("write")),
):
    return {"stats": stats_service.dashboard_stats(session)}
