"""Dashboard and per-exam result statistics."""

from typing import List

from sqlalchemy import func
from sqlmodel import Session, select

from exam_portal.models import (
    ATTEMPT_COMPLETED,
    ATTEMPT_IN_PROGRESS,
    TERMINAL_ATTEMPT_STATUSES,
    Exam,
    ExamAttempt,
    Question,
    User,
)
from exam_portal.services.grading import is_passing

# (label, lowest percentage) from the top band down
DISTRIBUTION_BANDS = (("90-100", 90), ("70-89", 70), ("50-69", 50), ("0-49", 0))


def _count(session: Session, stmt) -> int:
    return session.exec(stmt).one()


def dashboard_stats(session: Session) -> dict:
    graded_percentages = session.exec(
        select(ExamAttempt.percentage).where(
            ExamAttempt.status.in_(TERMINAL_ATTEMPT_STATUSES) & (ExamAttempt.percentage != None)  # noqa: E711
        )
    ).all()
    return {
        "total_students": _count(session, select(func.count(User.id)).where(User.role == "student")),
        "active_students": _count(
            session,
            select(func.count(User.id)).where((User.role == "student") & (User.status == "active")),
        ),
        "total_exams": _count(session, select(func.count(Exam.id))),
        "active_exams": _count(session, select(func.count(Exam.id)).where(Exam.status == "active")),
        "total_questions": _count(session, select(func.count(Question.id))),
        "total_submissions": _count(
            session,
            select(func.count(ExamAttempt.id)).where(ExamAttempt.status.in_(TERMINAL_ATTEMPT_STATUSES)),
        ),
        "completed_attempts": _count(
            session, select(func.count(ExamAttempt.id)).where(ExamAttempt.status == ATTEMPT_COMPLETED)
        ),
        "in_progress_attempts": _count(
            session, select(func.count(ExamAttempt.id)).where(ExamAttempt.status == ATTEMPT_IN_PROGRESS)
        ),
        "average_score": (
            sum(graded_percentages) / len(graded_percentages) if graded_percentages else 0
        ),
    }


def distribution(percentages: List[float]) -> dict:
    buckets = {label: 0 for label, _ in DISTRIBUTION_BANDS}
    for pct in percentages:
        for label, lowest in DISTRIBUTION_BANDS:
            if pct >= lowest:
                buckets[label] += 1
                break
    return buckets


def exam_results(session: Session, exam: Exam) -> dict:
    """Summary of every graded attempt of one exam (suspended attempts are counted apart)."""
    attempts = session.exec(
        select(ExamAttempt)
        .where((ExamAttempt.exam_id == exam.id) & ExamAttempt.status.in_(TERMINAL_ATTEMPT_STATUSES))
        .order_by(ExamAttempt.ended_at)
    ).all()
    graded = [a for a in attempts if a.percentage is not None]
    percentages = [a.percentage for a in graded]
    passed = [a for a in graded if is_passing(exam, a.total_score)]
    return {
        "exam_id": exam.id,
        "title": exam.title,
        "attempts": len(attempts),
        "graded": len(graded),
        "suspended": sum(1 for a in attempts if a.percentage is None),
        "pending_review": sum(1 for a in graded if a.needs_review),
        "average": sum(percentages) / len(percentages) if percentages else 0,
        "highest": max(percentages) if percentages else 0,
        "lowest": min(percentages) if percentages else 0,
        "pass_rate": (len(passed) / len(graded) * 100) if graded else 0,
        "distribution": distribution(percentages),
        "total_tab_switches": sum(a.tab_switches for a in attempts),
        "total_warnings": sum(a.cheating_warnings for a in attempts),
    }
