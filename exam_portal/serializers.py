"""Turn records into the JSON shapes returned by the API.

Students never receive password hashes, other students' data, or answer
keys; those rules are applied here so every route shares them.
"""

from typing import Optional

from exam_portal.models import (
    ATTEMPT_IN_PROGRESS,
    STAFF_ROLES,
    ActivityLog,
    Exam,
    ExamAttempt,
    MonitoringSession,
    Question,
    User,
)
from exam_portal.services.exam_service import exam_settings
from exam_portal.services.grading import is_passing, letter_grade

GRADING_FIELDS = ("status", "is_correct", "points_awarded", "max_points", "feedback")


def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "status": user.status,
        "student_number": user.student_number,
        "class_group": user.class_group,
        "course": user.course,
        "year": user.year,
        "created_at": user.created_at,
        "last_login": user.last_login,
    }


def question_to_dict(question: Question, include_answer: bool = True) -> dict:
    data = {
        "id": question.id,
        "question_text": question.question_text,
        "type": question.type,
        "options": list(question.options or []),
        "points": question.points,
        "subject": question.subject,
        "topic": question.topic,
        "difficulty": question.difficulty,
        "created_by": question.created_by,
        "created_at": question.created_at,
        "updated_at": question.updated_at,
    }
    if include_answer:
        data["correct_answer"] = question.correct_answer
        data["explanation"] = question.explanation
    return data


def exam_to_dict(exam: Exam) -> dict:
    return {
        "id": exam.id,
        "title": exam.title,
        "description": exam.description,
        "subject": exam.subject,
        "class_group": exam.class_group,
        "duration_minutes": exam.duration_minutes,
        "start_time": exam.start_time,
        "end_time": exam.end_time,
        "question_ids": list(exam.question_ids or []),
        "total_marks": exam.total_marks,
        "passing_marks": exam.passing_marks,
        "scoring_mode": exam.scoring_mode,
        "marking_scheme": {"correct": exam.correct_points, "wrong": exam.wrong_points},
        "settings": exam_settings(exam),
        "status": exam.status,
        "created_by": exam.created_by,
        "created_at": exam.created_at,
        "updated_at": exam.updated_at,
    }


def _strip_grading(answer: dict) -> dict:
    return {k: v for k, v in answer.items() if k not in GRADING_FIELDS}


def attempt_to_dict(attempt: ExamAttempt, exam: Optional[Exam] = None, viewer: Optional[User] = None) -> dict:
    """Serialize an attempt, hiding results a student is not allowed to see yet.

    ``show_results`` off hides scores from students; ``allow_review`` off hides
    per-answer correctness but keeps the totals.
    """
    answers = [dict(a) for a in attempt.answers or []]
    data = {
        "id": attempt.id,
        "exam_id": attempt.exam_id,
        "student_id": attempt.student_id,
        "status": attempt.status,
        "started_at": attempt.started_at,
        "ended_at": attempt.ended_at,
        "time_spent_seconds": attempt.time_spent_seconds,
        "answers": answers,
        "total_score": attempt.total_score,
        "max_score": attempt.max_score,
        "percentage": attempt.percentage,
        "needs_review": attempt.needs_review,
        "graded": attempt.percentage is not None,
        "cheating_warnings": attempt.cheating_warnings,
        "tab_switches": attempt.tab_switches,
        "copy_paste_blocks": attempt.copy_paste_blocks,
        "multiple_logins": attempt.multiple_logins,
    }
    if attempt.percentage is not None:
        data["grade"] = letter_grade(attempt.percentage)
        if exam is not None:
            data["passed"] = is_passing(exam, attempt.total_score)

    is_student_view = viewer is not None and viewer.role not in STAFF_ROLES
    if not is_student_view or exam is None or attempt.status == ATTEMPT_IN_PROGRESS:
        return data

    if not exam.show_results:
        for field in ("total_score", "max_score", "percentage", "grade", "passed"):
            data.pop(field, None)
        data["answers"] = [_strip_grading(a) for a in answers]
        data["results_hidden"] = True
    elif not exam.allow_review:
        data["answers"] = [_strip_grading(a) for a in answers]
    return data


def session_to_dict(record: MonitoringSession) -> dict:
    return {
        "id": record.id,
        "exam_id": record.exam_id,
        "student_id": record.student_id,
        "attempt_id": record.attempt_id,
        "status": record.status,
        "warnings": list(record.warnings or []),
        "started_at": record.started_at,
        "created_at": record.created_at,
        "updated_at": record.updated_at,
    }


def activity_to_dict(log: ActivityLog) -> dict:
    return {
        "id": log.id,
        "attempt_id": log.attempt_id,
        "activity_type": log.activity_type,
        "severity": log.severity,
        "details": log.details,
        "timestamp": log.timestamp,
    }
