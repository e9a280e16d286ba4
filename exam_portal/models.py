"""SQLModel models for the exam portal."""

from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import JSON, Column, Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel

# --- Enumerations (stored as plain strings) ---

ROLES = ("admin", "moderator", "student")
STAFF_ROLES = ("admin", "moderator")
USER_STATUSES = ("active", "inactive")

QUESTION_TYPES = ("multiple-choice", "true-false", "multiple-answer", "short-answer")
DIFFICULTIES = ("easy", "medium", "hard")

EXAM_STATUSES = ("draft", "scheduled", "active", "completed")
SCORING_MODES = ("per-question-points", "uniform-marking-scheme")

ATTEMPT_IN_PROGRESS = "in_progress"
ATTEMPT_COMPLETED = "completed"
ATTEMPT_SUBMITTED = "submitted"
ATTEMPT_SUSPENDED = "suspended"
ATTEMPT_STATUSES = (
    ATTEMPT_IN_PROGRESS,
    ATTEMPT_COMPLETED,
    ATTEMPT_SUBMITTED,
    ATTEMPT_SUSPENDED,
)
TERMINAL_ATTEMPT_STATUSES = (ATTEMPT_COMPLETED, ATTEMPT_SUBMITTED, ATTEMPT_SUSPENDED)

SESSION_STATUSES = ("in-progress", "completed", "abandoned")


class User(SQLModel, table=True):
    """Portal account. Students, moderators and administrators share this table."""

    __table_args__ = (UniqueConstraint("email", name="uq_user_email"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str  # stored lower-case, must be unique
    password_hash: str
    role: str = Field(default="student")  # "admin", "moderator", "student"
    status: str = Field(default="active")  # active, inactive
    created_at: datetime = Field(default_factory=datetime.utcnow)
    last_login: Optional[datetime] = None

    # Student profile fields
    student_number: Optional[str] = None
    class_group: Optional[str] = None
    course: Optional[str] = None
    year: Optional[str] = None


class AuthSession(SQLModel, table=True):
    """Bearer token issued at sign-in."""

    __table_args__ = (UniqueConstraint("token", name="uq_authsession_token"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    token: str
    user_id: int = Field(foreign_key="user.id")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    expires_at: datetime
    revoked_at: Optional[datetime] = None


class Question(SQLModel, table=True):
    """A question in the shared question bank."""

    id: Optional[int] = Field(default=None, primary_key=True)
    question_text: str
    type: str  # see QUESTION_TYPES
    # Ordered option strings; empty for short-answer
    options: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    # Scalar for single-answer types, list for multiple-answer
    correct_answer: Optional[Any] = Field(default=None, sa_column=Column(JSON))
    points: int = Field(default=1)
    subject: Optional[str] = None
    topic: Optional[str] = None
    difficulty: str = Field(default="medium")
    explanation: Optional[str] = None
    created_by: Optional[int] = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Exam(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: Optional[str] = None
    subject: Optional[str] = None
    class_group: Optional[str] = None
    duration_minutes: int
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    question_ids: List[int] = Field(default_factory=list, sa_column=Column(JSON))
    # Redundant copy of sum(question.points), refreshed on every write
    total_marks: float = Field(default=0)
    passing_marks: float = Field(default=0)

    # Marking
    scoring_mode: str = Field(default="per-question-points")
    correct_points: float = Field(default=1)
    wrong_points: float = Field(default=0)

    # Settings
    randomize_questions: bool = Field(default=False)
    randomize_options: bool = Field(default=False)
    auto_submit: bool = Field(default=True)
    show_results: bool = Field(default=True)
    allow_review: bool = Field(default=True)
    prevent_copy_paste: bool = Field(default=True)
    detect_tab_switch: bool = Field(default=True)
    # Suspend automatically once this many tab switches are recorded
    tab_switch_limit: Optional[int] = None

    status: str = Field(default="draft")
    created_by: Optional[int] = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class ExamAttempt(SQLModel, table=True):
    """One student's attempt at an exam; becomes the submission once graded."""

    __table_args__ = (
        Index(
            "uq_attempt_open_per_student",
            "exam_id",
            "student_id",
            unique=True,
            sqlite_where=text("status = 'in_progress'"),
            postgresql_where=text("status = 'in_progress'"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id")
    student_id: int = Field(foreign_key="user.id")
    started_at: datetime = Field(default_factory=datetime.utcnow)
    ended_at: Optional[datetime] = None
    status: str = Field(default=ATTEMPT_IN_PROGRESS)

    # [{question_id, answer, flagged, time_spent}, ...]; graded fields are
    # merged in once the attempt is submitted
    answers: List[dict] = Field(default_factory=list, sa_column=Column(JSON))
    time_spent_seconds: Optional[int] = None

    # Null until graded; a suspended attempt stays null
    total_score: Optional[float] = None
    max_score: Optional[float] = None
    percentage: Optional[float] = None
    needs_review: bool = Field(default=False)

    cheating_warnings: int = Field(default=0)
    tab_switches: int = Field(default=0)
    copy_paste_blocks: int = Field(default=0)
    multiple_logins: int = Field(default=0)

    version: int = Field(default=1)


class ActivityLog(SQLModel, table=True):
    """Logs suspicious activities and anti-cheating events during exams."""

    id: Optional[int] = Field(default=None, primary_key=True)
    attempt_id: int = Field(foreign_key="examattempt.id")
    exam_id: int = Field(foreign_key="exam.id")
    student_id: int = Field(foreign_key="user.id")
    activity_type: str  # tab_switch, copy_paste_block, cheating_warning, multiple_login
    severity: str = Field(default="low")  # low, medium, high
    details: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class MonitoringSession(SQLModel, table=True):
    """Presence record used by the live monitoring views."""

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id")
    student_id: int = Field(foreign_key="user.id")
    attempt_id: Optional[int] = Field(default=None, foreign_key="examattempt.id")
    status: str = Field(default="in-progress")  # in-progress, completed, abandoned
    warnings: List[Any] = Field(default_factory=list, sa_column=Column(JSON))
    started_at: datetime = Field(default_factory=datetime.utcnow)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
