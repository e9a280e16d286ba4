import asyncio

import httpx
import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, text

# ============================================================================
# IN-MEMORY DATABASE FOR TESTING
# ============================================================================

from exam_portal.auth_utils import hash_password
from exam_portal.models import Exam, Question, User
from exam_portal.services.identity_service import issue_session

# StaticPool keeps every connection on the same in-memory database
test_engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@pytest.fixture(scope="session")
def engine():
    """Provide test engine as a fixture."""
    return test_engine


@pytest.fixture(scope="session", autouse=True)
def setup_test_db():
    """Create all tables in the test database once per session."""
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(autouse=True)
def cleanup_db_between_tests():
    """Clean up test data after each test."""
    yield

    # FK-safe order
    with Session(test_engine) as session:
        session.exec(text("DELETE FROM activitylog"))
        session.exec(text("DELETE FROM monitoringsession"))
        session.exec(text("DELETE FROM examattempt"))
        session.exec(text("DELETE FROM authsession"))
        session.exec(text("DELETE FROM exam"))
        session.exec(text("DELETE FROM question"))
        session.exec(text("DELETE FROM user"))
        session.commit()


# ============================================================================
# FASTAPI APP & TEST CLIENT
# ============================================================================

from exam_portal.database import get_session
from exam_portal.main import app


@pytest.fixture
def client():
    """httpx AsyncClient over the ASGI app, wrapped for synchronous tests."""

    def override_get_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    loop = asyncio.new_event_loop()
    transport = httpx.ASGITransport(app=app)
    async_client = httpx.AsyncClient(transport=transport, base_url="http://testserver")

    class SyncClientWrapper:
        def __init__(self, async_client, loop):
            self.async_client = async_client
            self.loop = loop

        def get(self, *args, **kwargs):
            return self.loop.run_until_complete(self.async_client.get(*args, **kwargs))

        def post(self, *args, **kwargs):
            return self.loop.run_until_complete(self.async_client.post(*args, **kwargs))

        def put(self, *args, **kwargs):
            return self.loop.run_until_complete(self.async_client.put(*args, **kwargs))

        def delete(self, *args, **kwargs):
            return self.loop.run_until_complete(self.async_client.delete(*args, **kwargs))

    yield SyncClientWrapper(async_client, loop)

    loop.run_until_complete(async_client.aclose())
    loop.close()
    app.dependency_overrides.clear()


@pytest.fixture
def session():
    """Provide a database session for tests."""
    with Session(test_engine) as session:
        yield session


# ============================================================================
# ENTITY FIXTURES
# ============================================================================


def _make_user(name, email, password, role, **extra):
    with Session(test_engine) as session:
        user = User(
            name=name,
            email=email,
            password_hash=hash_password(password),
            role=role,
            **extra,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        user_id = user.id

    with Session(test_engine) as session:
        return session.get(User, user_id)


@pytest.fixture
def admin_user():
    return _make_user("Admin User", "admin@example.com", "admin123", "admin")


@pytest.fixture
def moderator_user():
    return _make_user("Mod User", "moderator@example.com", "moderator123", "moderator")


@pytest.fixture
def student_user():
    return _make_user(
        "Alice Student",
        "alice@example.com",
        "student123",
        "student",
        student_number="S001",
        class_group="CS-1",
    )


@pytest.fixture
def other_student():
    return _make_user("Bob Student", "bob@example.com", "student123", "student", student_number="S002")


@pytest.fixture
def auth_headers():
    """Return a function issuing a bearer token for a user."""

    def _headers(user):
        with Session(test_engine) as session:
            auth = issue_session(session, session.get(User, user.id))
            return {"Authorization": f"Bearer {auth.token}"}

    return _headers


@pytest.fixture
def questions(admin_user):
    """Two multiple-choice questions, a multiple-answer and a short-answer one."""
    with Session(test_engine) as session:
        items = [
            Question(
                question_text="2 + 2 = ?",
                type="multiple-choice",
                options=["3", "4", "5"],
                correct_answer="4",
                points=1,
                created_by=admin_user.id,
            ),
            Question(
                question_text="Capital of France?",
                type="multiple-choice",
                options=["Paris", "Rome"],
                correct_answer="Paris",
                points=1,
                created_by=admin_user.id,
            ),
            Question(
                question_text="Which are HTTP methods?",
                type="multiple-answer",
                options=["GET", "PUT", "FETCH", "DELETE"],
                correct_answer=["GET", "PUT", "DELETE"],
                points=2,
                created_by=admin_user.id,
            ),
            Question(
                question_text="Explain REST.",
                type="short-answer",
                options=[],
                correct_answer=None,
                points=5,
                created_by=admin_user.id,
            ),
        ]
        for q in items:
            session.add(q)
        session.commit()
        ids = [q.id for q in items]

    with Session(test_engine) as session:
        return [session.get(Question, qid) for qid in ids]


def _make_exam(question_list, created_by, **overrides):
    data = dict(
        title="Midterm",
        duration_minutes=60,
        question_ids=[q.id for q in question_list],
        total_marks=sum(q.points for q in question_list),
        passing_marks=1,
        status="active",
        created_by=created_by,
    )
    data.update(overrides)
    with Session(test_engine) as session:
        exam = Exam(**data)
        session.add(exam)
        session.commit()
        session.refresh(exam)
        exam_id = exam.id

    with Session(test_engine) as session:
        return session.get(Exam, exam_id)


@pytest.fixture
def make_exam(admin_user):
    """Factory for exams over a given list of questions."""

    def _factory(question_list, **overrides):
        return _make_exam(question_list, admin_user.id, **overrides)

    return _factory


@pytest.fixture
def exam(questions, make_exam):
    """Active exam over the two multiple-choice questions."""
    return make_exam(questions[:2])

