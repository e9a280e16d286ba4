"""Question bank and exam authoring over HTTP, including answer-key redaction."""

from datetime import datetime, timedelta

import pytest

from exam_portal.errors import ValidationError
from exam_portal.models import Exam
from exam_portal.services import question_service


# ---------------------------------------------------------------------------
# Question validation
# ---------------------------------------------------------------------------


def test_true_false_gets_default_options():
    cleaned = question_service.validate_question(
        {"question_text": "Sky is blue?", "type": "true-false", "correct_answer": True}
    )
    assert cleaned["options"] == ["True", "False"]
    assert cleaned["correct_answer"] == "True"


def test_true_false_bool_key_maps_to_second_option():
    cleaned = question_service.validate_question(
        {"question_text": "Fire is cold?", "type": "true-false", "options": ["Yes", "No"], "correct_answer": False}
    )
    assert cleaned["correct_answer"] == "No"


def test_multiple_answer_key_is_put_in_option_order():
    cleaned = question_service.validate_question(
        {
            "question_text": "HTTP verbs",
            "type": "multiple-answer",
            "options": ["GET", "PUT", "DELETE"],
            "correct_answer": ["DELETE", "GET", "GET"],
        }
    )
    assert cleaned["correct_answer"] == ["GET", "DELETE"]


@pytest.mark.parametrize(
    "data,field",
    [
        ({"question_text": "", "type": "multiple-choice", "options": ["a", "b"], "correct_answer": "a"}, "question_text"),
        ({"question_text": "Q", "type": "essay"}, "type"),
        ({"question_text": "Q", "type": "multiple-choice", "options": ["a"], "correct_answer": "a"}, "options"),
        ({"question_text": "Q", "type": "multiple-choice", "options": ["a", "A"], "correct_answer": "a"}, "options"),
        ({"question_text": "Q", "type": "multiple-choice", "options": ["a", "b"], "correct_answer": "c"}, "correct_answer"),
        ({"question_text": "Q", "type": "short-answer", "options": ["a"]}, "options"),
        ({"question_text": "Q", "type": "short-answer", "points": 0}, "points"),
        ({"question_text": "Q", "type": "short-answer", "difficulty": "brutal"}, "difficulty"),
    ],
)
def test_invalid_questions(data, field):
    with pytest.raises(ValidationError) as excinfo:
        question_service.validate_question(data)
    assert field in excinfo.value.errors


def test_question_text_is_sanitized():
    cleaned = question_service.validate_question(
        {"question_text": "<b>Bold</b><script>alert(1)</script>", "type": "short-answer"}
    )
    assert "<script>" not in cleaned["question_text"]
    assert "<b>Bold</b>" in cleaned["question_text"]


# ---------------------------------------------------------------------------
# Question routes
# ---------------------------------------------------------------------------


def test_create_and_list_questions(client, admin_user, student_user, auth_headers):
    r = client.post(
        "/api/questions",
        headers=auth_headers(admin_user),
        json={
            "question_text": "2 + 3?",
            "type": "multiple-choice",
            "options": ["4", "5"],
            "correct_answer": "5",
            "points": 2,
            "subject": "Math",
            "explanation": "Counting.",
        },
    )
    assert r.status_code == 200
    assert r.json()["question"]["correct_answer"] == "5"

    staff_view = client.get("/api/questions", headers=auth_headers(admin_user)).json()["questions"]
    assert staff_view[0]["correct_answer"] == "5"

    student_view = client.get("/api/questions", headers=auth_headers(student_user)).json()["questions"]
    assert "correct_answer" not in student_view[0]
    assert "explanation" not in student_view[0]


def test_student_cannot_create_question(client, student_user, auth_headers):
    r = client.post(
        "/api/questions",
        headers=auth_headers(student_user),
        json={"question_text": "Q", "type": "short-answer"},
    )
    assert r.status_code == 403


def test_update_question_refreshes_exam_totals(client, session, admin_user, questions, exam, auth_headers):
    r = client.put(
        f"/api/questions/{questions[0].id}",
        headers=auth_headers(admin_user),
        json={"points": 4},
    )
    assert r.status_code == 200
    session.expire_all()
    assert session.get(Exam, exam.id).total_marks == 5


def test_get_missing_question_is_404(client, admin_user, auth_headers):
    r = client.get("/api/questions/9999", headers=auth_headers(admin_user))
    assert r.status_code == 404
    assert r.json()["kind"] == "not_found"


# ---------------------------------------------------------------------------
# Exam routes
# ---------------------------------------------------------------------------


def _exam_payload(question_ids, **overrides):
    data = {
        "title": "Final",
        "duration_minutes": 45,
        "question_ids": question_ids,
        "passing_marks": 1,
        "status": "active",
    }
    data.update(overrides)
    return data


def test_create_exam_computes_total_marks(client, admin_user, questions, auth_headers):
    ids = [q.id for q in questions]
    r = client.post("/api/exams", headers=auth_headers(admin_user), json=_exam_payload(ids))
    assert r.status_code == 200
    body = r.json()["exam"]
    assert body["total_marks"] == 9
    assert body["settings"]["auto_submit"] is True
    assert body["marking_scheme"] == {"correct": 1, "wrong": 0}


@pytest.mark.parametrize(
    "overrides,field",
    [
        ({"title": ""}, "title"),
        ({"duration_minutes": 0}, "duration_minutes"),
        ({"passing_marks": 100}, "passing_marks"),
        ({"scoring_mode": "vibes"}, "scoring_mode"),
        ({"wrong_points": 1}, "wrong_points"),
        ({"tab_switch_limit": 0}, "tab_switch_limit"),
    ],
)
def test_create_exam_validation(client, admin_user, questions, auth_headers, overrides, field):
    r = client.post(
        "/api/exams",
        headers=auth_headers(admin_user),
        json=_exam_payload([questions[0].id], **overrides),
    )
    assert r.status_code == 400
    assert field in r.json()["errors"]


def test_exam_with_unknown_or_duplicate_questions(client, admin_user, questions, auth_headers):
    headers = auth_headers(admin_user)
    unknown = client.post("/api/exams", headers=headers, json=_exam_payload([questions[0].id, 9999], passing_marks=0))
    dup = client.post(
        "/api/exams", headers=headers, json=_exam_payload([questions[0].id, questions[0].id], passing_marks=0)
    )
    assert "question_ids" in unknown.json()["errors"]
    assert "question_ids" in dup.json()["errors"]


def test_end_must_follow_start(client, admin_user, questions, auth_headers):
    start = datetime.utcnow() + timedelta(days=1)
    r = client.post(
        "/api/exams",
        headers=auth_headers(admin_user),
        json=_exam_payload(
            [questions[0].id],
            start_time=start.isoformat(),
            end_time=(start - timedelta(hours=1)).isoformat(),
        ),
    )
    assert r.status_code == 400
    assert "end_time" in r.json()["errors"]


def test_students_do_not_see_drafts(client, questions, make_exam, student_user, admin_user, auth_headers):
    make_exam(questions[:1], title="Visible")
    draft = make_exam(questions[:1], title="Hidden", status="draft")

    titles = [e["title"] for e in client.get("/api/exams", headers=auth_headers(student_user)).json()["exams"]]
    assert titles == ["Visible"]
    staff_titles = [e["title"] for e in client.get("/api/exams", headers=auth_headers(admin_user)).json()["exams"]]
    assert set(staff_titles) == {"Visible", "Hidden"}

    r = client.get(f"/api/exams/{draft.id}/take", headers=auth_headers(student_user))
    assert r.status_code == 404


def test_take_view_has_no_answer_keys(client, questions, make_exam, student_user, admin_user, auth_headers):
    exam = make_exam(questions, randomize_questions=True, randomize_options=True)
    headers = auth_headers(student_user)

    first = client.get(f"/api/exams/{exam.id}/take", headers=headers).json()["exam"]
    again = client.get(f"/api/exams/{exam.id}/take", headers=headers).json()["exam"]
    staff_view = client.get(f"/api/exams/{exam.id}/take", headers=auth_headers(admin_user)).json()["exam"]

    assert len(first["questions"]) == 4
    for q in first["questions"] + staff_view["questions"]:
        assert "correct_answer" not in q
        assert "explanation" not in q

    # shuffles are stable for one student
    assert [q["id"] for q in first["questions"]] == [q["id"] for q in again["questions"]]
    assert sorted(first["questions"][0]["options"]) == sorted(
        next(x for x in questions if x.id == first["questions"][0]["id"]).options
    )


def test_take_view_with_deleted_question_is_invalid_reference(
    client, session, questions, exam, admin_user, student_user, auth_headers
):
    question_service.delete_question(session, questions[1].id)

    r = client.get(f"/api/exams/{exam.id}/take", headers=auth_headers(student_user))
    assert r.status_code == 404
    assert r.json()["kind"] == "invalid_reference"


def test_take_view_waits_for_start_time(client, questions, make_exam, student_user, admin_user, auth_headers):
    later = make_exam(questions[:2], status="scheduled", start_time=datetime.utcnow() + timedelta(days=1))

    r = client.get(f"/api/exams/{later.id}/take", headers=auth_headers(student_user))
    assert r.status_code == 409
    assert r.json()["kind"] == "invalid_state"

    assert client.get(f"/api/exams/{later.id}/take", headers=auth_headers(admin_user)).status_code == 200


def test_update_exam(client, admin_user, exam, auth_headers):
    r = client.put(
        f"/api/exams/{exam.id}",
        headers=auth_headers(admin_user),
        json={"title": "Midterm (rescheduled)", "show_results": False},
    )
    assert r.status_code == 200
    body = r.json()["exam"]
    assert body["title"] == "Midterm (rescheduled)"
    assert body["settings"]["show_results"] is False
    assert body["total_marks"] == 2


def test_delete_exam(client, admin_user, exam, auth_headers):
    headers = auth_headers(admin_user)
    assert client.delete(f"/api/exams/{exam.id}", headers=headers).status_code == 200
    assert client.get(f"/api/exams/{exam.id}", headers=headers).status_code == 404


def test_delete_exam_with_attempts_conflicts(client, admin_user, student_user, exam, auth_headers):
    client.post(f"/api/exams/{exam.id}/attempts", headers=auth_headers(student_user))

    r = client.delete(f"/api/exams/{exam.id}", headers=auth_headers(admin_user))
    assert r.status_code == 409
