"""Attempt lifecycle: start, auto-save, violations, submit, timeouts and races."""

from datetime import datetime, timedelta

import pytest
from sqlmodel import Session, select

from exam_portal.errors import Conflict, InvalidState, ValidationError
from exam_portal.models import ActivityLog, ExamAttempt
from exam_portal.services import attempt_service


def _reload(session, attempt_id):
    session.expire_all()
    return session.get(ExamAttempt, attempt_id)


def test_start_attempt_opens_in_progress(session, exam, student_user):
    attempt = attempt_service.start_attempt(session, exam.id, student_user.id)

    assert attempt.status == "in_progress"
    assert attempt.total_score is None
    assert attempt.version == 1


def test_second_open_attempt_conflicts(session, exam, student_user):
    attempt_service.start_attempt(session, exam.id, student_user.id)
    with pytest.raises(Conflict):
        attempt_service.start_attempt(session, exam.id, student_user.id)


def test_draft_exam_cannot_be_started(session, questions, make_exam, student_user):
    draft = make_exam(questions[:1], status="draft")
    with pytest.raises(InvalidState):
        attempt_service.start_attempt(session, draft.id, student_user.id)


def test_exam_outside_window_cannot_be_started(session, questions, make_exam, student_user):
    now = datetime.utcnow()
    later = make_exam(questions[:1], start_time=now + timedelta(days=1), end_time=now + timedelta(days=2))
    with pytest.raises(InvalidState):
        attempt_service.start_attempt(session, later.id, student_user.id)


def test_submit_grades_and_completes(session, exam, questions, student_user):
    attempt = attempt_service.start_attempt(session, exam.id, student_user.id)
    attempt_service.save_answers(session, attempt.id, [{"question_id": questions[0].id, "answer": "4"}])

    result = attempt_service.submit_attempt(
        session, attempt.id, [{"question_id": questions[1].id, "answer": "Rome"}], time_spent_seconds=120
    )

    assert result.status == "completed"
    assert result.total_score == 1
    assert result.max_score == 2
    assert result.percentage == pytest.approx(50)
    assert result.time_spent_seconds == 120
    assert result.ended_at is not None
    assert [a["status"] for a in result.answers] == ["correct", "incorrect"]


def test_submit_twice_is_invalid_state(session, exam, student_user):
    attempt = attempt_service.start_attempt(session, exam.id, student_user.id)
    attempt_service.submit_attempt(session, attempt.id, [])

    with pytest.raises(InvalidState):
        attempt_service.submit_attempt(session, attempt.id, [])


def test_new_attempt_allowed_after_submission(session, exam, student_user):
    first = attempt_service.start_attempt(session, exam.id, student_user.id)
    attempt_service.submit_attempt(session, first.id, [])

    second = attempt_service.start_attempt(session, exam.id, student_user.id)
    assert second.id != first.id


def test_save_rejects_malformed_answer(session, exam, questions, student_user):
    attempt = attempt_service.start_attempt(session, exam.id, student_user.id)
    with pytest.raises(ValidationError):
        attempt_service.save_answers(session, attempt.id, [{"question_id": questions[0].id, "answer": ["4"]}])


def test_force_submit_after_tab_switches(session, exam, questions, student_user):
    attempt = attempt_service.start_attempt(session, exam.id, student_user.id)
    attempt_service.save_answers(session, attempt.id, [{"question_id": questions[0].id, "answer": "4"}])
    for _ in range(3):
        attempt_service.record_violation(session, attempt.id, "tab_switch")

    result = attempt_service.force_submit(session, attempt.id)

    assert result.status == "submitted"
    assert result.ended_at is not None
    assert result.tab_switches == 3
    assert result.total_score == 1
    assert result.max_score == 2

    logs = session.exec(select(ActivityLog).where(ActivityLog.attempt_id == attempt.id)).all()
    assert len(logs) == 3
    assert {log.activity_type for log in logs} == {"tab_switch"}


def test_unknown_violation_kind_is_rejected(session, exam, student_user):
    attempt = attempt_service.start_attempt(session, exam.id, student_user.id)
    with pytest.raises(ValidationError):
        attempt_service.record_violation(session, attempt.id, "sneezing")


def test_tab_switch_limit_suspends(session, questions, make_exam, student_user):
    strict = make_exam(questions[:2], tab_switch_limit=2)
    attempt = attempt_service.start_attempt(session, strict.id, student_user.id)

    attempt_service.record_violation(session, attempt.id, "tab_switch")
    assert _reload(session, attempt.id).status == "in_progress"
    attempt_service.record_violation(session, attempt.id, "tab_switch")

    stored = _reload(session, attempt.id)
    assert stored.status == "suspended"
    assert stored.tab_switches == 2


def test_suspend_leaves_scores_null(session, exam, questions, student_user):
    attempt = attempt_service.start_attempt(session, exam.id, student_user.id)
    attempt_service.save_answers(session, attempt.id, [{"question_id": questions[0].id, "answer": "4"}])

    result = attempt_service.suspend_attempt(session, attempt.id)

    assert result.status == "suspended"
    assert result.total_score is None
    assert result.percentage is None
    with pytest.raises(InvalidState):
        attempt_service.submit_attempt(session, attempt.id, [])


def test_expired_attempt_is_auto_submitted(session, exam, questions, student_user):
    t0 = datetime.utcnow() - timedelta(minutes=90)
    attempt = attempt_service.start_attempt(session, exam.id, student_user.id, now=t0)
    attempt_service.save_answers(
        session, attempt.id, [{"question_id": questions[0].id, "answer": "4"}], now=t0 + timedelta(minutes=5)
    )

    with pytest.raises(InvalidState):
        attempt_service.submit_attempt(session, attempt.id, [{"question_id": questions[1].id, "answer": "Paris"}])

    stored = _reload(session, attempt.id)
    assert stored.status == "submitted"
    # only what was recorded before the deadline counts
    assert stored.total_score == 1
    assert stored.time_spent_seconds == 60 * 60


def test_expired_attempt_stays_open_without_auto_submit(session, questions, make_exam, student_user):
    manual = make_exam(questions[:2], auto_submit=False)
    t0 = datetime.utcnow() - timedelta(minutes=90)
    attempt = attempt_service.start_attempt(session, manual.id, student_user.id, now=t0)

    with pytest.raises(InvalidState):
        attempt_service.save_answers(session, attempt.id, [{"question_id": questions[0].id, "answer": "4"}])
    assert _reload(session, attempt.id).status == "in_progress"

    result = attempt_service.force_submit(session, attempt.id)
    assert result.status == "submitted"


def test_sweep_expired_closes_only_expired(session, exam, student_user, other_student):
    old = attempt_service.start_attempt(
        session, exam.id, student_user.id, now=datetime.utcnow() - timedelta(hours=2)
    )
    fresh = attempt_service.start_attempt(session, exam.id, other_student.id)

    closed = attempt_service.sweep_expired(session)

    assert [a.id for a in closed] == [old.id]
    assert _reload(session, old.id).status == "submitted"
    assert _reload(session, fresh.id).status == "in_progress"


def test_concurrent_submit_loses_with_conflict(engine, session, exam, questions, student_user):
    with Session(engine) as first:
        attempt = attempt_service.start_attempt(first, exam.id, student_user.id)
        attempt_id = attempt.id

    with Session(engine) as racer, Session(engine) as winner:
        # racer reads the attempt before the winner closes it
        stale = attempt_service.get_attempt(racer, attempt_id)
        attempt_service.submit_attempt(winner, attempt_id, [{"question_id": questions[0].id, "answer": "4"}])

        assert stale.status == "in_progress"
        with pytest.raises(Conflict):
            attempt_service.submit_attempt(racer, attempt_id, [])

    stored = _reload(session, attempt_id)
    assert stored.status == "completed"
    assert stored.total_score == 1
    assert stored.version == 2


def test_violation_is_counted_after_concurrent_save(engine, session, exam, questions, student_user):
    with Session(engine) as first:
        attempt_id = attempt_service.start_attempt(first, exam.id, student_user.id).id

    with Session(engine) as monitor, Session(engine) as saver:
        held = attempt_service.get_attempt(monitor, attempt_id)
        attempt_service.save_answers(saver, attempt_id, [{"question_id": questions[0].id, "answer": "4"}])

        attempt_service.record_violation(monitor, attempt_id, "tab_switch")
        assert held.tab_switches == 1

    stored = _reload(session, attempt_id)
    assert stored.tab_switches == 1
    assert stored.status == "in_progress"
    assert stored.answers[0]["answer"] == "4"
    assert len(session.exec(select(ActivityLog)).all()) == 1


def test_violation_on_closed_attempt_is_invalid_state(session, exam, student_user):
    attempt = attempt_service.start_attempt(session, exam.id, student_user.id)
    attempt_service.suspend_attempt(session, attempt.id)

    with pytest.raises(InvalidState):
        attempt_service.record_violation(session, attempt.id, "copy_paste_block")
    assert session.exec(select(ActivityLog)).all() == []


def test_submit_for_exam_starts_and_submits(session, exam, questions, student_user):
    result = attempt_service.submit_for_exam(
        session,
        exam.id,
        student_user.id,
        [(questions[0].id, "4"), (questions[1].id, "Paris")],
    )
    assert result.status == "completed"
    assert result.percentage == 100


def test_review_awards_short_answer_marks(session, questions, make_exam, student_user):
    mixed = make_exam([questions[0], questions[3]])
    attempt = attempt_service.start_attempt(session, mixed.id, student_user.id)
    attempt_service.submit_attempt(
        session,
        attempt.id,
        [{"question_id": questions[0].id, "answer": "4"}, {"question_id": questions[3].id, "answer": "Resources."}],
    )
    graded = _reload(session, attempt.id)
    assert graded.needs_review is True
    assert graded.total_score == 1
    assert graded.max_score == 6

    reviewed = attempt_service.review_attempt(
        session, attempt.id, [{"question_id": questions[3].id, "marks": 4, "feedback": "<b>Good</b>"}]
    )

    assert reviewed.needs_review is False
    assert reviewed.total_score == 5
    assert reviewed.percentage == pytest.approx(5 / 6 * 100)
    short = [a for a in reviewed.answers if a["question_id"] == questions[3].id][0]
    assert short["status"] == "reviewed"
    assert short["feedback"] == "Good"


def test_review_rejects_out_of_range_marks(session, questions, make_exam, student_user):
    mixed = make_exam([questions[3]])
    attempt = attempt_service.start_attempt(session, mixed.id, student_user.id)
    attempt_service.submit_attempt(session, attempt.id, [{"question_id": questions[3].id, "answer": "x"}])

    with pytest.raises(ValidationError):
        attempt_service.review_attempt(session, attempt.id, [{"question_id": questions[3].id, "marks": 9}])


def test_review_requires_graded_attempt(session, exam, student_user):
    attempt = attempt_service.start_attempt(session, exam.id, student_user.id)
    with pytest.raises(InvalidState):
        attempt_service.review_attempt(session, attempt.id, [])
