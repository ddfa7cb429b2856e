import random

import pytest

from conftest import FlakyStore
from exam_app.core.errors import (
    AlreadyAttempted,
    AuthRequired,
    NotFound,
    PermissionDenied,
    PersistenceError,
)
from exam_app.core.exam_manager import ExamManager
from exam_app.core.models import Principal, QuestionPoolEntry, Role, UserProfile
from exam_app.core.services.attempt_engine import AttemptState


@pytest.fixture
def manager(store, now):
    return ExamManager(store=store, rng=random.Random(5), now=now)


@pytest.fixture
def published(manager, make_exam, teacher):
    return manager.create_exam(teacher, make_exam())


def test_sign_in_resolves_role_from_user_document(manager):
    manager.register_user(UserProfile(id="t-9", role=Role.TEACHER, name="Grace"))
    token = manager.sign_in("t-9")
    principal = manager.resolve_principal(token)
    assert principal.user_id == "t-9"
    assert principal.role is Role.TEACHER


def test_sign_in_unknown_user(manager):
    with pytest.raises(NotFound):
        manager.sign_in("nobody")


def test_resolve_without_session_requires_auth(manager):
    with pytest.raises(AuthRequired):
        manager.resolve_principal(None)
    with pytest.raises(AuthRequired):
        manager.resolve_principal("stale-token")


def test_sign_out_ends_session(manager):
    manager.register_user(UserProfile(id="s-9", role=Role.STUDENT))
    token = manager.sign_in("s-9")
    manager.sign_out(token)
    with pytest.raises(AuthRequired):
        manager.resolve_principal(token)


def test_create_exam_from_pool_counts_usage(manager, make_exam, teacher):
    entry = manager.add_pool_entry(
        teacher,
        QuestionPoolEntry(
            id="", teacher_id="", question_text="Pooled?", options=["yes", "no"], correct_option_index=0
        ),
    )
    exam = manager.create_exam(teacher, make_exam(), pool_entry_ids=[entry.id])
    assert len(exam.questions) == 4
    assert exam.questions[-1].question_text == "Pooled?"
    assert manager.list_pool(teacher)[0].times_used == 1


def test_import_and_export_exam(manager, make_exam, teacher, other_teacher):
    text = "Q: Imported?\nA: yes\nB: no\nCORRECT: A\n"
    exam = manager.import_exam(teacher, make_exam(questions=[]), text)
    assert [q.question_text for q in exam.questions] == ["Imported?"]
    assert manager.export_exam(teacher, exam.id).startswith("Q: Imported?")
    with pytest.raises(PermissionDenied):
        manager.export_exam(other_teacher, exam.id)


def test_students_only_see_published_exams(manager, make_exam, teacher, student):
    draft = manager.create_exam(teacher, make_exam(is_published=False))
    with pytest.raises(NotFound):
        manager.get_exam(student, draft.id)
    assert manager.get_exam(teacher, draft.id).id == draft.id


def test_start_attempt_resumes_running_attempt(manager, published, student):
    first = manager.start_attempt(student, published.id)
    manager.select_answer(student, first.attempt_id, 0, 1)
    again = manager.start_attempt(student, published.id)
    assert again is first
    assert again.answer_at(0) == 1


def test_other_students_cannot_touch_an_attempt(manager, published, student):
    attempt = manager.start_attempt(student, published.id)
    intruder = Principal(user_id="student-2", role=Role.STUDENT)
    with pytest.raises(NotFound):
        manager.select_answer(intruder, attempt.attempt_id, 0, 0)


def test_confirmed_attempt_becomes_a_submission(manager, published, student):
    attempt = manager.start_attempt(student, published.id)
    manager.select_answer(student, attempt.attempt_id, 0, 1)
    manager.request_submit(student, attempt.attempt_id)
    submission = manager.confirm_submit(student, attempt.attempt_id)

    assert submission.id == attempt.attempt_id
    with pytest.raises(NotFound):
        manager.get_attempt(student, attempt.attempt_id)
    assert manager.get_submission(student, submission.id).score == submission.score
    with pytest.raises(AlreadyAttempted):
        manager.start_attempt(student, published.id)


def test_tick_all_auto_submits_expired_attempts(manager, published, student):
    attempt = manager.start_attempt(student, published.id)
    report = manager.tick_all(300)
    assert report.warnings == [attempt.attempt_id]
    assert report.auto_submitted == []

    report = manager.tick_all(300)
    assert report.auto_submitted == [attempt.attempt_id]
    assert manager.tick_all().ticked == 0
    [(submission, exam)] = manager.list_my_submissions(student)
    assert submission.auto_submitted
    assert exam.id == published.id


def test_failed_auto_submit_can_be_retried(make_exam, teacher, student, now):
    store = FlakyStore(failures=1)
    manager = ExamManager(store=store, now=now)
    exam = manager.create_exam(teacher, make_exam())
    attempt = manager.start_attempt(student, exam.id)

    report = manager.tick_all(600)
    assert report.failed == [attempt.attempt_id]
    assert manager.get_attempt(student, attempt.attempt_id).state is AttemptState.SUBMITTING

    submission = manager.retry_submit(student, attempt.attempt_id)
    assert submission.auto_submitted
    with pytest.raises(NotFound):
        manager.get_attempt(student, attempt.attempt_id)


def test_confirm_failure_surfaces_persistence_error(make_exam, teacher, student, now):
    manager = ExamManager(store=FlakyStore(failures=1), now=now)
    exam = manager.create_exam(teacher, make_exam())
    attempt = manager.start_attempt(student, exam.id)
    manager.request_submit(student, attempt.attempt_id)
    with pytest.raises(PersistenceError):
        manager.confirm_submit(student, attempt.attempt_id)
    assert manager.retry_submit(student, attempt.attempt_id).id == attempt.attempt_id


def test_submission_visibility(manager, published, student, other_teacher):
    attempt = manager.start_attempt(student, published.id)
    manager.request_submit(student, attempt.attempt_id)
    submission = manager.confirm_submit(student, attempt.attempt_id)
    with pytest.raises(PermissionDenied):
        manager.get_submission(other_teacher, submission.id)
    with pytest.raises(PermissionDenied):
        manager.list_exam_submissions(other_teacher, published.id)


def test_dashboards_and_exports(manager, published, teacher, student):
    manager.register_user(UserProfile(id=student.user_id, role=Role.STUDENT, name="Lin", email="lin@example.com"))
    attempt = manager.start_attempt(student, published.id)
    for position in range(3):
        original = attempt.question_order.to_original(position)
        correct = published.questions[original].correct_option_index
        manager.select_answer(student, attempt.attempt_id, position, correct)
    manager.toggle_flag(student, attempt.attempt_id, 0)
    manager.request_submit(student, attempt.attempt_id)
    manager.confirm_submit(student, attempt.attempt_id)

    teacher_view = manager.teacher_dashboard(teacher)
    assert teacher_view.total_submissions == 1
    assert teacher_view.average_score == 100
    assert teacher_view.leaderboard[0].student_id == student.user_id

    student_view = manager.student_dashboard(student)
    assert student_view.summary.passed == 1

    assert manager.flagged_questions(teacher).total_flagged == 1
    assert manager.question_analytics(teacher, published.id)[0].correct_percentage == 100

    exam, content = manager.export_submissions_csv(teacher, published.id)
    assert exam.id == published.id
    assert "Lin,lin@example.com,100%" in content


def test_review_and_grade_through_manager(manager, published, teacher, student):
    attempt = manager.start_attempt(student, published.id)
    manager.request_submit(student, attempt.attempt_id)
    submission = manager.confirm_submit(student, attempt.attempt_id)

    manager.review_submission(teacher, submission.id, "See me")
    graded = manager.grade_submission(teacher, submission.id, {1: 3})
    assert graded.final_score == 50
    assert manager.list_exam_submissions(teacher, published.id)[0].feedback == "See me"


def test_restart_after_failed_auto_submit_keeps_the_expired_attempt(make_exam, teacher, student, now):
    store = FlakyStore(failures=5)
    manager = ExamManager(store=store, now=now)
    exam = manager.create_exam(teacher, make_exam())
    attempt = manager.start_attempt(student, exam.id)
    assert manager.tick_all(exam.time_limit_seconds).failed == [attempt.attempt_id]

    again = manager.start_attempt(student, exam.id)
    assert again is attempt
    assert again.state is AttemptState.SUBMITTING
    assert again.remaining_seconds == 0

    store.failures = 0
    with pytest.raises(AlreadyAttempted):
        manager.start_attempt(student, exam.id)
    [(submission, _)] = manager.list_my_submissions(student)
    assert submission.id == attempt.attempt_id
    assert submission.auto_submitted
    with pytest.raises(NotFound):
        manager.get_attempt(student, attempt.attempt_id)


def test_bookmark_report_for_student(manager, published, student, teacher):
    attempt = manager.start_attempt(student, published.id)
    manager.toggle_bookmark(student, attempt.attempt_id, 0)
    manager.request_submit(student, attempt.attempt_id)
    manager.confirm_submit(student, attempt.attempt_id)

    report = manager.bookmark_report(student)
    assert report.total_bookmarked == 1
    assert report.exams[0].questions[0].question_index == attempt.question_order.to_original(0)
    with pytest.raises(PermissionDenied):
        manager.bookmark_report(teacher)
