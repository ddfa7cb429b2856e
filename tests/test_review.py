import pytest

from conftest import FIXED_NOW
from exam_app.constants.exam_constants import SUBMISSIONS_COLLECTION
from exam_app.core.errors import PermissionDenied, ValidationError
from exam_app.core.models import GradingStatus, Question, Submission
from exam_app.core.services.review import ReviewService


@pytest.fixture
def review(store, now):
    return ReviewService(store, now=now)


@pytest.fixture
def graded_setup(store, stored_exam, teacher):
    """Exam worth 1 + 3 points; the student got only the first question right."""
    exam = stored_exam(
        questions=[
            Question(question_text="Easy", options=["a", "b"], correct_option_index=0, points=1),
            Question(question_text="Essay-ish", options=["a", "b"], correct_option_index=1, points=3),
        ]
    )
    submission = Submission(
        id="attempt-1",
        exam_id=exam.id,
        student_id="student-1",
        teacher_id=teacher.user_id,
        answers={0: 0, 1: 0},
        score=25,
        earned_points=1,
        total_points=4,
        time_spent_seconds=120,
        started_at=FIXED_NOW,
        submitted_at=FIXED_NOW,
        question_order=[0, 1],
    )
    store.create(SUBMISSIONS_COLLECTION, submission.to_document(), document_id=submission.id)
    return exam, submission


def test_partial_credit_recomputes_final_score(review, graded_setup, teacher):
    _, submission = graded_setup
    graded = review.grade_submission(teacher, submission.id, {1: 2})

    assert graded.question_grades == {1: 2}
    assert graded.final_score == 75
    assert graded.grading_status is GradingStatus.COMPLETED
    assert graded.graded_at == FIXED_NOW
    assert graded.score == 25
    assert review.get_submission(submission.id).final_score == 75


def test_grades_are_clamped_to_question_points(review, graded_setup, teacher):
    _, submission = graded_setup
    assert review.grade_submission(teacher, submission.id, {1: 10}).final_score == 100
    graded = review.grade_submission(teacher, submission.id, {0: -5, 1: 10})
    assert graded.question_grades == {0: 0, 1: 3}
    assert graded.final_score == 75


def test_fractional_awards_are_kept(review, graded_setup, teacher):
    _, submission = graded_setup
    graded = review.grade_submission(teacher, submission.id, {1: 2.5})

    assert graded.question_grades == {1: 2.5}
    # (1 + 2.5) / 4 points
    assert graded.final_score == 88
    assert review.get_submission(submission.id).question_grades == {1: 2.5}


def test_grading_unknown_question_is_rejected(review, graded_setup, teacher):
    _, submission = graded_setup
    with pytest.raises(ValidationError):
        review.grade_submission(teacher, submission.id, {7: 1})


def test_only_the_exam_owner_reviews(review, graded_setup, other_teacher, student):
    _, submission = graded_setup
    with pytest.raises(PermissionDenied):
        review.review_submission(other_teacher, submission.id, "Nice")
    with pytest.raises(PermissionDenied):
        review.grade_submission(student, submission.id, {1: 3})


def test_review_stores_feedback(review, graded_setup, teacher):
    _, submission = graded_setup
    reviewed = review.review_submission(teacher, submission.id, "  Revise chapter 2. ")
    assert reviewed.reviewed is True
    assert reviewed.feedback == "Revise chapter 2."
    stored = review.get_submission(submission.id)
    assert stored.reviewed_at == FIXED_NOW
    assert stored.effective_score == 25
