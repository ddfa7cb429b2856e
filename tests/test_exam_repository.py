from dataclasses import replace

import pytest

from conftest import FIXED_NOW
from exam_app.constants.exam_constants import EXAMS_COLLECTION
from exam_app.core.errors import NotFound, NotPublished, PermissionDenied, ValidationError
from exam_app.core.models import ExamStatus, Question, Visibility
from exam_app.core.services.exam_repository import ExamRepository, validate_exam


@pytest.fixture
def repository(store, now):
    return ExamRepository(store, now=now)


def test_create_exam_stamps_owner_and_total_points(repository, store, make_exam, teacher):
    created = repository.create_exam(teacher, make_exam(created_by="", title="  Physics  "))

    assert created.id
    assert created.created_by == teacher.user_id
    assert created.created_at == FIXED_NOW
    assert created.title == "Physics"
    document = store.get_by_id(EXAMS_COLLECTION, created.id)
    assert document["total_points"] == 6
    assert document["created_by"] == teacher.user_id


def test_students_cannot_author_exams(repository, make_exam, student):
    with pytest.raises(PermissionDenied):
        repository.create_exam(student, make_exam())


@pytest.mark.parametrize(
    "overrides",
    [
        {"title": "   "},
        {"time_limit_minutes": None},
        {"time_limit_minutes": 0},
        {"passing_score": None},
        {"passing_score": 101},
        {"passing_score": -1},
        {"questions": []},
    ],
)
def test_invalid_exam_fields_are_rejected_before_writing(repository, store, make_exam, teacher, overrides):
    with pytest.raises(ValidationError):
        repository.create_exam(teacher, make_exam(**overrides))
    assert store.query(EXAMS_COLLECTION) == []


@pytest.mark.parametrize(
    "question",
    [
        Question(question_text="", options=["a", "b"], correct_option_index=0),
        Question(question_text="One option", options=["a"], correct_option_index=0),
        Question(question_text="Blank option", options=["a", "  "], correct_option_index=0),
        Question(question_text="Index too big", options=["a", "b"], correct_option_index=2),
        Question(question_text="Negative index", options=["a", "b"], correct_option_index=-1),
        Question(question_text="Zero points", options=["a", "b"], correct_option_index=0, points=0),
        Question(question_text="Bool points", options=["a", "b"], correct_option_index=0, points=True),
    ],
)
def test_invalid_questions_are_rejected(make_exam, question):
    with pytest.raises(ValidationError):
        validate_exam(make_exam(questions=[question]))


def test_validation_message_names_the_question(make_exam):
    good = Question(question_text="Fine", options=["a", "b"], correct_option_index=0)
    bad = Question(question_text="Broken", options=["a"], correct_option_index=0)
    with pytest.raises(ValidationError, match="Question 2"):
        validate_exam(make_exam(questions=[good, bad]))


def test_only_the_owner_deletes(repository, make_exam, teacher, other_teacher):
    exam = repository.create_exam(teacher, make_exam())
    with pytest.raises(PermissionDenied):
        repository.delete_exam(other_teacher, exam.id)
    repository.delete_exam(teacher, exam.id)
    with pytest.raises(NotFound):
        repository.get_exam(exam.id)


def test_available_exams_are_published_and_active(repository, make_exam, teacher):
    visible = repository.create_exam(teacher, make_exam(title="Visible"))
    repository.create_exam(teacher, make_exam(title="Draft", is_published=False))
    archived = repository.create_exam(teacher, make_exam(title="Old"))
    repository.set_status(teacher, archived.id, ExamStatus.ARCHIVED)

    assert [exam.id for exam in repository.list_available_exams()] == [visible.id]


def test_publish_toggle(repository, make_exam, teacher):
    exam = repository.create_exam(teacher, make_exam(is_published=False))
    assert repository.set_published(teacher, exam.id, True).is_published
    assert repository.get_exam(exam.id).is_published


def test_list_exams_for_teacher_filters_by_owner(repository, make_exam, teacher, other_teacher):
    mine = repository.create_exam(teacher, make_exam())
    repository.create_exam(other_teacher, make_exam())
    assert [exam.id for exam in repository.list_exams_for_teacher(teacher.user_id)] == [mine.id]


def test_share_and_join_public_exam(repository, make_exam, teacher, student):
    exam = repository.create_exam(teacher, make_exam())
    shared = repository.share_publicly(teacher, exam.id)
    assert shared.visibility is Visibility.PUBLIC
    assert shared.public_link == exam.id

    joined = repository.join_exam(student, shared.public_link)
    assert joined.participants == [student.user_id]
    assert repository.get_exam(exam.id).participants == [student.user_id]

    with pytest.raises(ValidationError):
        repository.join_exam(student, shared.public_link)


def test_join_rejects_private_and_inactive_exams(repository, make_exam, teacher, student):
    private = repository.create_exam(teacher, make_exam())
    with pytest.raises(NotFound):
        repository.join_exam(student, private.id)

    shared = repository.share_publicly(teacher, repository.create_exam(teacher, make_exam()).id)
    repository.set_status(teacher, shared.id, ExamStatus.COMPLETED)
    with pytest.raises(NotPublished):
        repository.join_exam(student, shared.public_link)


def test_validate_exam_strips_text(make_exam):
    question = Question(question_text="  Spaced  ", options=[" a ", "b"], correct_option_index=1)
    cleaned = validate_exam(replace(make_exam(), questions=[question], description="  notes "))
    assert cleaned.description == "notes"
    assert cleaned.questions[0].question_text == "Spaced"
    assert cleaned.questions[0].options == ["a", "b"]
