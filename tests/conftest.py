from __future__ import annotations

from datetime import datetime, timezone

import pytest

from exam_app.constants.exam_constants import EXAMS_COLLECTION, SUBMISSIONS_COLLECTION
from exam_app.core.errors import PersistenceError
from exam_app.core.models import Exam, Principal, Question, Role
from exam_app.core.services.document_store import DocumentStore

FIXED_NOW = datetime(2024, 3, 15, 9, 30, tzinfo=timezone.utc)


class FlakyStore(DocumentStore):
    """Document store whose first submission writes fail.

    With ``write_before_failing`` the document lands but the caller still sees
    an error, like a lost acknowledgement.
    """

    def __init__(self, failures: int = 1, write_before_failing: bool = False) -> None:
        super().__init__()
        self.failures = failures
        self.write_before_failing = write_before_failing
        self.submission_creates = 0

    def create(self, collection, document, document_id=None, unique_on=()):
        if collection == SUBMISSIONS_COLLECTION:
            self.submission_creates += 1
            if self.failures > 0:
                self.failures -= 1
                if self.write_before_failing:
                    super().create(collection, document, document_id, unique_on)
                raise PersistenceError("connection reset by peer")
        return super().create(collection, document, document_id, unique_on)


def build_questions() -> list[Question]:
    return [
        Question(question_text="What is $2 + 2$?", options=["3", "4", "5"], correct_option_index=1),
        Question(
            question_text="Capital of France?",
            options=["Berlin", "Paris"],
            correct_option_index=1,
            points=3,
        ),
        Question(
            question_text="Largest planet?",
            options=["Mars", "Jupiter", "Venus"],
            correct_option_index=1,
            points=2,
            explanation="Jupiter is a gas giant.",
        ),
    ]


@pytest.fixture
def store() -> DocumentStore:
    return DocumentStore()


@pytest.fixture
def now():
    return lambda: FIXED_NOW


@pytest.fixture
def teacher() -> Principal:
    return Principal(user_id="teacher-1", role=Role.TEACHER)


@pytest.fixture
def other_teacher() -> Principal:
    return Principal(user_id="teacher-2", role=Role.TEACHER)


@pytest.fixture
def student() -> Principal:
    return Principal(user_id="student-1", role=Role.STUDENT)


@pytest.fixture
def make_exam(teacher):
    def factory(**overrides) -> Exam:
        fields = {
            "id": "",
            "created_by": teacher.user_id,
            "title": "General knowledge",
            "time_limit_minutes": 10,
            "passing_score": 60,
            "questions": build_questions(),
            "is_published": True,
            "category": "Science",
        }
        fields.update(overrides)
        return Exam(**fields)

    return factory


@pytest.fixture
def stored_exam(store, make_exam):
    """Write an exam straight into the store, bypassing authoring validation."""

    def factory(target: DocumentStore | None = None, **overrides) -> Exam:
        target = target or store
        exam = make_exam(**overrides)
        exam_id = target.create(EXAMS_COLLECTION, exam.to_document())
        return Exam.from_document(exam_id, target.get_by_id(EXAMS_COLLECTION, exam_id))

    return factory
