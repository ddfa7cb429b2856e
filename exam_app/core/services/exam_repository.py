"""Service for authoring, publishing and sharing exams."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timezone
import logging

from exam_app.constants.exam_constants import EXAMS_COLLECTION, MIN_OPTIONS_PER_QUESTION
from exam_app.core.errors import NotFound, NotPublished, ValidationError
from exam_app.core.models import Exam, ExamStatus, Principal, Question, Role, Visibility
from exam_app.core.permissions import require_owner, require_role
from exam_app.core.services.document_store import DocumentStore

logger = logging.getLogger(__name__)


def validate_question(question: Question, number: int = 1) -> Question:
    """Validate and normalize one question; ``number`` is 1-based for messages."""
    cleaned_text = (question.question_text or "").strip()
    if not cleaned_text:
        raise ValidationError(f"Question {number} text is required.")

    options = [(option or "").strip() for option in question.options]
    if len(options) < MIN_OPTIONS_PER_QUESTION:
        raise ValidationError(
            f"Question {number} needs at least {MIN_OPTIONS_PER_QUESTION} options."
        )
    if any(not option for option in options):
        raise ValidationError(f"All options in Question {number} must be filled.")

    if not isinstance(question.correct_option_index, int) or not (
        0 <= question.correct_option_index < len(options)
    ):
        raise ValidationError(
            f"Question {number} correct option must be between 0 and {len(options) - 1}."
        )
    if not isinstance(question.points, int) or isinstance(question.points, bool) or question.points <= 0:
        raise ValidationError(f"Question {number} points must be a positive integer.")

    return Question(
        question_text=cleaned_text,
        options=options,
        correct_option_index=question.correct_option_index,
        points=question.points,
        image_url=(question.image_url or "").strip(),
        explanation=(question.explanation or "").strip(),
    )


def validate_exam(exam: Exam) -> Exam:
    """Return a normalized copy of ``exam`` or raise :class:`ValidationError`."""
    title = (exam.title or "").strip()
    if not title or exam.time_limit_minutes is None or exam.passing_score is None:
        raise ValidationError("Please fill in all required fields.")
    if not isinstance(exam.time_limit_minutes, int) or exam.time_limit_minutes <= 0:
        raise ValidationError("Time limit must be a positive number of minutes.")
    if not 0 <= exam.passing_score <= 100:
        raise ValidationError("Passing score must be between 0 and 100.")
    if not exam.questions:
        raise ValidationError("Please add at least one question.")

    questions = [validate_question(q, number) for number, q in enumerate(exam.questions, start=1)]
    return replace(
        exam,
        title=title,
        description=(exam.description or "").strip(),
        instructions=(exam.instructions or "").strip(),
        questions=questions,
    )


class ExamRepository:
    """Reads and writes ``exams`` documents on behalf of teachers and students."""

    def __init__(
        self,
        store: DocumentStore,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._now = now or (lambda: datetime.now(timezone.utc))

    def create_exam(self, principal: Principal | None, exam: Exam) -> Exam:
        teacher = require_role(principal, Role.TEACHER)
        prepared = validate_exam(exam)
        prepared = replace(prepared, created_by=teacher.user_id, created_at=self._now())
        exam_id = self._store.create(EXAMS_COLLECTION, prepared.to_document())
        logger.info(
            "Teacher %s created exam %s with %d questions",
            teacher.user_id,
            exam_id,
            len(prepared.questions),
        )
        return replace(prepared, id=exam_id)

    def get_exam(self, exam_id: str) -> Exam:
        return Exam.from_document(exam_id, self._store.get_by_id(EXAMS_COLLECTION, exam_id))

    def list_exams_for_teacher(self, teacher_id: str) -> list[Exam]:
        rows = self._store.query(EXAMS_COLLECTION, created_by=teacher_id)
        return _sorted_newest_first(Exam.from_document(doc_id, doc) for doc_id, doc in rows)

    def list_available_exams(self) -> list[Exam]:
        rows = self._store.query(
            EXAMS_COLLECTION, is_published=True, status=ExamStatus.ACTIVE.value
        )
        return _sorted_newest_first(Exam.from_document(doc_id, doc) for doc_id, doc in rows)

    def delete_exam(self, principal: Principal | None, exam_id: str) -> None:
        exam = self.get_exam(exam_id)
        require_owner(principal, exam.created_by)
        self._store.delete(EXAMS_COLLECTION, exam_id)
        logger.info("Exam %s deleted", exam_id)

    def set_published(self, principal: Principal | None, exam_id: str, published: bool) -> Exam:
        exam = self.get_exam(exam_id)
        require_owner(principal, exam.created_by)
        self._store.update(EXAMS_COLLECTION, exam_id, {"is_published": published})
        return replace(exam, is_published=published)

    def set_status(self, principal: Principal | None, exam_id: str, status: ExamStatus) -> Exam:
        exam = self.get_exam(exam_id)
        require_owner(principal, exam.created_by)
        self._store.update(EXAMS_COLLECTION, exam_id, {"status": status.value})
        return replace(exam, status=status)

    def share_publicly(self, principal: Principal | None, exam_id: str) -> Exam:
        """Expose the exam through a public join link (the exam id)."""
        exam = self.get_exam(exam_id)
        require_owner(principal, exam.created_by)
        self._store.update(
            EXAMS_COLLECTION,
            exam_id,
            {"public_link": exam_id, "visibility": Visibility.PUBLIC.value},
        )
        return replace(exam, public_link=exam_id, visibility=Visibility.PUBLIC)

    def find_by_public_link(self, public_link: str) -> Exam:
        rows = self._store.query(
            EXAMS_COLLECTION, public_link=public_link, visibility=Visibility.PUBLIC.value
        )
        if not rows:
            raise NotFound("Exam not found or is not publicly accessible.")
        doc_id, document = rows[0]
        return Exam.from_document(doc_id, document)

    def join_exam(self, principal: Principal | None, public_link: str) -> Exam:
        student = require_role(principal, Role.STUDENT)
        exam = self.find_by_public_link(public_link)
        if student.user_id in exam.participants:
            raise ValidationError("You have already joined this exam.")
        if exam.status is not ExamStatus.ACTIVE:
            raise NotPublished("This exam is no longer available.")
        participants = [*exam.participants, student.user_id]
        self._store.update(EXAMS_COLLECTION, exam.id, {"participants": participants})
        logger.info("Student %s joined exam %s", student.user_id, exam.id)
        return replace(exam, participants=participants)


def _sorted_newest_first(exams) -> list[Exam]:
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    return sorted(exams, key=lambda exam: exam.created_at or epoch, reverse=True)
