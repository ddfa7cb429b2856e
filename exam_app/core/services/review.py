"""Teacher review of finished submissions: feedback and per-question grade overrides."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import replace
from datetime import datetime, timezone
import logging

from exam_app.constants.exam_constants import EXAMS_COLLECTION, SUBMISSIONS_COLLECTION
from exam_app.core.errors import ValidationError
from exam_app.core.models import Exam, GradingStatus, Principal, Submission
from exam_app.core.permissions import require_owner
from exam_app.core.scoring import compute_score
from exam_app.core.services.document_store import DocumentStore

logger = logging.getLogger(__name__)


def awarded_points(exam: Exam, submission: Submission, grades: Mapping[int, float]) -> float:
    """Points per question: the teacher's override where present, else the objective result."""
    total = 0.0
    for index, question in enumerate(exam.questions):
        if index in grades:
            total += grades[index]
        elif submission.answers.get(index) == question.correct_option_index:
            total += question.points
    return total


class ReviewService:
    def __init__(
        self,
        store: DocumentStore,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._now = now or (lambda: datetime.now(timezone.utc))

    def get_submission(self, submission_id: str) -> Submission:
        document = self._store.get_by_id(SUBMISSIONS_COLLECTION, submission_id)
        return Submission.from_document(submission_id, document)

    def review_submission(
        self,
        principal: Principal | None,
        submission_id: str,
        feedback: str,
        reviewed: bool = True,
    ) -> Submission:
        submission = self.get_submission(submission_id)
        require_owner(principal, submission.teacher_id)
        reviewed_at = self._now()
        feedback = (feedback or "").strip()
        self._store.update(
            SUBMISSIONS_COLLECTION,
            submission_id,
            {"feedback": feedback, "reviewed": reviewed, "reviewed_at": reviewed_at},
        )
        logger.info("Submission %s reviewed=%s", submission_id, reviewed)
        return replace(submission, feedback=feedback, reviewed=reviewed, reviewed_at=reviewed_at)

    def grade_submission(
        self,
        principal: Principal | None,
        submission_id: str,
        grades: Mapping[int, float],
    ) -> Submission:
        """Store per-question overrides (clamped to each question's points) and a final score."""
        submission = self.get_submission(submission_id)
        require_owner(principal, submission.teacher_id)
        exam = Exam.from_document(
            submission.exam_id, self._store.get_by_id(EXAMS_COLLECTION, submission.exam_id)
        )

        clamped: dict[int, float] = dict(submission.question_grades)
        for index, value in grades.items():
            if not 0 <= index < len(exam.questions):
                raise ValidationError(f"Question {index} does not exist in this exam.")
            max_points = exam.questions[index].points
            clamped[index] = float(min(max(0.0, value), max_points))

        final_score = compute_score(awarded_points(exam, submission, clamped), exam.total_points)
        graded_at = self._now()
        self._store.update(
            SUBMISSIONS_COLLECTION,
            submission_id,
            {
                "question_grades": {str(k): v for k, v in clamped.items()},
                "final_score": final_score,
                "grading_status": GradingStatus.COMPLETED.value,
                "graded_at": graded_at,
            },
        )
        logger.info("Submission %s graded: final score %d%%", submission_id, final_score)
        return replace(
            submission,
            question_grades=clamped,
            final_score=final_score,
            grading_status=GradingStatus.COMPLETED,
            graded_at=graded_at,
        )
