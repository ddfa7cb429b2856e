"""State machine driving one student through one exam attempt.

Lifecycle::

    LOADING -> IN_PROGRESS -> SUBMITTING -> COMPLETED

Every answer, bookmark and flag is keyed by the original question index.
Callers address questions by presentation position, which is translated
through the attempt's :class:`QuestionOrder` before anything is recorded.

The submission document id is the attempt id, reserved when the attempt
starts. Retrying a failed write reuses the frozen snapshot and the same id,
so one logical attempt can never produce two submissions.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
import logging
import random
from uuid import uuid4

from exam_app.constants.exam_constants import (
    EXAMS_COLLECTION,
    SUBMISSIONS_COLLECTION,
    TIME_WARNING_THRESHOLD_SECONDS,
)
from exam_app.core.errors import (
    AlreadyAttempted,
    ExamAppError,
    InvalidAttemptState,
    NotPublished,
    PersistenceError,
    ValidationError,
)
from exam_app.core.models import Exam, ExamStatus, Principal, Question, Role, Submission
from exam_app.core.permissions import require_role
from exam_app.core.question_order import QuestionOrder
from exam_app.core.scoring import score_answers
from exam_app.core.services.document_store import DocumentStore, DuplicateDocument

logger = logging.getLogger(__name__)

_UNIQUE_ATTEMPT_FIELDS = ("exam_id", "student_id")


class AttemptState(str, Enum):
    LOADING = "loading"
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    COMPLETED = "completed"


@dataclass(slots=True)
class TickOutcome:
    remaining_seconds: int
    warning_triggered: bool = False
    expired: bool = False
    submission_error: ExamAppError | None = None


@dataclass(slots=True)
class SubmitSummary:
    """Shown on the confirmation step before the attempt is finalized."""

    total_questions: int
    answered: int
    unanswered: int
    flagged: int
    remaining_seconds: int


def count_prior_attempts(store: DocumentStore, exam_id: str, student_id: str) -> int:
    return len(store.query(SUBMISSIONS_COLLECTION, exam_id=exam_id, student_id=student_id))


class ExamAttempt:
    """Holds the in-memory state of a single attempt."""

    def __init__(
        self,
        store: DocumentStore,
        exam: Exam,
        student_id: str,
        order: QuestionOrder,
        attempt_number: int = 1,
        attempt_id: str | None = None,
        now: Callable[[], datetime] | None = None,
        warning_threshold_seconds: int = TIME_WARNING_THRESHOLD_SECONDS,
        on_time_warning: Callable[["ExamAttempt", int], None] | None = None,
    ) -> None:
        if len(order) != len(exam.questions):
            raise ValueError("Question order does not match the exam's question count.")
        self._state = AttemptState.LOADING
        self._store = store
        self._exam = exam
        self._student_id = student_id
        self._order = order
        self._attempt_number = attempt_number
        self._attempt_id = attempt_id or uuid4().hex
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._warning_threshold = warning_threshold_seconds
        self._on_time_warning = on_time_warning

        self._current_position: int = 0
        self._answers: dict[int, int] = {}
        self._bookmarks: set[int] = set()
        self._flags: set[int] = set()
        self._remaining_seconds: int = exam.time_limit_seconds
        self._warning_issued: bool = False
        self._confirmation_pending: bool = False
        self._started_at: datetime = self._now()

        self._pending_submission: Submission | None = None
        self._submission: Submission | None = None
        self._write_attempts: int = 0
        self._last_error: PersistenceError | None = None
        self._rejected: bool = False

        self._state = AttemptState.IN_PROGRESS

    @classmethod
    def start(
        cls,
        store: DocumentStore,
        exam_id: str,
        principal: Principal | None,
        rng: random.Random | None = None,
        **kwargs,
    ) -> "ExamAttempt":
        """Load the exam, check eligibility and return an attempt in progress."""
        student = require_role(principal, Role.STUDENT)
        exam = Exam.from_document(exam_id, store.get_by_id(EXAMS_COLLECTION, exam_id))
        if not exam.is_published or exam.status is not ExamStatus.ACTIVE:
            raise NotPublished("This exam is not available.")

        prior_attempts = count_prior_attempts(store, exam.id, student.user_id)
        if prior_attempts > 0 and not exam.allow_reattempts:
            raise AlreadyAttempted("You have already attempted this exam.")

        size = len(exam.questions)
        if exam.shuffle_questions:
            order = QuestionOrder.shuffled(size, rng or random.Random())
        else:
            order = QuestionOrder.identity(size)

        attempt = cls(
            store,
            exam,
            student.user_id,
            order,
            attempt_number=prior_attempts + 1,
            **kwargs,
        )
        logger.info(
            "Attempt %s started: exam=%s student=%s number=%d shuffled=%s",
            attempt.attempt_id,
            exam.id,
            student.user_id,
            attempt.attempt_number,
            exam.shuffle_questions,
        )
        return attempt

    # --- Read-only state ---

    @property
    def attempt_id(self) -> str:
        return self._attempt_id

    @property
    def exam(self) -> Exam:
        return self._exam

    @property
    def student_id(self) -> str:
        return self._student_id

    @property
    def state(self) -> AttemptState:
        return self._state

    @property
    def attempt_number(self) -> int:
        return self._attempt_number

    @property
    def question_order(self) -> QuestionOrder:
        return self._order

    @property
    def current_position(self) -> int:
        return self._current_position

    @property
    def remaining_seconds(self) -> int:
        return self._remaining_seconds

    @property
    def time_warning_active(self) -> bool:
        return self._warning_issued

    @property
    def confirmation_pending(self) -> bool:
        return self._confirmation_pending

    @property
    def submission(self) -> Submission | None:
        return self._submission

    @property
    def last_error(self) -> PersistenceError | None:
        return self._last_error

    @property
    def rejected(self) -> bool:
        """True when the store refused the submission as a second attempt."""
        return self._rejected

    @property
    def started_at(self) -> datetime:
        return self._started_at

    def get_answers(self) -> dict[int, int]:
        return dict(self._answers)

    def get_bookmarks(self) -> list[int]:
        return sorted(self._bookmarks)

    def get_flags(self) -> list[int]:
        return sorted(self._flags)

    def question_count(self) -> int:
        return len(self._order)

    def question_at(self, position: int) -> Question:
        return self._exam.questions[self._original_index(position)]

    def current_question(self) -> Question:
        return self.question_at(self._current_position)

    def answer_at(self, position: int) -> int | None:
        return self._answers.get(self._original_index(position))

    def is_bookmarked(self, position: int) -> bool:
        return self._original_index(position) in self._bookmarks

    def is_flagged(self, position: int) -> bool:
        return self._original_index(position) in self._flags

    # --- In-progress transitions ---

    def select_answer(self, position: int, option_index: int) -> None:
        self._require_in_progress()
        question = self.question_at(position)
        if not 0 <= option_index < len(question.options):
            raise ValidationError(
                f"Option {option_index} is out of range for this question."
            )
        self._answers[self._original_index(position)] = option_index

    def clear_answer(self, position: int) -> None:
        self._require_in_progress()
        self._answers.pop(self._original_index(position), None)

    def toggle_bookmark(self, position: int) -> bool:
        """Toggle a bookmark and return whether the question is now bookmarked."""
        self._require_in_progress()
        return _toggle(self._bookmarks, self._original_index(position))

    def toggle_flag(self, position: int) -> bool:
        """Toggle a review flag and return whether the question is now flagged."""
        self._require_in_progress()
        return _toggle(self._flags, self._original_index(position))

    def go_to(self, position: int) -> None:
        self._require_in_progress()
        self._original_index(position)
        self._current_position = position

    def next_question(self) -> int:
        self._require_in_progress()
        if self._current_position < self.question_count() - 1:
            self._current_position += 1
        return self._current_position

    def previous_question(self) -> int:
        self._require_in_progress()
        if self._current_position > 0:
            self._current_position -= 1
        return self._current_position

    def request_submit(self) -> SubmitSummary:
        """Open the confirmation step; nothing is finalized yet."""
        self._require_in_progress()
        self._confirmation_pending = True
        answered = len(self._answers)
        return SubmitSummary(
            total_questions=self.question_count(),
            answered=answered,
            unanswered=self.question_count() - answered,
            flagged=len(self._flags),
            remaining_seconds=self._remaining_seconds,
        )

    def cancel_submit(self) -> None:
        self._require_in_progress()
        self._confirmation_pending = False

    def confirm_submit(self) -> Submission | None:
        """Finalize after an explicit confirmation.

        Returns None without doing anything when the attempt has already left
        IN_PROGRESS, e.g. because the timer expired first.
        """
        if self._state is not AttemptState.IN_PROGRESS:
            logger.debug("Confirm on attempt %s ignored in state %s", self._attempt_id, self._state.value)
            return None
        if not self._confirmation_pending:
            raise InvalidAttemptState("Submission must be requested before it is confirmed.")
        return self._finalize(auto_submitted=False)

    # --- Timer ---

    def tick(self, seconds: int = 1) -> TickOutcome:
        """Advance the countdown; reaching zero auto-submits exactly once."""
        if self._state is not AttemptState.IN_PROGRESS:
            return TickOutcome(remaining_seconds=self._remaining_seconds)

        self._remaining_seconds = max(0, self._remaining_seconds - seconds)
        outcome = TickOutcome(remaining_seconds=self._remaining_seconds)

        if not self._warning_issued and self._remaining_seconds <= self._warning_threshold:
            self._warning_issued = True
            outcome.warning_triggered = True
            if self._on_time_warning is not None:
                self._on_time_warning(self, self._remaining_seconds)

        if self._remaining_seconds == 0:
            outcome.expired = True
            logger.info("Attempt %s ran out of time; auto-submitting", self._attempt_id)
            try:
                self._finalize(auto_submitted=True)
            except (PersistenceError, AlreadyAttempted) as exc:
                outcome.submission_error = exc
        return outcome

    # --- Submitting ---

    def retry_submit(self) -> Submission:
        """Write the frozen snapshot again after a failed finalize."""
        if self._state is AttemptState.COMPLETED and self._submission is not None:
            return self._submission
        if self._rejected:
            raise AlreadyAttempted("You have already attempted this exam.")
        if self._state is not AttemptState.SUBMITTING or self._pending_submission is None:
            raise InvalidAttemptState("There is no failed submission to retry.")
        return self._write_pending()

    def _finalize(self, auto_submitted: bool) -> Submission:
        self._state = AttemptState.SUBMITTING
        self._confirmation_pending = False
        self._pending_submission = self._build_submission(auto_submitted)
        return self._write_pending()

    def _build_submission(self, auto_submitted: bool) -> Submission:
        answers = dict(self._answers)
        earned, total, score = score_answers(self._exam.questions, answers)
        return Submission(
            id=self._attempt_id,
            exam_id=self._exam.id,
            student_id=self._student_id,
            teacher_id=self._exam.created_by,
            answers=answers,
            score=score,
            earned_points=earned,
            total_points=total,
            time_spent_seconds=self._exam.time_limit_seconds - self._remaining_seconds,
            started_at=self._started_at,
            submitted_at=self._now(),
            question_order=list(self._order.permutation),
            flagged_questions=sorted(self._flags),
            bookmarked_questions=sorted(self._bookmarks),
            attempt_number=self._attempt_number,
            auto_submitted=auto_submitted,
        )

    def _write_pending(self) -> Submission:
        submission = self._pending_submission
        if submission is None:
            raise InvalidAttemptState("Nothing to submit.")
        self._write_attempts += 1
        unique_on = () if self._exam.allow_reattempts else _UNIQUE_ATTEMPT_FIELDS
        try:
            already_written = self._write_attempts > 1 and self._store.exists(
                SUBMISSIONS_COLLECTION, submission.id
            )
            if not already_written:
                self._store.create(
                    SUBMISSIONS_COLLECTION,
                    submission.to_document(),
                    document_id=submission.id,
                    unique_on=unique_on,
                )
        except DuplicateDocument as exc:
            if not self._store.exists(SUBMISSIONS_COLLECTION, submission.id):
                self._last_error = exc
                self._rejected = True
                logger.warning(
                    "Attempt %s rejected: exam %s already has a submission from %s",
                    self._attempt_id,
                    self._exam.id,
                    self._student_id,
                )
                raise AlreadyAttempted("You have already attempted this exam.") from exc
        except PersistenceError as exc:
            self._last_error = exc
            logger.error("Attempt %s could not be saved: %s", self._attempt_id, exc)
            raise

        self._last_error = None
        self._submission = submission
        self._state = AttemptState.COMPLETED
        logger.info(
            "Attempt %s submitted: score=%d%% auto=%s",
            self._attempt_id,
            submission.score,
            submission.auto_submitted,
        )
        return submission

    # --- Helpers ---

    def _require_in_progress(self) -> None:
        if self._state is not AttemptState.IN_PROGRESS:
            raise InvalidAttemptState(f"Attempt is {self._state.value}.")

    def _original_index(self, position: int) -> int:
        try:
            return self._order.to_original(position)
        except IndexError as exc:
            raise ValidationError(str(exc)) from exc


def _toggle(values: set[int], value: int) -> bool:
    if value in values:
        values.discard(value)
        return False
    values.add(value)
    return True
