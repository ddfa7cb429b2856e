"""Business logic shared between the HTTP API and the countdown ticker."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import random
from threading import Lock

from exam_app.constants.exam_constants import (
    SUBMISSIONS_COLLECTION,
    TIME_WARNING_THRESHOLD_SECONDS,
    USERS_COLLECTION,
)
from exam_app.core.errors import (
    AuthRequired,
    NotFound,
    PermissionDenied,
    PersistenceError,
    ValidationError,
)
from exam_app.core.exam_exporter import serialize_questions, submissions_to_csv
from exam_app.core.exam_importer import parse_exam_text, parse_pool_csv
from exam_app.core.markdown_math_renderer import renderer
from exam_app.core.models import (
    Exam,
    ExamStatus,
    Principal,
    QuestionPoolEntry,
    Role,
    Submission,
    UserProfile,
)
from exam_app.core.permissions import require_owner, require_principal, require_role
from exam_app.core.services import analytics
from exam_app.core.services.attempt_engine import (
    AttemptState,
    ExamAttempt,
    SubmitSummary,
    TickOutcome,
)
from exam_app.core.services.auth_provider import TokenAuthProvider
from exam_app.core.services.document_store import DocumentStore, DuplicateDocument
from exam_app.core.services.exam_repository import ExamRepository
from exam_app.core.services.leaderboard import Leaderboard
from exam_app.core.services.question_pool import PoolStats, QuestionPool
from exam_app.core.services.review import ReviewService

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TickReport:
    ticked: int = 0
    warnings: list[str] = field(default_factory=list)
    auto_submitted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class ExamManager:
    """Facade for exam services: store, auth, authoring, pool, attempts and review."""

    def __init__(
        self,
        store: DocumentStore | None = None,
        auth: TokenAuthProvider | None = None,
        rng: random.Random | None = None,
        now: Callable[[], datetime] | None = None,
        warning_threshold_seconds: int = TIME_WARNING_THRESHOLD_SECONDS,
    ) -> None:
        self._lock = Lock()
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._rng = rng or random.Random()
        self._warning_threshold = warning_threshold_seconds

        # Services
        self._store = store or DocumentStore()
        self._auth = auth or TokenAuthProvider()
        self._exams = ExamRepository(self._store, now=self._now)
        self._pool = QuestionPool(self._store, now=self._now)
        self._review = ReviewService(self._store, now=self._now)

        self._session_roles: dict[str, Principal] = {}
        self._attempts: dict[str, ExamAttempt] = {}

    # --- Users & sessions ---

    def register_user(self, profile: UserProfile) -> UserProfile:
        with self._lock:
            try:
                user_id = self._store.create(
                    USERS_COLLECTION, profile.to_document(), document_id=profile.id or None
                )
            except DuplicateDocument as exc:
                raise ValidationError(f"User {profile.id} already exists.") from exc
            logger.info("Registered %s %s", profile.role.value, user_id)
            return UserProfile(id=user_id, role=profile.role, name=profile.name, email=profile.email)

    def get_user(self, user_id: str) -> UserProfile:
        with self._lock:
            return self._load_user(user_id)

    def sign_in(self, user_id: str) -> str:
        with self._lock:
            user = self._load_user(user_id)
            token = self._auth.sign_in(user.id)
            # Role is read once per session.
            self._session_roles[token] = Principal(user_id=user.id, role=user.role)
            return token

    def sign_out(self, token: str) -> None:
        with self._lock:
            self._auth.sign_out(token)
            self._session_roles.pop(token, None)

    def resolve_principal(self, token: str | None) -> Principal:
        with self._lock:
            user_id = self._auth.current_principal(token)
            if user_id is None:
                raise AuthRequired("You must be signed in.")
            principal = self._session_roles.get(token)
            if principal is None or principal.user_id != user_id:
                user = self._load_user(user_id)
                principal = Principal(user_id=user.id, role=user.role)
                self._session_roles[token] = principal
            return principal

    # --- Exam authoring ---

    def create_exam(
        self,
        principal: Principal | None,
        exam: Exam,
        pool_entry_ids: Iterable[str] = (),
    ) -> Exam:
        entry_ids = list(pool_entry_ids)
        with self._lock:
            pooled = self._pool.questions_for_exam(principal, entry_ids)
            exam.questions = [*exam.questions, *pooled]
            created = self._exams.create_exam(principal, exam)
            self._pool.record_usage(entry_ids)
            return created

    def import_exam(self, principal: Principal | None, exam: Exam, text: str) -> Exam:
        """Create an exam whose questions come from the plain-text import format."""
        questions = parse_exam_text(text)
        with self._lock:
            exam.questions = [*exam.questions, *questions]
            return self._exams.create_exam(principal, exam)

    def export_exam(self, principal: Principal | None, exam_id: str) -> str:
        with self._lock:
            exam = self._exams.get_exam(exam_id)
            require_owner(principal, exam.created_by)
            try:
                return serialize_questions(exam.questions)
            except ValueError as exc:
                raise ValidationError(str(exc)) from exc

    def preview_exam(self, principal: Principal | None, exam_id: str, show_answers: bool = True) -> str:
        with self._lock:
            exam = self._exams.get_exam(exam_id)
            require_owner(principal, exam.created_by)
        return renderer.render_exam_document(exam, show_answers=show_answers)

    def get_exam(self, principal: Principal | None, exam_id: str) -> Exam:
        """Owners see any of their exams; everyone else only sees published, active ones."""
        principal = require_principal(principal)
        with self._lock:
            exam = self._exams.get_exam(exam_id)
        if exam.created_by == principal.user_id:
            return exam
        if not exam.is_published or exam.status is not ExamStatus.ACTIVE:
            raise NotFound(f"exams/{exam_id} does not exist.")
        return exam

    def list_teacher_exams(self, principal: Principal | None) -> list[Exam]:
        teacher = require_role(principal, Role.TEACHER)
        with self._lock:
            return self._exams.list_exams_for_teacher(teacher.user_id)

    def list_available_exams(self, principal: Principal | None) -> list[Exam]:
        require_principal(principal)
        with self._lock:
            return self._exams.list_available_exams()

    def delete_exam(self, principal: Principal | None, exam_id: str) -> None:
        with self._lock:
            self._exams.delete_exam(principal, exam_id)

    def set_published(self, principal: Principal | None, exam_id: str, published: bool) -> Exam:
        with self._lock:
            return self._exams.set_published(principal, exam_id, published)

    def set_exam_status(self, principal: Principal | None, exam_id: str, status: ExamStatus) -> Exam:
        with self._lock:
            return self._exams.set_status(principal, exam_id, status)

    def share_exam(self, principal: Principal | None, exam_id: str) -> Exam:
        with self._lock:
            return self._exams.share_publicly(principal, exam_id)

    def join_exam(self, principal: Principal | None, public_link: str) -> Exam:
        with self._lock:
            return self._exams.join_exam(principal, public_link)

    # --- Question pool ---

    def add_pool_entry(self, principal: Principal | None, entry: QuestionPoolEntry) -> QuestionPoolEntry:
        with self._lock:
            return self._pool.add_entry(principal, entry)

    def update_pool_entry(
        self, principal: Principal | None, entry_id: str, entry: QuestionPoolEntry
    ) -> QuestionPoolEntry:
        with self._lock:
            return self._pool.update_entry(principal, entry_id, entry)

    def delete_pool_entry(self, principal: Principal | None, entry_id: str) -> None:
        with self._lock:
            self._pool.delete_entry(principal, entry_id)

    def list_pool(
        self,
        principal: Principal | None,
        category: str | None = None,
        difficulty: str | None = None,
        search: str | None = None,
    ) -> list[QuestionPoolEntry]:
        teacher = require_role(principal, Role.TEACHER)
        with self._lock:
            return self._pool.list_entries(teacher.user_id, category, difficulty, search)

    def pool_stats(self, principal: Principal | None) -> PoolStats:
        teacher = require_role(principal, Role.TEACHER)
        with self._lock:
            return self._pool.stats(teacher.user_id)

    def import_pool_csv(self, principal: Principal | None, text: str) -> list[QuestionPoolEntry]:
        entries = parse_pool_csv(text)
        with self._lock:
            return self._pool.add_entries(principal, entries)

    # --- Attempts ---

    def start_attempt(self, principal: Principal | None, exam_id: str) -> ExamAttempt:
        """Start an attempt, or resume the one already open for this student.

        Resuming keeps two browser tabs from running parallel attempts at the
        same exam. An attempt parked in SUBMITTING after a failed write is
        retried first; while the store stays down it is returned as is, so
        the student cannot restart the clock.
        """
        student = require_role(principal, Role.STUDENT)
        with self._lock:
            attempt = self._open_attempt_for(exam_id, student.user_id)
            if attempt is not None and attempt.state is AttemptState.IN_PROGRESS:
                logger.info("Resuming attempt %s", attempt.attempt_id)
                return attempt
            if attempt is not None:
                try:
                    attempt.retry_submit()
                except PersistenceError:
                    logger.info("Attempt %s is still waiting to be saved", attempt.attempt_id)
                    return attempt
                finally:
                    self._discard_if_finished(attempt)
            attempt = ExamAttempt.start(
                self._store,
                exam_id,
                student,
                rng=self._rng,
                now=self._now,
                warning_threshold_seconds=self._warning_threshold,
                on_time_warning=_log_time_warning,
            )
            self._attempts[attempt.attempt_id] = attempt
            return attempt

    def get_attempt(self, principal: Principal | None, attempt_id: str) -> ExamAttempt:
        with self._lock:
            return self._owned_attempt(principal, attempt_id)

    def select_answer(
        self, principal: Principal | None, attempt_id: str, position: int, option_index: int
    ) -> ExamAttempt:
        with self._lock:
            attempt = self._owned_attempt(principal, attempt_id)
            attempt.select_answer(position, option_index)
            return attempt

    def clear_answer(self, principal: Principal | None, attempt_id: str, position: int) -> ExamAttempt:
        with self._lock:
            attempt = self._owned_attempt(principal, attempt_id)
            attempt.clear_answer(position)
            return attempt

    def toggle_bookmark(self, principal: Principal | None, attempt_id: str, position: int) -> ExamAttempt:
        with self._lock:
            attempt = self._owned_attempt(principal, attempt_id)
            attempt.toggle_bookmark(position)
            return attempt

    def toggle_flag(self, principal: Principal | None, attempt_id: str, position: int) -> ExamAttempt:
        with self._lock:
            attempt = self._owned_attempt(principal, attempt_id)
            attempt.toggle_flag(position)
            return attempt

    def go_to(self, principal: Principal | None, attempt_id: str, position: int) -> ExamAttempt:
        with self._lock:
            attempt = self._owned_attempt(principal, attempt_id)
            attempt.go_to(position)
            return attempt

    def next_question(self, principal: Principal | None, attempt_id: str) -> ExamAttempt:
        with self._lock:
            attempt = self._owned_attempt(principal, attempt_id)
            attempt.next_question()
            return attempt

    def previous_question(self, principal: Principal | None, attempt_id: str) -> ExamAttempt:
        with self._lock:
            attempt = self._owned_attempt(principal, attempt_id)
            attempt.previous_question()
            return attempt

    def request_submit(self, principal: Principal | None, attempt_id: str) -> SubmitSummary:
        with self._lock:
            return self._owned_attempt(principal, attempt_id).request_submit()

    def cancel_submit(self, principal: Principal | None, attempt_id: str) -> ExamAttempt:
        with self._lock:
            attempt = self._owned_attempt(principal, attempt_id)
            attempt.cancel_submit()
            return attempt

    def confirm_submit(self, principal: Principal | None, attempt_id: str) -> Submission | None:
        with self._lock:
            attempt = self._owned_attempt(principal, attempt_id)
            try:
                attempt.confirm_submit()
            finally:
                self._discard_if_finished(attempt)
            return attempt.submission

    def retry_submit(self, principal: Principal | None, attempt_id: str) -> Submission:
        with self._lock:
            attempt = self._owned_attempt(principal, attempt_id)
            try:
                return attempt.retry_submit()
            finally:
                self._discard_if_finished(attempt)

    def tick_all(self, seconds: int = 1) -> TickReport:
        """Advance every running attempt's countdown; expired ones auto-submit."""
        report = TickReport()
        with self._lock:
            for attempt in list(self._attempts.values()):
                if attempt.state is not AttemptState.IN_PROGRESS:
                    continue
                outcome: TickOutcome = attempt.tick(seconds)
                report.ticked += 1
                if outcome.warning_triggered:
                    report.warnings.append(attempt.attempt_id)
                if outcome.submission_error is not None:
                    report.failed.append(attempt.attempt_id)
                elif outcome.expired:
                    report.auto_submitted.append(attempt.attempt_id)
                self._discard_if_finished(attempt)
        return report

    # --- Submissions & review ---

    def get_submission(self, principal: Principal | None, submission_id: str) -> Submission:
        principal = require_principal(principal)
        with self._lock:
            submission = self._review.get_submission(submission_id)
        if principal.user_id not in (submission.student_id, submission.teacher_id):
            raise PermissionDenied("You cannot view this submission.")
        return submission

    def get_submission_with_exam(
        self, principal: Principal | None, submission_id: str
    ) -> tuple[Submission, Exam | None]:
        submission = self.get_submission(principal, submission_id)
        with self._lock:
            exams = self._exams_by_id([submission.exam_id])
        return submission, exams.get(submission.exam_id)

    def list_my_submissions(self, principal: Principal | None) -> list[tuple[Submission, Exam | None]]:
        student = require_role(principal, Role.STUDENT)
        with self._lock:
            submissions = self._query_submissions(student_id=student.user_id)
            exams = self._exams_by_id(s.exam_id for s in submissions)
        return [(submission, exams.get(submission.exam_id)) for submission in submissions]

    def list_exam_submissions(self, principal: Principal | None, exam_id: str) -> list[Submission]:
        with self._lock:
            exam = self._exams.get_exam(exam_id)
            require_owner(principal, exam.created_by)
            return self._query_submissions(exam_id=exam_id)

    def export_submissions_csv(self, principal: Principal | None, exam_id: str) -> tuple[Exam, str]:
        with self._lock:
            exam = self._exams.get_exam(exam_id)
            require_owner(principal, exam.created_by)
            submissions = self._query_submissions(exam_id=exam_id)
            students = self._users_by_id(s.student_id for s in submissions)
        return exam, submissions_to_csv(submissions, students)

    def review_submission(
        self, principal: Principal | None, submission_id: str, feedback: str, reviewed: bool = True
    ) -> Submission:
        with self._lock:
            return self._review.review_submission(principal, submission_id, feedback, reviewed)

    def grade_submission(
        self, principal: Principal | None, submission_id: str, grades: Mapping[int, float]
    ) -> Submission:
        with self._lock:
            return self._review.grade_submission(principal, submission_id, grades)

    # --- Analytics ---

    def teacher_dashboard(self, principal: Principal | None, leaderboard_size: int = 10) -> analytics.TeacherDashboard:
        teacher = require_role(principal, Role.TEACHER)
        with self._lock:
            exams = self._exams.list_exams_for_teacher(teacher.user_id)
            submissions = self._query_submissions(teacher_id=teacher.user_id)
        exams_by_id = {exam.id: exam for exam in exams}
        owned = [s for s in submissions if s.exam_id in exams_by_id]
        return analytics.teacher_dashboard(
            exams,
            owned,
            Leaderboard.from_submissions(owned).get_top_students(leaderboard_size),
        )

    def student_dashboard(self, principal: Principal | None) -> analytics.StudentDashboard:
        student = require_role(principal, Role.STUDENT)
        with self._lock:
            submissions = self._query_submissions(student_id=student.user_id)
            exams = self._exams_by_id(s.exam_id for s in submissions)
        return analytics.student_dashboard(exams, submissions)

    def bookmark_report(self, principal: Principal | None, search: str = "") -> analytics.BookmarkReport:
        student = require_role(principal, Role.STUDENT)
        with self._lock:
            submissions = self._query_submissions(student_id=student.user_id)
            exams = self._exams_by_id(s.exam_id for s in submissions if s.bookmarked_questions)
        return analytics.bookmark_report(exams, submissions, search)

    def question_analytics(self, principal: Principal | None, exam_id: str) -> list[analytics.QuestionStats]:
        with self._lock:
            exam = self._exams.get_exam(exam_id)
            require_owner(principal, exam.created_by)
            submissions = self._query_submissions(exam_id=exam_id)
        return analytics.question_breakdown(exam, submissions)

    def flagged_questions(self, principal: Principal | None) -> analytics.FlaggedReport:
        teacher = require_role(principal, Role.TEACHER)
        with self._lock:
            exams = {e.id: e for e in self._exams.list_exams_for_teacher(teacher.user_id)}
            submissions = self._query_submissions(teacher_id=teacher.user_id)
        return analytics.flagged_question_report(exams, submissions)

    # --- Internal helpers (caller holds the lock) ---

    def _load_user(self, user_id: str) -> UserProfile:
        return UserProfile.from_document(user_id, self._store.get_by_id(USERS_COLLECTION, user_id))

    def _owned_attempt(self, principal: Principal | None, attempt_id: str) -> ExamAttempt:
        student = require_role(principal, Role.STUDENT)
        attempt = self._attempts.get(attempt_id)
        if attempt is None or attempt.student_id != student.user_id:
            raise NotFound(f"Attempt {attempt_id} is not active.")
        return attempt

    def _open_attempt_for(self, exam_id: str, student_id: str) -> ExamAttempt | None:
        for attempt in self._attempts.values():
            if (
                attempt.exam.id == exam_id
                and attempt.student_id == student_id
                and not attempt.rejected
                and attempt.state in (AttemptState.IN_PROGRESS, AttemptState.SUBMITTING)
            ):
                return attempt
        return None

    def _discard_if_finished(self, attempt: ExamAttempt) -> None:
        if attempt.state is AttemptState.COMPLETED or attempt.rejected:
            self._attempts.pop(attempt.attempt_id, None)

    def _query_submissions(self, **filters: str) -> list[Submission]:
        rows = self._store.query(SUBMISSIONS_COLLECTION, **filters)
        submissions = [Submission.from_document(doc_id, doc) for doc_id, doc in rows]
        submissions.sort(key=lambda s: s.submitted_at, reverse=True)
        return submissions

    def _exams_by_id(self, exam_ids: Iterable[str]) -> dict[str, Exam]:
        exams: dict[str, Exam] = {}
        for exam_id in set(exam_ids):
            try:
                exams[exam_id] = self._exams.get_exam(exam_id)
            except NotFound:
                logger.debug("Exam %s referenced by a submission no longer exists", exam_id)
        return exams

    def _users_by_id(self, user_ids: Iterable[str]) -> dict[str, UserProfile]:
        users: dict[str, UserProfile] = {}
        for user_id in set(user_ids):
            try:
                users[user_id] = self._load_user(user_id)
            except NotFound:
                continue
        return users


def _log_time_warning(attempt: ExamAttempt, remaining_seconds: int) -> None:
    logger.info("Attempt %s has %d seconds left", attempt.attempt_id, remaining_seconds)
