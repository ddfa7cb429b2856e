"""FastAPI server exposing the exam service to teacher and student clients."""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
import re

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel, Field

from exam_app.constants.about import APP_ABOUT_TEXT, APP_LICENSE, APP_NAME, APP_VERSION
from exam_app.constants.network_constants import AUTH_HEADER_SCHEME
from exam_app.core.errors import (
    AlreadyAttempted,
    AuthRequired,
    ExamAppError,
    InvalidAttemptState,
    NotFound,
    NotPublished,
    PermissionDenied,
    PersistenceError,
    ValidationError,
)
from exam_app.core.exam_manager import ExamManager
from exam_app.core.markdown_math_renderer import renderer
from exam_app.core.models import (
    Exam,
    ExamStatus,
    Principal,
    Question,
    QuestionPoolEntry,
    Role,
    Submission,
    UserProfile,
)
from exam_app.core.scoring import classify_result
from exam_app.core.services.attempt_engine import ExamAttempt

# Most specific first; ImportFormatError is a ValidationError.
_STATUS_BY_ERROR: tuple[tuple[type[ExamAppError], int], ...] = (
    (NotFound, 404),
    (NotPublished, 409),
    (AlreadyAttempted, 409),
    (InvalidAttemptState, 409),
    (ValidationError, 422),
    (PersistenceError, 503),
    (AuthRequired, 401),
    (PermissionDenied, 403),
)


def status_for_error(exc: ExamAppError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 400


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != AUTH_HEADER_SCHEME.lower() or not token.strip():
        return None
    return token.strip()


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class SessionPayload(BaseModel):
    """Dev sign-in: exchange a user id for a bearer token."""

    user_id: str


class UserPayload(BaseModel):
    id: str | None = None
    role: Role
    name: str = ""
    email: str = ""


class QuestionPayload(BaseModel):
    question_text: str
    options: list[str]
    correct_option_index: int
    points: int = 1
    image_url: str = ""
    explanation: str = ""

    def to_question(self) -> Question:
        return Question(
            question_text=self.question_text,
            options=list(self.options),
            correct_option_index=self.correct_option_index,
            points=self.points,
            image_url=self.image_url,
            explanation=self.explanation,
        )


class ExamPayload(BaseModel):
    """Payload schema for exam authoring; missing required fields fail validation later."""

    title: str = ""
    description: str = ""
    instructions: str = ""
    category: str = ""
    difficulty: str = "Medium"
    time_limit_minutes: int | None = None
    passing_score: int | None = None
    shuffle_questions: bool = False
    allow_reattempts: bool = False
    is_published: bool = False
    questions: list[QuestionPayload] = Field(default_factory=list)
    pool_entry_ids: list[str] = Field(default_factory=list)

    def to_exam(self) -> Exam:
        return Exam(
            id="",
            created_by="",
            title=self.title,
            description=self.description,
            instructions=self.instructions,
            category=self.category,
            difficulty=self.difficulty,
            time_limit_minutes=self.time_limit_minutes,
            passing_score=self.passing_score,
            shuffle_questions=self.shuffle_questions,
            allow_reattempts=self.allow_reattempts,
            is_published=self.is_published,
            questions=[question.to_question() for question in self.questions],
        )


class ExamImportPayload(ExamPayload):
    text: str


class PublishPayload(BaseModel):
    published: bool


class StatusPayload(BaseModel):
    status: ExamStatus


class JoinPayload(BaseModel):
    public_link: str


class PoolEntryPayload(BaseModel):
    question_text: str
    options: list[str]
    correct_option_index: int
    points: int = 1
    category: str = ""
    difficulty: str = ""
    explanation: str = ""

    def to_entry(self) -> QuestionPoolEntry:
        return QuestionPoolEntry(
            id="",
            teacher_id="",
            question_text=self.question_text,
            options=list(self.options),
            correct_option_index=self.correct_option_index,
            points=self.points,
            category=self.category,
            difficulty=self.difficulty,
            explanation=self.explanation,
        )


class CsvPayload(BaseModel):
    text: str


class AnswerPayload(BaseModel):
    """Payload schema for a selected option at a presentation position."""

    position: int
    option_index: int


class PositionPayload(BaseModel):
    position: int


class ReviewPayload(BaseModel):
    feedback: str = ""
    reviewed: bool = True


class GradesPayload(BaseModel):
    grades: dict[int, float]


def _question_view(question: Question, include_answers: bool) -> dict[str, object]:
    view: dict[str, object] = {
        "question_text": question.question_text,
        "options": list(question.options),
        "points": question.points,
        "image_url": question.image_url,
    }
    if include_answers:
        view["correct_option_index"] = question.correct_option_index
        view["explanation"] = question.explanation
    return view


def _exam_view(exam: Exam, include_answers: bool) -> dict[str, object]:
    view: dict[str, object] = {
        "id": exam.id,
        "created_by": exam.created_by,
        "title": exam.title,
        "description": exam.description,
        "instructions": exam.instructions,
        "category": exam.category,
        "difficulty": exam.difficulty,
        "time_limit_minutes": exam.time_limit_minutes,
        "passing_score": exam.passing_score,
        "total_points": exam.total_points,
        "question_count": len(exam.questions),
        "is_published": exam.is_published,
        "shuffle_questions": exam.shuffle_questions,
        "allow_reattempts": exam.allow_reattempts,
        "status": exam.status.value,
        "visibility": exam.visibility.value,
        "public_link": exam.public_link,
        "created_at": _iso(exam.created_at),
    }
    if include_answers:
        view["participants"] = list(exam.participants)
        view["questions"] = [_question_view(q, include_answers=True) for q in exam.questions]
    return view


def _pool_entry_view(entry: QuestionPoolEntry) -> dict[str, object]:
    return {
        "id": entry.id,
        "question_text": entry.question_text,
        "options": list(entry.options),
        "correct_option_index": entry.correct_option_index,
        "points": entry.points,
        "category": entry.category,
        "difficulty": entry.difficulty,
        "explanation": entry.explanation,
        "times_used": entry.times_used,
        "created_at": _iso(entry.created_at),
        "updated_at": _iso(entry.updated_at),
    }


def _attempt_view(attempt: ExamAttempt) -> dict[str, object]:
    """Student-facing attempt state; correct answers are never included."""
    count = attempt.question_count()
    position = attempt.current_position
    question = attempt.current_question()
    return {
        "attempt_id": attempt.attempt_id,
        "exam_id": attempt.exam.id,
        "title": attempt.exam.title,
        "state": attempt.state.value,
        "attempt_number": attempt.attempt_number,
        "question_count": count,
        "current_position": position,
        "current_question": {
            **_question_view(question, include_answers=False),
            **renderer.render_question(question),
            "selected_option_index": attempt.answer_at(position),
            "bookmarked": attempt.is_bookmarked(position),
            "flagged": attempt.is_flagged(position),
        },
        "answered_positions": [p for p in range(count) if attempt.answer_at(p) is not None],
        "bookmarked_positions": [p for p in range(count) if attempt.is_bookmarked(p)],
        "flagged_positions": [p for p in range(count) if attempt.is_flagged(p)],
        "remaining_seconds": attempt.remaining_seconds,
        "time_warning": attempt.time_warning_active,
        "confirmation_pending": attempt.confirmation_pending,
        "started_at": _iso(attempt.started_at),
        "last_error": str(attempt.last_error) if attempt.last_error else None,
    }


def _submission_view(submission: Submission, exam: Exam | None = None) -> dict[str, object]:
    view: dict[str, object] = {
        "id": submission.id,
        "exam_id": submission.exam_id,
        "student_id": submission.student_id,
        "teacher_id": submission.teacher_id,
        "answers": {str(k): v for k, v in submission.answers.items()},
        "score": submission.score,
        "final_score": submission.final_score,
        "earned_points": submission.earned_points,
        "total_points": submission.total_points,
        "time_spent_seconds": submission.time_spent_seconds,
        "started_at": _iso(submission.started_at),
        "submitted_at": _iso(submission.submitted_at),
        "question_order": list(submission.question_order),
        "flagged_questions": list(submission.flagged_questions),
        "bookmarked_questions": list(submission.bookmarked_questions),
        "attempt_number": submission.attempt_number,
        "auto_submitted": submission.auto_submitted,
        "feedback": submission.feedback,
        "reviewed": submission.reviewed,
        "reviewed_at": _iso(submission.reviewed_at),
        "question_grades": {str(k): v for k, v in submission.question_grades.items()},
        "grading_status": submission.grading_status.value,
        "graded_at": _iso(submission.graded_at),
    }
    if exam is not None:
        view["exam_title"] = exam.title
        view["passing_score"] = exam.passing_score
        view["result"] = classify_result(submission.effective_score, exam.passing_score)
        view["questions"] = [
            {
                **_question_view(question, include_answers=True),
                "selected_option_index": submission.answers.get(index),
                "is_correct": submission.answers.get(index) == question.correct_option_index,
            }
            for index, question in enumerate(exam.questions)
        ]
    return view


def _get_exam_manager_dependency(exam_manager: ExamManager):
    def dependency() -> ExamManager:
        return exam_manager

    return dependency


def _csv_filename(title: str) -> str:
    slug = re.sub(r"[^A-Za-z0-9]+", "_", title).strip("_") or "exam"
    return f"{slug}_submissions.csv"


def create_api_app(exam_manager: ExamManager) -> FastAPI:
    """Create a FastAPI application wired to the provided exam manager."""
    app = FastAPI(
        title=f"{APP_NAME} API",
        version=APP_VERSION,
        description=APP_ABOUT_TEXT,
        license_info={"name": APP_LICENSE},
    )
    exam_manager_dep = _get_exam_manager_dependency(exam_manager)

    def principal_dep(
        authorization: str | None = Header(default=None),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> Principal:
        return manager.resolve_principal(_bearer_token(authorization))

    @app.exception_handler(ExamAppError)
    async def handle_exam_error(request: Request, exc: ExamAppError) -> JSONResponse:
        status_code = status_for_error(exc)
        headers = {"WWW-Authenticate": AUTH_HEADER_SCHEME} if status_code == 401 else None
        return JSONResponse(status_code=status_code, content={"detail": str(exc)}, headers=headers)

    @app.get("/health")
    def health() -> dict[str, object]:
        return {"status": "ok", "app": APP_NAME, "version": APP_VERSION}

    # --- Users & sessions ---

    @app.post("/users", status_code=201)
    def register_user(
        payload: UserPayload,
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        user = manager.register_user(
            UserProfile(id=payload.id or "", role=payload.role, name=payload.name, email=payload.email)
        )
        return {"id": user.id, "role": user.role.value, "name": user.name, "email": user.email}

    @app.post("/auth/session", status_code=201)
    def create_session(
        payload: SessionPayload,
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        token = manager.sign_in(payload.user_id)
        principal = manager.resolve_principal(token)
        return {"token": token, "user_id": principal.user_id, "role": principal.role.value}

    @app.delete("/auth/session", status_code=204)
    def delete_session(
        authorization: str | None = Header(default=None),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> Response:
        token = _bearer_token(authorization)
        if token:
            manager.sign_out(token)
        return Response(status_code=204)

    @app.get("/me")
    def get_me(
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        user = manager.get_user(principal.user_id)
        return {"id": user.id, "role": user.role.value, "name": user.name, "email": user.email}

    # --- Exams ---

    @app.post("/exams", status_code=201)
    def create_exam(
        payload: ExamPayload,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        exam = manager.create_exam(principal, payload.to_exam(), payload.pool_entry_ids)
        return _exam_view(exam, include_answers=True)

    @app.post("/exams/import", status_code=201)
    def import_exam(
        payload: ExamImportPayload,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        exam = manager.import_exam(principal, payload.to_exam(), payload.text)
        return _exam_view(exam, include_answers=True)

    @app.get("/exams/mine")
    def list_my_exams(
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> list[dict[str, object]]:
        return [_exam_view(exam, include_answers=False) for exam in manager.list_teacher_exams(principal)]

    @app.get("/exams/available")
    def list_available_exams(
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> list[dict[str, object]]:
        return [_exam_view(exam, include_answers=False) for exam in manager.list_available_exams(principal)]

    @app.post("/exams/join")
    def join_exam(
        payload: JoinPayload,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return _exam_view(manager.join_exam(principal, payload.public_link), include_answers=False)

    @app.get("/exams/{exam_id}")
    def get_exam(
        exam_id: str,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        exam = manager.get_exam(principal, exam_id)
        return _exam_view(exam, include_answers=exam.created_by == principal.user_id)

    @app.delete("/exams/{exam_id}", status_code=204)
    def delete_exam(
        exam_id: str,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> Response:
        manager.delete_exam(principal, exam_id)
        return Response(status_code=204)

    @app.put("/exams/{exam_id}/published")
    def set_published(
        exam_id: str,
        payload: PublishPayload,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return _exam_view(manager.set_published(principal, exam_id, payload.published), include_answers=False)

    @app.put("/exams/{exam_id}/status")
    def set_status(
        exam_id: str,
        payload: StatusPayload,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return _exam_view(manager.set_exam_status(principal, exam_id, payload.status), include_answers=False)

    @app.post("/exams/{exam_id}/share")
    def share_exam(
        exam_id: str,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return _exam_view(manager.share_exam(principal, exam_id), include_answers=False)

    @app.get("/exams/{exam_id}/preview", response_class=HTMLResponse)
    def preview_exam(
        exam_id: str,
        show_answers: bool = True,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> str:
        return manager.preview_exam(principal, exam_id, show_answers=show_answers)

    @app.get("/exams/{exam_id}/export", response_class=PlainTextResponse)
    def export_exam(
        exam_id: str,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> str:
        return manager.export_exam(principal, exam_id)

    @app.get("/exams/{exam_id}/submissions")
    def list_exam_submissions(
        exam_id: str,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> list[dict[str, object]]:
        return [_submission_view(s) for s in manager.list_exam_submissions(principal, exam_id)]

    @app.get("/exams/{exam_id}/submissions.csv")
    def export_submissions(
        exam_id: str,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> Response:
        exam, content = manager.export_submissions_csv(principal, exam_id)
        return Response(
            content=content,
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{_csv_filename(exam.title)}"'},
        )

    @app.get("/exams/{exam_id}/analytics/questions")
    def question_analytics(
        exam_id: str,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> list[dict[str, object]]:
        return [asdict(stats) for stats in manager.question_analytics(principal, exam_id)]

    # --- Question pool ---

    @app.get("/pool")
    def list_pool(
        category: str | None = None,
        difficulty: str | None = None,
        search: str | None = None,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> list[dict[str, object]]:
        entries = manager.list_pool(principal, category, difficulty, search)
        return [_pool_entry_view(entry) for entry in entries]

    @app.post("/pool", status_code=201)
    def add_pool_entry(
        payload: PoolEntryPayload,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return _pool_entry_view(manager.add_pool_entry(principal, payload.to_entry()))

    @app.post("/pool/import", status_code=201)
    def import_pool(
        payload: CsvPayload,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        entries = manager.import_pool_csv(principal, payload.text)
        return {"imported": len(entries), "entries": [_pool_entry_view(entry) for entry in entries]}

    @app.get("/pool/stats")
    def pool_stats(
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return asdict(manager.pool_stats(principal))

    @app.put("/pool/{entry_id}")
    def update_pool_entry(
        entry_id: str,
        payload: PoolEntryPayload,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return _pool_entry_view(manager.update_pool_entry(principal, entry_id, payload.to_entry()))

    @app.delete("/pool/{entry_id}", status_code=204)
    def delete_pool_entry(
        entry_id: str,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> Response:
        manager.delete_pool_entry(principal, entry_id)
        return Response(status_code=204)

    # --- Attempts ---

    @app.post("/exams/{exam_id}/attempts", status_code=201)
    def start_attempt(
        exam_id: str,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return _attempt_view(manager.start_attempt(principal, exam_id))

    @app.get("/attempts/{attempt_id}")
    def get_attempt(
        attempt_id: str,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return _attempt_view(manager.get_attempt(principal, attempt_id))

    @app.post("/attempts/{attempt_id}/answer")
    def select_answer(
        attempt_id: str,
        payload: AnswerPayload,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        attempt = manager.select_answer(principal, attempt_id, payload.position, payload.option_index)
        return _attempt_view(attempt)

    @app.post("/attempts/{attempt_id}/clear")
    def clear_answer(
        attempt_id: str,
        payload: PositionPayload,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return _attempt_view(manager.clear_answer(principal, attempt_id, payload.position))

    @app.post("/attempts/{attempt_id}/bookmark")
    def toggle_bookmark(
        attempt_id: str,
        payload: PositionPayload,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return _attempt_view(manager.toggle_bookmark(principal, attempt_id, payload.position))

    @app.post("/attempts/{attempt_id}/flag")
    def toggle_flag(
        attempt_id: str,
        payload: PositionPayload,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return _attempt_view(manager.toggle_flag(principal, attempt_id, payload.position))

    @app.post("/attempts/{attempt_id}/goto")
    def go_to(
        attempt_id: str,
        payload: PositionPayload,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return _attempt_view(manager.go_to(principal, attempt_id, payload.position))

    @app.post("/attempts/{attempt_id}/next")
    def next_question(
        attempt_id: str,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return _attempt_view(manager.next_question(principal, attempt_id))

    @app.post("/attempts/{attempt_id}/previous")
    def previous_question(
        attempt_id: str,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return _attempt_view(manager.previous_question(principal, attempt_id))

    @app.post("/attempts/{attempt_id}/submit/request")
    def request_submit(
        attempt_id: str,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return asdict(manager.request_submit(principal, attempt_id))

    @app.post("/attempts/{attempt_id}/submit/cancel")
    def cancel_submit(
        attempt_id: str,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return _attempt_view(manager.cancel_submit(principal, attempt_id))

    @app.post("/attempts/{attempt_id}/submit/confirm")
    def confirm_submit(
        attempt_id: str,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        submission = manager.confirm_submit(principal, attempt_id)
        if submission is None:
            raise InvalidAttemptState(
                f"Attempt {attempt_id} could not be saved yet; "
                f"retry with POST /attempts/{attempt_id}/submit/retry."
            )
        return _submission_view(*manager.get_submission_with_exam(principal, submission.id))

    @app.post("/attempts/{attempt_id}/submit/retry")
    def retry_submit(
        attempt_id: str,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        submission = manager.retry_submit(principal, attempt_id)
        return _submission_view(*manager.get_submission_with_exam(principal, submission.id))

    # --- Submissions & review ---

    @app.get("/submissions/mine")
    def list_my_submissions(
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> list[dict[str, object]]:
        return [_submission_view(s, exam) for s, exam in manager.list_my_submissions(principal)]

    @app.get("/submissions/{submission_id}")
    def get_submission(
        submission_id: str,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return _submission_view(*manager.get_submission_with_exam(principal, submission_id))

    @app.put("/submissions/{submission_id}/review")
    def review_submission(
        submission_id: str,
        payload: ReviewPayload,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        submission = manager.review_submission(principal, submission_id, payload.feedback, payload.reviewed)
        return _submission_view(submission)

    @app.put("/submissions/{submission_id}/grades")
    def grade_submission(
        submission_id: str,
        payload: GradesPayload,
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return _submission_view(manager.grade_submission(principal, submission_id, payload.grades))

    # --- Analytics ---

    @app.get("/analytics/teacher")
    def teacher_dashboard(
        limit: int = Query(10, ge=1),
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return asdict(manager.teacher_dashboard(principal, leaderboard_size=limit))

    @app.get("/analytics/student")
    def student_dashboard(
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return asdict(manager.student_dashboard(principal))

    @app.get("/analytics/bookmarks")
    def bookmark_report(
        search: str = "",
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        report = manager.bookmark_report(principal, search)
        view = asdict(report)
        for entry in view["exams"]:
            entry["submitted_at"] = _iso(entry["submitted_at"])
        return view

    @app.get("/analytics/flagged")
    def flagged_questions(
        principal: Principal = Depends(principal_dep),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return asdict(manager.flagged_questions(principal))

    return app
