"""Domain models for the exam application."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from exam_app.constants.exam_constants import DEFAULT_CATEGORY, DEFAULT_DIFFICULTY


class Role(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"


class ExamStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class Visibility(str, Enum):
    PRIVATE = "private"
    PUBLIC = "public"


class GradingStatus(str, Enum):
    AUTO = "auto"
    COMPLETED = "completed"


@dataclass(slots=True, frozen=True)
class Principal:
    """Signed-in user as seen by the core services."""

    user_id: str
    role: Role


@dataclass(slots=True)
class UserProfile:
    id: str
    role: Role
    name: str = ""
    email: str = ""

    def to_document(self) -> dict[str, Any]:
        return {"role": self.role.value, "name": self.name, "email": self.email}

    @classmethod
    def from_document(cls, document_id: str, document: dict[str, Any]) -> "UserProfile":
        return cls(
            id=document_id,
            role=Role(document.get("role", Role.STUDENT.value)),
            name=document.get("name", ""),
            email=document.get("email", ""),
        )


@dataclass(slots=True)
class Question:
    """Multiple-choice question embedded in an exam."""

    question_text: str
    options: list[str]
    correct_option_index: int
    points: int = 1
    image_url: str = ""
    explanation: str = ""

    def to_document(self) -> dict[str, Any]:
        return {
            "question_text": self.question_text,
            "options": list(self.options),
            "correct_option_index": self.correct_option_index,
            "points": self.points,
            "image_url": self.image_url,
            "explanation": self.explanation,
        }

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "Question":
        return cls(
            question_text=document["question_text"],
            options=list(document["options"]),
            correct_option_index=int(document["correct_option_index"]),
            points=int(document.get("points", 1)),
            image_url=document.get("image_url", ""),
            explanation=document.get("explanation", ""),
        )


@dataclass(slots=True)
class Exam:
    """Assessment definition owned by a teacher."""

    id: str
    created_by: str
    title: str
    time_limit_minutes: int
    passing_score: int
    questions: list[Question]
    description: str = ""
    instructions: str = ""
    category: str = ""
    difficulty: str = DEFAULT_DIFFICULTY
    is_published: bool = False
    shuffle_questions: bool = False
    allow_reattempts: bool = False
    status: ExamStatus = ExamStatus.ACTIVE
    visibility: Visibility = Visibility.PRIVATE
    public_link: str | None = None
    participants: list[str] = field(default_factory=list)
    created_at: datetime | None = None

    @property
    def total_points(self) -> int:
        return sum(question.points for question in self.questions)

    @property
    def time_limit_seconds(self) -> int:
        return self.time_limit_minutes * 60

    def to_document(self) -> dict[str, Any]:
        return {
            "created_by": self.created_by,
            "title": self.title,
            "description": self.description,
            "instructions": self.instructions,
            "time_limit_minutes": self.time_limit_minutes,
            "passing_score": self.passing_score,
            "category": self.category,
            "difficulty": self.difficulty,
            "is_published": self.is_published,
            "shuffle_questions": self.shuffle_questions,
            "allow_reattempts": self.allow_reattempts,
            "status": self.status.value,
            "visibility": self.visibility.value,
            "public_link": self.public_link,
            "participants": list(self.participants),
            "questions": [question.to_document() for question in self.questions],
            "total_points": self.total_points,
            "created_at": self.created_at,
        }

    @classmethod
    def from_document(cls, document_id: str, document: dict[str, Any]) -> "Exam":
        return cls(
            id=document_id,
            created_by=document["created_by"],
            title=document["title"],
            time_limit_minutes=int(document["time_limit_minutes"]),
            passing_score=int(document["passing_score"]),
            questions=[Question.from_document(q) for q in document.get("questions", [])],
            description=document.get("description", ""),
            instructions=document.get("instructions", ""),
            category=document.get("category", ""),
            difficulty=document.get("difficulty", DEFAULT_DIFFICULTY),
            is_published=bool(document.get("is_published", False)),
            shuffle_questions=bool(document.get("shuffle_questions", False)),
            allow_reattempts=bool(document.get("allow_reattempts", False)),
            status=ExamStatus(document.get("status", ExamStatus.ACTIVE.value)),
            visibility=Visibility(document.get("visibility", Visibility.PRIVATE.value)),
            public_link=document.get("public_link"),
            participants=list(document.get("participants", [])),
            created_at=document.get("created_at"),
        )


@dataclass(slots=True)
class QuestionPoolEntry:
    """Reusable question kept outside any single exam."""

    id: str
    teacher_id: str
    question_text: str
    options: list[str]
    correct_option_index: int
    points: int = 1
    category: str = DEFAULT_CATEGORY
    difficulty: str = DEFAULT_DIFFICULTY
    explanation: str = ""
    times_used: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def as_question(self) -> Question:
        return Question(
            question_text=self.question_text,
            options=list(self.options),
            correct_option_index=self.correct_option_index,
            points=self.points,
            explanation=self.explanation,
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "teacher_id": self.teacher_id,
            "question_text": self.question_text,
            "options": list(self.options),
            "correct_option_index": self.correct_option_index,
            "points": self.points,
            "category": self.category,
            "difficulty": self.difficulty,
            "explanation": self.explanation,
            "times_used": self.times_used,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_document(cls, document_id: str, document: dict[str, Any]) -> "QuestionPoolEntry":
        return cls(
            id=document_id,
            teacher_id=document["teacher_id"],
            question_text=document["question_text"],
            options=list(document["options"]),
            correct_option_index=int(document["correct_option_index"]),
            points=int(document.get("points", 1)),
            category=document.get("category") or DEFAULT_CATEGORY,
            difficulty=document.get("difficulty") or DEFAULT_DIFFICULTY,
            explanation=document.get("explanation", ""),
            times_used=int(document.get("times_used", 0)),
            created_at=document.get("created_at"),
            updated_at=document.get("updated_at"),
        )


@dataclass(slots=True)
class Submission:
    """One finished attempt by one student at one exam.

    ``answers``, ``flagged_questions``, ``bookmarked_questions`` and
    ``question_grades`` are keyed by the original question index, never by
    the presentation position.
    """

    id: str
    exam_id: str
    student_id: str
    teacher_id: str
    answers: dict[int, int]
    score: int
    earned_points: int
    total_points: int
    time_spent_seconds: int
    started_at: datetime
    submitted_at: datetime
    question_order: list[int]
    flagged_questions: list[int] = field(default_factory=list)
    bookmarked_questions: list[int] = field(default_factory=list)
    attempt_number: int = 1
    auto_submitted: bool = False
    feedback: str = ""
    reviewed: bool = False
    reviewed_at: datetime | None = None
    question_grades: dict[int, float] = field(default_factory=dict)
    final_score: int | None = None
    grading_status: GradingStatus = GradingStatus.AUTO
    graded_at: datetime | None = None

    @property
    def effective_score(self) -> int:
        return self.final_score if self.final_score is not None else self.score

    def to_document(self) -> dict[str, Any]:
        # Document stores only accept string map keys.
        return {
            "exam_id": self.exam_id,
            "student_id": self.student_id,
            "teacher_id": self.teacher_id,
            "answers": {str(index): option for index, option in self.answers.items()},
            "score": self.score,
            "earned_points": self.earned_points,
            "total_points": self.total_points,
            "time_spent_seconds": self.time_spent_seconds,
            "started_at": self.started_at,
            "submitted_at": self.submitted_at,
            "question_order": list(self.question_order),
            "flagged_questions": list(self.flagged_questions),
            "bookmarked_questions": list(self.bookmarked_questions),
            "attempt_number": self.attempt_number,
            "auto_submitted": self.auto_submitted,
            "feedback": self.feedback,
            "reviewed": self.reviewed,
            "reviewed_at": self.reviewed_at,
            "question_grades": {str(index): points for index, points in self.question_grades.items()},
            "final_score": self.final_score,
            "grading_status": self.grading_status.value,
            "graded_at": self.graded_at,
        }

    @classmethod
    def from_document(cls, document_id: str, document: dict[str, Any]) -> "Submission":
        return cls(
            id=document_id,
            exam_id=document["exam_id"],
            student_id=document["student_id"],
            teacher_id=document["teacher_id"],
            answers={int(k): int(v) for k, v in document.get("answers", {}).items()},
            score=int(document["score"]),
            earned_points=int(document.get("earned_points", 0)),
            total_points=int(document.get("total_points", 0)),
            time_spent_seconds=int(document.get("time_spent_seconds", 0)),
            started_at=document["started_at"],
            submitted_at=document["submitted_at"],
            question_order=list(document.get("question_order", [])),
            flagged_questions=list(document.get("flagged_questions", [])),
            bookmarked_questions=list(document.get("bookmarked_questions", [])),
            attempt_number=int(document.get("attempt_number", 1)),
            auto_submitted=bool(document.get("auto_submitted", False)),
            feedback=document.get("feedback", ""),
            reviewed=bool(document.get("reviewed", False)),
            reviewed_at=document.get("reviewed_at"),
            question_grades={int(k): float(v) for k, v in document.get("question_grades", {}).items()},
            final_score=document.get("final_score"),
            grading_status=GradingStatus(document.get("grading_status", GradingStatus.AUTO.value)),
            graded_at=document.get("graded_at"),
        )
