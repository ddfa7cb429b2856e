"""Exports: exams to the plain-text import format and submissions to CSV."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
import csv
import io

from exam_app.core.models import Question, Submission, UserProfile

_OPTION_LETTERS = ("A", "B", "C", "D", "E", "F", "G", "H", "I", "J")
_SECTION_KEYS = ("Q:", "IMAGE:", "CORRECT:", "POINTS:", "EXPLANATION:")

SUBMISSION_CSV_HEADERS = (
    "Student Name",
    "Student Email",
    "Score",
    "Time Spent",
    "Submission Date",
    "Reviewed",
    "Feedback",
)


def serialize_questions(questions: Sequence[Question]) -> str:
    if not questions:
        raise ValueError("Cannot export an empty exam.")
    if any(len(question.options) > len(_OPTION_LETTERS) for question in questions):
        raise ValueError(f"The text format supports at most {len(_OPTION_LETTERS)} options.")
    blocks = [_serialize_question(number, question) for number, question in enumerate(questions, start=1)]
    return "\n\n---\n\n".join(blocks) + "\n"


def _serialize_question(number: int, question: Question) -> str:
    lines: list[str] = []

    question_lines = question.question_text.splitlines() or [question.question_text]
    lines.append(f"Q: {question_lines[0]}")
    lines.extend(_continuation(number, question_lines[1:]))
    if question.image_url:
        lines.append(f"IMAGE: {question.image_url}")

    for letter, option_text in zip(_OPTION_LETTERS, question.options):
        option_lines = option_text.splitlines() or [option_text]
        lines.append(f"{letter}: {option_lines[0]}")
        lines.extend(_continuation(number, option_lines[1:]))

    lines.append(f"CORRECT: {_OPTION_LETTERS[question.correct_option_index]}")
    lines.append(f"POINTS: {question.points}")
    if question.explanation:
        explanation_lines = question.explanation.splitlines()
        lines.append(f"EXPLANATION: {explanation_lines[0]}")
        lines.extend(_continuation(number, explanation_lines[1:]))

    return "\n".join(lines)


def _continuation(number: int, lines: Sequence[str]) -> list[str]:
    """Follow-on lines of a section; ones the importer would read as a new section are refused."""
    for line in lines:
        stripped = line.strip()
        upper = stripped.upper()
        is_option = len(stripped) > 2 and upper[0] in _OPTION_LETTERS and stripped[1] == ":"
        if stripped == "---" or is_option or upper.startswith(_SECTION_KEYS):
            raise ValueError(
                f"Question {number}: the line '{stripped}' would be read as a new section on import."
            )
    return list(lines)


def format_duration(seconds: int) -> str:
    minutes, remaining = divmod(max(0, seconds), 60)
    return f"{minutes}m {remaining}s"


def submissions_to_csv(
    submissions: Sequence[Submission],
    students: Mapping[str, UserProfile],
) -> str:
    """Render one CSV row per submission; unknown students show as 'Unknown'."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(SUBMISSION_CSV_HEADERS)
    for submission in submissions:
        student = students.get(submission.student_id)
        writer.writerow(
            [
                student.name if student and student.name else "Unknown",
                student.email if student and student.email else "Unknown",
                f"{submission.effective_score}%",
                format_duration(submission.time_spent_seconds),
                submission.submitted_at.date().isoformat(),
                "Yes" if submission.reviewed else "No",
                submission.feedback,
            ]
        )
    return buffer.getvalue()
