"""Utilities for importing questions from human-friendly files.

Exam text format (every block starts with Q:, blocks may also be separated
by '---'):

    Q: Question text (supports markdown + LaTeX). Additional lines until the
       next marker are treated as part of the question; blank lines inside
       it are kept as paragraph breaks.
    IMAGE: URL of an illustration (optional)
    A: First option text
    B: Second option text
    ...                  (two to ten options, lettered A-J)
    CORRECT: A-J
    POINTS: positive integer (optional, defaults to 1)
    EXPLANATION: text shown after grading (optional)

Example:

    Q: What is $2 + 2$?
    A: 3
    B: 4
    C: 5
    CORRECT: B
    POINTS: 2

Question-pool CSV format, one question per row, no header:

    question text, option 1, ..., option N, correct index, category

Rows with fewer than four cells or an empty question are skipped.
"""

from __future__ import annotations

import csv
import io

from exam_app.constants.exam_constants import DEFAULT_CATEGORY, DEFAULT_DIFFICULTY
from exam_app.core.errors import ImportFormatError
from exam_app.core.models import Question, QuestionPoolEntry

_OPTION_ORDER = ["A", "B", "C", "D", "E", "F", "G", "H", "I", "J"]


def parse_exam_text(text: str) -> list[Question]:
    blocks: list[str] = []
    current_block: list[str] = []

    def flush() -> None:
        block = "\n".join(current_block).strip()
        if block:
            blocks.append(block)
        current_block.clear()

    for raw_line in text.splitlines():
        stripped = raw_line.strip()
        if stripped == "---":
            flush()
            continue
        if stripped.upper().startswith("Q:"):
            flush()
        current_block.append(raw_line)
    flush()

    questions = [_parse_block(block, number) for number, block in enumerate(blocks, start=1)]
    if not questions:
        raise ImportFormatError("Exam file did not contain any questions.")
    return questions


def _parse_block(block: str, number: int) -> Question:
    question_lines: list[str] = []
    options: dict[str, str] = {}
    explanation_lines: list[str] = []
    correct_letter: str | None = None
    image_url = ""
    points = 1
    current_section: str | None = None

    for raw_line in block.splitlines():
        line = raw_line.strip()
        if not line:
            # Paragraph break inside a multi-line section.
            if current_section == "Q":
                question_lines.append("")
            elif current_section == "EXPLANATION":
                explanation_lines.append("")
            elif current_section in _OPTION_ORDER:
                options[current_section] += "\n"
            continue

        upper = line.upper()
        if upper.startswith("Q:"):
            question_lines = [line[2:].strip()]
            current_section = "Q"
            continue

        if upper.startswith("IMAGE:"):
            image_url = line.split(":", 1)[1].strip()
            current_section = None
            continue

        if upper.startswith("CORRECT:"):
            if correct_letter is not None:
                raise ImportFormatError(
                    f"Question {number}: CORRECT given twice (is a Q: line missing?)."
                )
            correct_letter = line.split(":", 1)[1].strip().upper()
            current_section = None
            continue

        if upper.startswith("POINTS:"):
            raw_value = line.split(":", 1)[1].strip()
            try:
                points = int(raw_value)
            except ValueError as exc:
                raise ImportFormatError(
                    f"Question {number}: POINTS must be an integer."
                ) from exc
            if points <= 0:
                raise ImportFormatError(f"Question {number}: POINTS must be a positive integer.")
            current_section = None
            continue

        if upper.startswith("EXPLANATION:"):
            explanation_lines = [line.split(":", 1)[1].strip()]
            current_section = "EXPLANATION"
            continue

        if len(line) > 2 and line[0].upper() in _OPTION_ORDER and line[1] == ":":
            letter = line[0].upper()
            if letter in options:
                raise ImportFormatError(
                    f"Question {number}: option {letter} given twice (is a Q: line missing?)."
                )
            options[letter] = line[2:].strip()
            current_section = letter
            continue

        if current_section == "Q":
            question_lines.append(line)
        elif current_section == "EXPLANATION":
            explanation_lines.append(line)
        elif current_section in _OPTION_ORDER:
            options[current_section] = options[current_section] + f"\n{line}"
        else:
            raise ImportFormatError(
                f"Question {number}: text outside of a known section: '{line}'."
            )

    question_text = "\n".join(question_lines).strip()
    if not question_text:
        raise ImportFormatError(f"Question {number}: question text missing (Q: ...).")

    letters = _OPTION_ORDER[: len(options)]
    if len(options) < 2 or sorted(options) != letters:
        raise ImportFormatError(
            f"Question {number}: options must be lettered consecutively from A (at least two)."
        )
    option_list = [options[letter].strip() for letter in letters]
    if any(not option for option in option_list):
        raise ImportFormatError(f"Question {number}: option text cannot be empty.")

    if correct_letter is None:
        raise ImportFormatError(f"Question {number}: CORRECT is required.")
    if correct_letter not in letters:
        raise ImportFormatError(
            f"Question {number}: CORRECT must be one of {', '.join(letters)}."
        )

    return Question(
        question_text=question_text,
        options=option_list,
        correct_option_index=letters.index(correct_letter),
        points=points,
        explanation="\n".join(explanation_lines).strip(),
        image_url=image_url,
    )


def parse_pool_csv(text: str) -> list[QuestionPoolEntry]:
    """Parse question-pool rows; ids and owners are assigned when the entries are stored."""
    entries: list[QuestionPoolEntry] = []
    for row in csv.reader(io.StringIO(text)):
        if len(row) < 4 or not row[0].strip():
            continue
        try:
            correct_index = int(row[-2].strip())
        except ValueError:
            correct_index = 0
        entries.append(
            QuestionPoolEntry(
                id="",
                teacher_id="",
                question_text=row[0].strip(),
                options=[cell.strip() for cell in row[1:-2] if cell.strip()],
                correct_option_index=correct_index,
                category=row[-1].strip() or DEFAULT_CATEGORY,
                difficulty=DEFAULT_DIFFICULTY,
            )
        )
    if not entries:
        raise ImportFormatError("CSV file did not contain any questions.")
    return entries
