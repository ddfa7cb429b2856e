"""Score computation shared by the attempt engine, review and analytics."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from decimal import ROUND_HALF_UP, Decimal

from exam_app.core.models import Question

PASSED = "Passed"
FAILED = "Failed"


def compute_earned_points(questions: Sequence[Question], answers: Mapping[int, int]) -> int:
    """Sum the points of every question whose recorded answer is exactly correct."""
    earned = 0
    for index, question in enumerate(questions):
        if answers.get(index) == question.correct_option_index:
            earned += question.points
    return earned


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def percentage(part: float, whole: float) -> int:
    """Return ``round(100 * part / whole)`` rounding halves up, or 0 when ``whole`` is 0."""
    if not whole:
        return 0
    return _round_half_up(Decimal(100) * Decimal(str(part)) / Decimal(str(whole)))


def compute_score(earned_points: float, total_points: float) -> int:
    return percentage(earned_points, total_points)


def score_answers(questions: Sequence[Question], answers: Mapping[int, int]) -> tuple[int, int, int]:
    """Return ``(earned_points, total_points, score)`` for an answer map."""
    earned = compute_earned_points(questions, answers)
    total = sum(question.points for question in questions)
    return earned, total, compute_score(earned, total)


def is_passing(score: int, passing_score: int) -> bool:
    return score >= passing_score


def classify_result(score: int, passing_score: int) -> str:
    return PASSED if is_passing(score, passing_score) else FAILED


def safe_average(values: Sequence[float]) -> int:
    """Rounded mean of ``values``; an empty sequence averages to 0."""
    if not values:
        return 0
    return _round_half_up(Decimal(str(sum(values))) / Decimal(len(values)))
