"""Service ranking students by their submission results."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from exam_app.core.models import Submission
from exam_app.core.scoring import safe_average


@dataclass(slots=True)
class LeaderboardEntry:
    """Mutable per-student accumulator used internally."""

    student_id: str
    scores: list[int] = field(default_factory=list)
    total_time_spent_seconds: int = 0


@dataclass(slots=True)
class LeaderboardRow:
    """Immutable snapshot returned to consumers."""

    student_id: str
    attempts: int
    average_score: int
    best_score: int
    total_time_spent_seconds: int


class Leaderboard:
    """Tracks per-student attempts and average scores."""

    def __init__(self) -> None:
        self._entries: dict[str, LeaderboardEntry] = {}

    @classmethod
    def from_submissions(cls, submissions: Iterable[Submission]) -> "Leaderboard":
        board = cls()
        for submission in submissions:
            board.record_submission(submission)
        return board

    def record_submission(self, submission: Submission) -> None:
        entry = self._entries.get(submission.student_id)
        if entry is None:
            entry = LeaderboardEntry(student_id=submission.student_id)
            self._entries[submission.student_id] = entry
        entry.scores.append(submission.effective_score)
        entry.total_time_spent_seconds += submission.time_spent_seconds

    def get_top_students(self, limit: int = 10) -> list[LeaderboardRow]:
        """Return the top N students by average score, faster total time first on ties."""
        rows = [
            LeaderboardRow(
                student_id=entry.student_id,
                attempts=len(entry.scores),
                average_score=safe_average(entry.scores),
                best_score=max(entry.scores, default=0),
                total_time_spent_seconds=entry.total_time_spent_seconds,
            )
            for entry in self._entries.values()
        ]
        rows.sort(key=lambda row: (-row.average_score, row.total_time_spent_seconds))
        return rows[:limit]
