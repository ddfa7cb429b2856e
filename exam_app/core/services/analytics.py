"""Dashboard aggregation over already-filtered exams and submissions.

Callers query the store for the relevant working set (by teacher, student or
exam) and pass it in; nothing here reads the store. Every mean and rate
guards an empty denominator and reports 0.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from exam_app.constants.exam_constants import EASY_CORRECT_PERCENT, HARD_CORRECT_PERCENT
from exam_app.core.models import Exam, Submission
from exam_app.core.scoring import is_passing, percentage, safe_average
from exam_app.core.services.leaderboard import LeaderboardRow


@dataclass(slots=True)
class ExamSummary:
    exam_id: str
    title: str
    submissions: int
    average_score: int
    highest_score: int
    lowest_score: int
    pass_rate: int
    pending_review: int


@dataclass(slots=True)
class StudentSummary:
    exams_taken: int
    average_score: int
    highest_score: int
    lowest_score: int
    passed: int
    pass_rate: int


@dataclass(slots=True)
class OptionShare:
    option_index: int
    count: int
    percentage: int


@dataclass(slots=True)
class QuestionStats:
    question_index: int
    question_text: str
    total_attempts: int
    correct_percentage: int
    difficulty: str
    option_distribution: list[OptionShare]


@dataclass(slots=True)
class FlaggedQuestion:
    exam_id: str
    exam_title: str
    question_index: int
    question_text: str
    flag_count: int = 0
    student_ids: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ExamFlags:
    exam_id: str
    exam_title: str
    total_flags: int
    questions: list[FlaggedQuestion]


@dataclass(slots=True)
class FlaggedReport:
    total_flagged: int
    unique_exams: int
    average_flags_per_exam: int
    most_flagged: FlaggedQuestion | None
    exams: list[ExamFlags]


@dataclass(slots=True)
class GroupPerformance:
    group: str
    submissions: int
    average_score: int
    pass_rate: int


@dataclass(slots=True)
class MonthlyPassRate:
    month: str
    total: int
    passed: int
    pass_rate: int


def summarize_exam(exam: Exam, submissions: Sequence[Submission]) -> ExamSummary:
    scores = [submission.effective_score for submission in submissions]
    passed = sum(1 for score in scores if is_passing(score, exam.passing_score))
    return ExamSummary(
        exam_id=exam.id,
        title=exam.title,
        submissions=len(scores),
        average_score=safe_average(scores),
        highest_score=max(scores, default=0),
        lowest_score=min(scores, default=0),
        pass_rate=percentage(passed, len(scores)),
        pending_review=sum(1 for submission in submissions if not submission.reviewed),
    )


def summarize_teacher(exams: Iterable[Exam], submissions: Sequence[Submission]) -> list[ExamSummary]:
    by_exam = _group_by_exam(submissions)
    return [summarize_exam(exam, by_exam.get(exam.id, [])) for exam in exams]


def summarize_student(exams: Mapping[str, Exam], submissions: Sequence[Submission]) -> StudentSummary:
    """Summarize a student's results; submissions whose exam is gone are skipped."""
    results = [(exams[s.exam_id], s) for s in submissions if s.exam_id in exams]
    scores = [submission.effective_score for _, submission in results]
    passed = sum(
        1 for exam, submission in results if is_passing(submission.effective_score, exam.passing_score)
    )
    return StudentSummary(
        exams_taken=len(results),
        average_score=safe_average(scores),
        highest_score=max(scores, default=0),
        lowest_score=min(scores, default=0),
        passed=passed,
        pass_rate=percentage(passed, len(results)),
    )


def question_breakdown(exam: Exam, submissions: Sequence[Submission]) -> list[QuestionStats]:
    stats: list[QuestionStats] = []
    attempts = len(submissions)
    for index, question in enumerate(exam.questions):
        counts = [0] * len(question.options)
        correct = 0
        for submission in submissions:
            selected = submission.answers.get(index)
            if selected is None:
                continue
            if 0 <= selected < len(counts):
                counts[selected] += 1
            if selected == question.correct_option_index:
                correct += 1
        correct_percentage = percentage(correct, attempts)
        stats.append(
            QuestionStats(
                question_index=index,
                question_text=question.question_text,
                total_attempts=attempts,
                correct_percentage=correct_percentage,
                difficulty=difficulty_label(correct_percentage),
                option_distribution=[
                    OptionShare(option_index=i, count=count, percentage=percentage(count, attempts))
                    for i, count in enumerate(counts)
                ],
            )
        )
    return stats


def difficulty_label(correct_percentage: int) -> str:
    if correct_percentage >= EASY_CORRECT_PERCENT:
        return "Easy"
    if correct_percentage <= HARD_CORRECT_PERCENT:
        return "Hard"
    return "Medium"


def flagged_question_report(exams: Mapping[str, Exam], submissions: Sequence[Submission]) -> FlaggedReport:
    per_exam: dict[str, dict[int, FlaggedQuestion]] = {}
    most_flagged: FlaggedQuestion | None = None
    total_flagged = 0

    for submission in submissions:
        exam = exams.get(submission.exam_id)
        if exam is None or not submission.flagged_questions:
            continue
        questions = per_exam.setdefault(exam.id, {})
        for index in submission.flagged_questions:
            if not 0 <= index < len(exam.questions):
                continue
            flagged = questions.get(index)
            if flagged is None:
                flagged = FlaggedQuestion(
                    exam_id=exam.id,
                    exam_title=exam.title,
                    question_index=index,
                    question_text=exam.questions[index].question_text,
                )
                questions[index] = flagged
            flagged.flag_count += 1
            flagged.student_ids.append(submission.student_id)
            total_flagged += 1
            if most_flagged is None or flagged.flag_count > most_flagged.flag_count:
                most_flagged = flagged

    exam_flags = [
        ExamFlags(
            exam_id=exam_id,
            exam_title=exams[exam_id].title,
            total_flags=sum(q.flag_count for q in questions.values()),
            questions=sorted(questions.values(), key=lambda q: -q.flag_count),
        )
        for exam_id, questions in per_exam.items()
    ]
    exam_flags.sort(key=lambda entry: -entry.total_flags)
    return FlaggedReport(
        total_flagged=total_flagged,
        unique_exams=len(exam_flags),
        average_flags_per_exam=safe_average([entry.total_flags for entry in exam_flags]),
        most_flagged=most_flagged,
        exams=exam_flags,
    )


def performance_by(
    exams: Mapping[str, Exam],
    submissions: Sequence[Submission],
    attribute: str = "category",
) -> list[GroupPerformance]:
    """Group results by an exam attribute such as ``category`` or ``difficulty``."""
    grouped: dict[str, list[tuple[Exam, Submission]]] = defaultdict(list)
    for submission in submissions:
        exam = exams.get(submission.exam_id)
        if exam is None:
            continue
        group = getattr(exam, attribute) or "Uncategorized"
        grouped[group].append((exam, submission))

    performance = []
    for group, results in sorted(grouped.items()):
        scores = [submission.effective_score for _, submission in results]
        passed = sum(
            1 for exam, submission in results if is_passing(submission.effective_score, exam.passing_score)
        )
        performance.append(
            GroupPerformance(
                group=group,
                submissions=len(results),
                average_score=safe_average(scores),
                pass_rate=percentage(passed, len(results)),
            )
        )
    return performance


def monthly_pass_rates(exams: Mapping[str, Exam], submissions: Sequence[Submission]) -> list[MonthlyPassRate]:
    buckets: dict[str, list[int]] = defaultdict(lambda: [0, 0])
    for submission in submissions:
        exam = exams.get(submission.exam_id)
        if exam is None:
            continue
        bucket = buckets[submission.submitted_at.strftime("%Y-%m")]
        bucket[0] += 1
        if is_passing(submission.effective_score, exam.passing_score):
            bucket[1] += 1
    return [
        MonthlyPassRate(month=month, total=total, passed=passed, pass_rate=percentage(passed, total))
        for month, (total, passed) in sorted(buckets.items())
    ]


def _group_by_exam(submissions: Iterable[Submission]) -> dict[str, list[Submission]]:
    grouped: dict[str, list[Submission]] = defaultdict(list)
    for submission in submissions:
        grouped[submission.exam_id].append(submission)
    return grouped


@dataclass(slots=True)
class TeacherDashboard:
    total_exams: int
    total_submissions: int
    average_score: int
    pending_review: int
    exams: list[ExamSummary]
    by_category: list[GroupPerformance]
    monthly: list[MonthlyPassRate]
    leaderboard: list[LeaderboardRow]


@dataclass(slots=True)
class StudentDashboard:
    summary: StudentSummary
    by_category: list[GroupPerformance]
    by_difficulty: list[GroupPerformance]
    monthly: list[MonthlyPassRate]


def teacher_dashboard(
    exams: Sequence[Exam],
    submissions: Sequence[Submission],
    leaderboard: list[LeaderboardRow],
) -> TeacherDashboard:
    exams_by_id = {exam.id: exam for exam in exams}
    return TeacherDashboard(
        total_exams=len(exams),
        total_submissions=len(submissions),
        average_score=safe_average([submission.effective_score for submission in submissions]),
        pending_review=sum(1 for submission in submissions if not submission.reviewed),
        exams=summarize_teacher(exams, submissions),
        by_category=performance_by(exams_by_id, submissions, "category"),
        monthly=monthly_pass_rates(exams_by_id, submissions),
        leaderboard=leaderboard,
    )


def student_dashboard(exams: Mapping[str, Exam], submissions: Sequence[Submission]) -> StudentDashboard:
    return StudentDashboard(
        summary=summarize_student(exams, submissions),
        by_category=performance_by(exams, submissions, "category"),
        by_difficulty=performance_by(exams, submissions, "difficulty"),
        monthly=monthly_pass_rates(exams, submissions),
    )


@dataclass(slots=True)
class BookmarkedQuestion:
    question_index: int
    question_text: str
    image_url: str
    options: list[str]
    correct_option_index: int
    selected_option_index: int | None
    points_awarded: int


@dataclass(slots=True)
class BookmarkedExam:
    submission_id: str
    exam_id: str
    exam_title: str
    submitted_at: datetime
    score: int
    passed: bool
    questions: list[BookmarkedQuestion]


@dataclass(slots=True)
class BookmarkReport:
    total_bookmarked: int
    completed_exams: int
    average_score: int
    exams: list[BookmarkedExam]


def bookmark_report(
    exams: Mapping[str, Exam],
    submissions: Sequence[Submission],
    search: str = "",
) -> BookmarkReport:
    """A student's bookmarked questions, grouped by the submission they were marked in.

    ``search`` filters on exam title, case-insensitively. Submissions whose exam
    was deleted are left out.
    """
    needle = search.strip().lower()
    entries: list[BookmarkedExam] = []
    for submission in submissions:
        exam = exams.get(submission.exam_id)
        if exam is None or not submission.bookmarked_questions:
            continue
        if needle and needle not in exam.title.lower():
            continue
        questions = []
        for index in submission.bookmarked_questions:
            if not 0 <= index < len(exam.questions):
                continue
            question = exam.questions[index]
            selected = submission.answers.get(index)
            questions.append(
                BookmarkedQuestion(
                    question_index=index,
                    question_text=question.question_text,
                    image_url=question.image_url,
                    options=list(question.options),
                    correct_option_index=question.correct_option_index,
                    selected_option_index=selected,
                    points_awarded=question.points if selected == question.correct_option_index else 0,
                )
            )
        entries.append(
            BookmarkedExam(
                submission_id=submission.id,
                exam_id=exam.id,
                exam_title=exam.title,
                submitted_at=submission.submitted_at,
                score=submission.effective_score,
                passed=is_passing(submission.effective_score, exam.passing_score),
                questions=questions,
            )
        )

    return BookmarkReport(
        total_bookmarked=sum(len(entry.questions) for entry in entries),
        completed_exams=len(entries),
        average_score=safe_average([entry.score for entry in entries]),
        exams=entries,
    )
