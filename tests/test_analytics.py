from datetime import datetime, timezone

import pytest

from exam_app.core.services import analytics
from exam_app.core.services.leaderboard import Leaderboard
from exam_app.core.models import Submission


def _submission(exam, student_id, answers, score, month=3, flagged=(), final_score=None, seconds=60, reviewed=False):
    stamp = datetime(2024, month, 10, tzinfo=timezone.utc)
    return Submission(
        id=f"{student_id}-{month}-{score}",
        exam_id=exam.id,
        student_id=student_id,
        teacher_id=exam.created_by,
        answers=answers,
        score=score,
        earned_points=0,
        total_points=exam.total_points,
        time_spent_seconds=seconds,
        started_at=stamp,
        submitted_at=stamp,
        question_order=list(range(len(exam.questions))),
        flagged_questions=list(flagged),
        final_score=final_score,
        reviewed=reviewed,
    )


@pytest.fixture
def exam(make_exam):
    return make_exam(id="exam-1")


def test_exam_summary_without_submissions_is_all_zero(exam):
    summary = analytics.summarize_exam(exam, [])
    assert (summary.submissions, summary.average_score, summary.pass_rate) == (0, 0, 0)
    assert (summary.highest_score, summary.lowest_score) == (0, 0)


def test_exam_summary_uses_final_scores(exam):
    submissions = [
        _submission(exam, "s1", {}, 40, final_score=90, reviewed=True),
        _submission(exam, "s2", {}, 59),
        _submission(exam, "s3", {}, 60),
    ]
    summary = analytics.summarize_exam(exam, submissions)
    assert summary.submissions == 3
    assert summary.average_score == 70
    assert summary.highest_score == 90
    assert summary.lowest_score == 59
    assert summary.pass_rate == 67
    assert summary.pending_review == 2


def test_student_summary_skips_deleted_exams(exam):
    submissions = [_submission(exam, "s1", {}, 80), _submission(exam, "s1", {}, 50)]
    orphan = _submission(exam, "s1", {}, 100)
    orphan.exam_id = "deleted"
    summary = analytics.summarize_student({exam.id: exam}, [*submissions, orphan])
    assert summary.exams_taken == 2
    assert summary.average_score == 65
    assert summary.passed == 1
    assert summary.pass_rate == 50


def test_student_summary_with_nothing_taken():
    summary = analytics.summarize_student({}, [])
    assert summary.exams_taken == 0
    assert summary.average_score == 0
    assert summary.pass_rate == 0


def test_question_breakdown(exam):
    submissions = [
        _submission(exam, "s1", {0: 1, 1: 1}, 67),
        _submission(exam, "s2", {0: 1, 1: 0}, 17),
        _submission(exam, "s3", {0: 0}, 0),
        _submission(exam, "s4", {0: 1}, 17),
        _submission(exam, "s5", {0: 1}, 17),
    ]
    stats = analytics.question_breakdown(exam, submissions)

    assert stats[0].correct_percentage == 80
    assert stats[0].difficulty == "Easy"
    assert [share.count for share in stats[0].option_distribution] == [1, 4, 0]
    assert stats[1].correct_percentage == 20
    assert stats[1].difficulty == "Hard"
    assert stats[2].correct_percentage == 0
    assert stats[2].total_attempts == 5


def test_question_breakdown_without_submissions(exam):
    stats = analytics.question_breakdown(exam, [])
    assert all(s.correct_percentage == 0 for s in stats)
    assert all(share.percentage == 0 for s in stats for share in s.option_distribution)


@pytest.mark.parametrize("pct, label", [(80, "Easy"), (79, "Medium"), (41, "Medium"), (40, "Hard")])
def test_difficulty_labels(pct, label):
    assert analytics.difficulty_label(pct) == label


def test_flagged_report_finds_most_flagged(exam):
    submissions = [
        _submission(exam, "s1", {}, 0, flagged=[1, 2]),
        _submission(exam, "s2", {}, 0, flagged=[1]),
        _submission(exam, "s3", {}, 0),
    ]
    report = analytics.flagged_question_report({exam.id: exam}, submissions)
    assert report.total_flagged == 3
    assert report.unique_exams == 1
    assert report.average_flags_per_exam == 3
    assert report.most_flagged.question_index == 1
    assert report.most_flagged.student_ids == ["s1", "s2"]
    assert [q.question_index for q in report.exams[0].questions] == [1, 2]


def test_flagged_report_empty():
    report = analytics.flagged_question_report({}, [])
    assert report.total_flagged == 0
    assert report.most_flagged is None
    assert report.average_flags_per_exam == 0


def test_performance_by_category_and_month(exam, make_exam):
    history = make_exam(id="exam-2", category="History", passing_score=50)
    submissions = [
        _submission(exam, "s1", {}, 70, month=1),
        _submission(exam, "s2", {}, 30, month=2),
        _submission(history, "s1", {}, 50, month=2),
    ]
    exams = {exam.id: exam, history.id: history}

    by_category = analytics.performance_by(exams, submissions)
    assert [(g.group, g.submissions, g.average_score, g.pass_rate) for g in by_category] == [
        ("History", 1, 50, 100),
        ("Science", 2, 50, 50),
    ]

    monthly = analytics.monthly_pass_rates(exams, submissions)
    assert [(m.month, m.total, m.passed) for m in monthly] == [("2024-01", 1, 1), ("2024-02", 2, 1)]


def test_leaderboard_orders_by_average_then_time(exam):
    board = Leaderboard.from_submissions(
        [
            _submission(exam, "slow", {}, 90, seconds=500),
            _submission(exam, "fast", {}, 90, seconds=100),
            _submission(exam, "mixed", {}, 100),
            _submission(exam, "mixed", {}, 60, month=4),
        ]
    )
    rows = board.get_top_students(limit=2)
    assert [row.student_id for row in rows] == ["fast", "slow"]
    assert board.get_top_students()[2].attempts == 2
    assert board.get_top_students()[2].best_score == 100


def test_teacher_dashboard_totals(exam):
    submissions = [_submission(exam, "s1", {}, 80), _submission(exam, "s2", {}, 40, reviewed=True)]
    dashboard = analytics.teacher_dashboard([exam], submissions, [])
    assert dashboard.total_exams == 1
    assert dashboard.total_submissions == 2
    assert dashboard.average_score == 60
    assert dashboard.pending_review == 1
    assert dashboard.exams[0].pass_rate == 50


def test_bookmark_report_resolves_questions(exam):
    marked = _submission(exam, "s1", {0: 1, 1: 0}, 80)
    marked.bookmarked_questions = [0, 1, 9]
    failed = _submission(exam, "s1", {}, 40, month=4)
    failed.bookmarked_questions = [2]
    unmarked = _submission(exam, "s1", {}, 100, month=5)
    orphan = _submission(exam, "s1", {}, 100, month=6)
    orphan.exam_id = "deleted"
    orphan.bookmarked_questions = [0]

    report = analytics.bookmark_report({exam.id: exam}, [marked, failed, unmarked, orphan])

    assert report.total_bookmarked == 3
    assert report.completed_exams == 2
    assert report.average_score == 60
    first, second = report.exams
    assert [q.question_index for q in first.questions] == [0, 1]
    assert [q.points_awarded for q in first.questions] == [1, 0]
    assert first.questions[1].selected_option_index == 0
    assert first.passed and not second.passed


def test_bookmark_report_filters_on_title(exam):
    marked = _submission(exam, "s1", {}, 80)
    marked.bookmarked_questions = [0]
    assert analytics.bookmark_report({exam.id: exam}, [marked], search="GENERAL").completed_exams == 1

    report = analytics.bookmark_report({exam.id: exam}, [marked], search="history")
    assert report.exams == []
    assert report.average_score == 0
