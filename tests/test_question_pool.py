import pytest

from exam_app.constants.exam_constants import QUESTION_POOL_COLLECTION
from exam_app.core.errors import PermissionDenied, ValidationError
from exam_app.core.models import QuestionPoolEntry
from exam_app.core.services.question_pool import QuestionPool


def _entry(text="What is H2O?", category="", difficulty="", correct=0, options=None):
    return QuestionPoolEntry(
        id="",
        teacher_id="",
        question_text=text,
        options=options if options is not None else ["Water", "Salt"],
        correct_option_index=correct,
        category=category,
        difficulty=difficulty,
    )


@pytest.fixture
def pool(store, now):
    return QuestionPool(store, now=now)


def test_add_entry_applies_defaults(pool, teacher):
    entry = pool.add_entry(teacher, _entry())
    assert entry.id
    assert entry.teacher_id == teacher.user_id
    assert entry.category == "Uncategorized"
    assert entry.difficulty == "Medium"
    assert entry.times_used == 0


def test_students_cannot_use_the_pool(pool, student):
    with pytest.raises(PermissionDenied):
        pool.add_entry(student, _entry())


def test_list_filters_by_category_difficulty_and_search(pool, teacher, other_teacher):
    pool.add_entry(teacher, _entry("Boiling point of water?", category="Chemistry", difficulty="Easy"))
    pool.add_entry(teacher, _entry("Speed of light?", category="Physics", difficulty="Hard"))
    pool.add_entry(teacher, _entry("Water formula?", category="Chemistry", difficulty="Hard"))
    pool.add_entry(other_teacher, _entry("Water in Chemistry?", category="Chemistry"))

    assert len(pool.list_entries(teacher.user_id)) == 3
    assert len(pool.list_entries(teacher.user_id, category="Chemistry")) == 2
    assert len(pool.list_entries(teacher.user_id, category="Chemistry", difficulty="Hard")) == 1
    texts = {e.question_text for e in pool.list_entries(teacher.user_id, search="WATER")}
    assert texts == {"Boiling point of water?", "Water formula?"}


def test_stats(pool, teacher):
    first = pool.add_entry(teacher, _entry(category="Chemistry", difficulty="Easy"))
    pool.add_entry(teacher, _entry(category="Physics", difficulty="Easy"))
    pool.record_usage([first.id, first.id])

    stats = pool.stats(teacher.user_id)
    assert stats.total_questions == 2
    assert stats.categories == ["Chemistry", "Physics"]
    assert stats.difficulty_levels == 1
    assert stats.reused_count == 2


def test_bulk_add_is_all_or_nothing(pool, store, teacher):
    with pytest.raises(ValidationError):
        pool.add_entries(teacher, [_entry(), _entry(options=["only one"])])
    assert store.query(QUESTION_POOL_COLLECTION) == []


def test_update_keeps_usage_and_owner(pool, teacher, other_teacher):
    entry = pool.add_entry(teacher, _entry())
    pool.record_usage([entry.id])

    with pytest.raises(PermissionDenied):
        pool.update_entry(other_teacher, entry.id, _entry("Hijacked"))

    updated = pool.update_entry(teacher, entry.id, _entry("Updated?", category="Chemistry"))
    assert updated.times_used == 1
    assert updated.updated_at is not None
    stored = pool.get_entry(entry.id)
    assert stored.question_text == "Updated?"
    assert stored.teacher_id == teacher.user_id


def test_questions_for_exam_requires_ownership(pool, teacher, other_teacher):
    entry = pool.add_entry(teacher, _entry())
    with pytest.raises(PermissionDenied):
        pool.questions_for_exam(other_teacher, [entry.id])
    [question] = pool.questions_for_exam(teacher, [entry.id])
    assert question.options == ["Water", "Salt"]
    assert pool.get_entry(entry.id).times_used == 0


def test_delete_entry(pool, teacher, other_teacher):
    entry = pool.add_entry(teacher, _entry())
    with pytest.raises(PermissionDenied):
        pool.delete_entry(other_teacher, entry.id)
    pool.delete_entry(teacher, entry.id)
    assert pool.list_entries(teacher.user_id) == []
