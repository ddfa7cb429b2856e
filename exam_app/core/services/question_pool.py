"""Service for a teacher's reusable question pool."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import datetime, timezone
import logging

from exam_app.constants.exam_constants import (
    DEFAULT_CATEGORY,
    DEFAULT_DIFFICULTY,
    QUESTION_POOL_COLLECTION,
)
from exam_app.core.models import Principal, Question, QuestionPoolEntry, Role
from exam_app.core.permissions import require_owner, require_role
from exam_app.core.services.document_store import DocumentStore
from exam_app.core.services.exam_repository import validate_question

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PoolStats:
    total_questions: int
    categories: list[str]
    difficulty_levels: int
    reused_count: int


class QuestionPool:
    """Stores pool entries and tracks how often each one is reused."""

    def __init__(
        self,
        store: DocumentStore,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._now = now or (lambda: datetime.now(timezone.utc))

    def add_entry(self, principal: Principal | None, entry: QuestionPoolEntry) -> QuestionPoolEntry:
        teacher = require_role(principal, Role.TEACHER)
        prepared = self._prepare_entry(entry)
        prepared = replace(
            prepared,
            teacher_id=teacher.user_id,
            times_used=0,
            created_at=self._now(),
            updated_at=None,
        )
        entry_id = self._store.create(QUESTION_POOL_COLLECTION, prepared.to_document())
        return replace(prepared, id=entry_id)

    def add_entries(
        self, principal: Principal | None, entries: Iterable[QuestionPoolEntry]
    ) -> list[QuestionPoolEntry]:
        """Validate every entry first so a bad row never leaves a partial import."""
        require_role(principal, Role.TEACHER)
        prepared = [self._prepare_entry(entry) for entry in entries]
        created = [self.add_entry(principal, entry) for entry in prepared]
        logger.info("Imported %d questions into the pool", len(created))
        return created

    def get_entry(self, entry_id: str) -> QuestionPoolEntry:
        document = self._store.get_by_id(QUESTION_POOL_COLLECTION, entry_id)
        return QuestionPoolEntry.from_document(entry_id, document)

    def update_entry(
        self, principal: Principal | None, entry_id: str, entry: QuestionPoolEntry
    ) -> QuestionPoolEntry:
        existing = self.get_entry(entry_id)
        require_owner(principal, existing.teacher_id)
        prepared = self._prepare_entry(entry)
        updated = replace(
            prepared,
            id=entry_id,
            teacher_id=existing.teacher_id,
            times_used=existing.times_used,
            created_at=existing.created_at,
            updated_at=self._now(),
        )
        self._store.update(QUESTION_POOL_COLLECTION, entry_id, updated.to_document())
        return updated

    def delete_entry(self, principal: Principal | None, entry_id: str) -> None:
        existing = self.get_entry(entry_id)
        require_owner(principal, existing.teacher_id)
        self._store.delete(QUESTION_POOL_COLLECTION, entry_id)

    def list_entries(
        self,
        teacher_id: str,
        category: str | None = None,
        difficulty: str | None = None,
        search: str | None = None,
    ) -> list[QuestionPoolEntry]:
        filters: dict[str, str] = {"teacher_id": teacher_id}
        if category:
            filters["category"] = category
        if difficulty:
            filters["difficulty"] = difficulty
        rows = self._store.query(QUESTION_POOL_COLLECTION, **filters)
        entries = [QuestionPoolEntry.from_document(doc_id, doc) for doc_id, doc in rows]
        if search:
            needle = search.lower()
            entries = [entry for entry in entries if needle in entry.question_text.lower()]
        return entries

    def stats(self, teacher_id: str) -> PoolStats:
        entries = self.list_entries(teacher_id)
        return PoolStats(
            total_questions=len(entries),
            categories=sorted({entry.category for entry in entries if entry.category}),
            difficulty_levels=len({entry.difficulty for entry in entries}),
            reused_count=sum(entry.times_used for entry in entries),
        )

    def questions_for_exam(self, principal: Principal | None, entry_ids: Iterable[str]) -> list[Question]:
        """Resolve pool entries into exam questions without touching usage counters."""
        questions: list[Question] = []
        for entry_id in entry_ids:
            entry = self.get_entry(entry_id)
            require_owner(principal, entry.teacher_id)
            questions.append(entry.as_question())
        return questions

    def record_usage(self, entry_ids: Iterable[str]) -> None:
        for entry_id in entry_ids:
            entry = self.get_entry(entry_id)
            self._store.update(
                QUESTION_POOL_COLLECTION, entry_id, {"times_used": entry.times_used + 1}
            )

    @staticmethod
    def _prepare_entry(entry: QuestionPoolEntry) -> QuestionPoolEntry:
        question = validate_question(entry.as_question())
        return replace(
            entry,
            question_text=question.question_text,
            options=question.options,
            explanation=question.explanation,
            category=(entry.category or "").strip() or DEFAULT_CATEGORY,
            difficulty=(entry.difficulty or "").strip() or DEFAULT_DIFFICULTY,
        )
