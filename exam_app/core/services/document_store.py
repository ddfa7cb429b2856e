"""In-memory document store standing in for the hosted document database."""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterable
from threading import Lock
from typing import Any
from uuid import uuid4

from exam_app.core.errors import NotFound, PersistenceError

logger = logging.getLogger(__name__)


class DuplicateDocument(PersistenceError):
    """Raised when a create would break a document id or uniqueness constraint."""


class DocumentStore:
    """Collections of JSON-like documents keyed by opaque string ids.

    Documents are copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}

    def get_by_id(self, collection: str, document_id: str) -> dict[str, Any]:
        with self._lock:
            document = self._collection(collection).get(document_id)
            if document is None:
                raise NotFound(f"{collection}/{document_id} does not exist.")
            return copy.deepcopy(document)

    def exists(self, collection: str, document_id: str) -> bool:
        with self._lock:
            return document_id in self._collection(collection)

    def query(self, collection: str, **filters: Any) -> list[tuple[str, dict[str, Any]]]:
        """Return ``(id, document)`` pairs whose fields equal every filter value."""
        with self._lock:
            return [
                (document_id, copy.deepcopy(document))
                for document_id, document in self._collection(collection).items()
                if _matches(document, filters)
            ]

    def create(
        self,
        collection: str,
        document: dict[str, Any],
        document_id: str | None = None,
        unique_on: Iterable[str] = (),
    ) -> str:
        """Insert ``document`` and return its id.

        ``unique_on`` names fields whose combined values must not already
        exist in the collection; the check and the insert happen atomically.
        """
        unique_fields = tuple(unique_on)
        with self._lock:
            documents = self._collection(collection)
            new_id = document_id or uuid4().hex
            if new_id in documents:
                raise DuplicateDocument(f"{collection}/{new_id} already exists.")
            if unique_fields:
                key = {name: document.get(name) for name in unique_fields}
                if any(_matches(existing, key) for existing in documents.values()):
                    raise DuplicateDocument(
                        f"{collection} already holds a document with {key}."
                    )
            documents[new_id] = copy.deepcopy(document)
        logger.debug("Created %s/%s", collection, new_id)
        return new_id

    def update(self, collection: str, document_id: str, partial: dict[str, Any]) -> None:
        with self._lock:
            documents = self._collection(collection)
            if document_id not in documents:
                raise NotFound(f"{collection}/{document_id} does not exist.")
            documents[document_id].update(copy.deepcopy(partial))

    def delete(self, collection: str, document_id: str) -> None:
        with self._lock:
            documents = self._collection(collection)
            if documents.pop(document_id, None) is None:
                raise NotFound(f"{collection}/{document_id} does not exist.")
        logger.debug("Deleted %s/%s", collection, document_id)

    def _collection(self, name: str) -> dict[str, dict[str, Any]]:
        return self._collections.setdefault(name, {})


def _matches(document: dict[str, Any], filters: dict[str, Any]) -> bool:
    return all(document.get(name) == value for name, value in filters.items())
