"""Exception taxonomy shared by the core services and the HTTP layer."""

from __future__ import annotations


class ExamAppError(Exception):
    """Base class for every error the exam service reports to callers."""


class NotFound(ExamAppError):
    """Raised when a referenced document does not exist."""


class NotPublished(ExamAppError):
    """Raised when an exam is not available to students."""


class AlreadyAttempted(ExamAppError):
    """Raised when a student retakes an exam that disallows reattempts."""


class ValidationError(ExamAppError):
    """Raised when authored content violates an exam or question invariant."""


class ImportFormatError(ValidationError):
    """Raised when an import file cannot be parsed."""


class PersistenceError(ExamAppError):
    """Raised when the document store fails to read or write."""


class AuthRequired(ExamAppError):
    """Raised when an operation needs a signed-in principal and none is present."""


class PermissionDenied(ExamAppError):
    """Raised when the principal lacks the role or ownership an operation needs."""


class InvalidAttemptState(ExamAppError):
    """Raised when an attempt operation is not allowed in the current state."""
