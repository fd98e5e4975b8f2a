"""Exceptions raised by the quiz session core."""

from __future__ import annotations


class QuizSessionError(Exception):
    """Base class for quiz session errors."""


class QuizNotFoundError(QuizSessionError, LookupError):
    """Raised when a quiz id does not resolve to a stored quiz."""

    def __init__(self, quiz_id: str) -> None:
        super().__init__(f"Quiz '{quiz_id}' was not found.")
        self.quiz_id = quiz_id


class InvalidInputError(QuizSessionError, ValueError):
    """Raised for out-of-range answer or navigation indices."""


class SessionStateError(QuizSessionError, RuntimeError):
    """Raised when an operation is not valid in the current session phase."""


class QuizPreconditionError(QuizSessionError, ValueError):
    """Raised when a quiz cannot be attempted or scored, e.g. it has no questions."""


class PersistenceFailure(QuizSessionError):
    """Primary result write failed. Recorded on the outcome, never shown as fatal."""


class AuxiliaryUpdateFailure(QuizSessionError):
    """A best-effort counter update failed. Logged only."""


class QuizImportError(QuizSessionError):
    """Raised when a quiz definition cannot be parsed."""
