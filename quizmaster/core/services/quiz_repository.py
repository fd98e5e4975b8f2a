"""Storage seam for quizzes, results and play counters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timezone
from threading import Lock
from uuid import uuid4

from quizmaster.core.errors import QuizNotFoundError
from quizmaster.core.models import Quiz, QuizResult


class QuizRepository(ABC):
    """Abstract store used by sessions and the HTTP layer.

    Write methods signal failure by raising; callers decide which failures
    are fatal to them.
    """

    @abstractmethod
    def get_quiz_by_id(self, quiz_id: str) -> Quiz | None:
        """Return the quiz or ``None`` when the id does not resolve."""

    @abstractmethod
    def persist_result(self, result: QuizResult) -> str:
        """Store a result record and return its id."""

    @abstractmethod
    def increment_quiz_play_count(self, quiz_id: str) -> None:
        """Add one to the quiz's ``times_played`` counter."""

    @abstractmethod
    def increment_user_taken_count(self, user_id: str) -> None:
        """Add one to the user's taken-quiz counter."""

    @abstractmethod
    def save_quiz(self, quiz: Quiz) -> Quiz:
        """Insert or replace a quiz definition."""

    @abstractmethod
    def delete_quiz(self, quiz_id: str) -> None:
        """Remove a quiz. Raises QuizNotFoundError when the id does not resolve."""

    @abstractmethod
    def list_quizzes(self) -> list[Quiz]:
        """Return every stored quiz, newest first."""

    @abstractmethod
    def list_quizzes_by_creator(self, creator_id: str) -> list[Quiz]:
        """Return the quizzes a user authored, newest first."""

    @abstractmethod
    def list_results_for_user(self, user_id: str) -> list[QuizResult]:
        """Return a user's results, newest first."""

    @abstractmethod
    def list_results_for_quiz(self, quiz_id: str) -> list[QuizResult]:
        """Return all results recorded for a quiz, newest first."""


class InMemoryQuizRepository(QuizRepository):
    """Process-local repository backing the development server and tests."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._quizzes: dict[str, Quiz] = {}
        self._results: dict[str, QuizResult] = {}
        self._user_taken_counts: defaultdict[str, int] = defaultdict(int)

    def get_quiz_by_id(self, quiz_id: str) -> Quiz | None:
        with self._lock:
            return self._quizzes.get(quiz_id)

    def persist_result(self, result: QuizResult) -> str:
        result_id = uuid4().hex
        with self._lock:
            self._results[result_id] = result
        return result_id

    def increment_quiz_play_count(self, quiz_id: str) -> None:
        with self._lock:
            quiz = self._quizzes.get(quiz_id)
            if quiz is None:
                raise QuizNotFoundError(quiz_id)
            self._quizzes[quiz_id] = replace(quiz, times_played=quiz.times_played + 1)

    def increment_user_taken_count(self, user_id: str) -> None:
        with self._lock:
            self._user_taken_counts[user_id] += 1

    def get_user_taken_count(self, user_id: str) -> int:
        with self._lock:
            return self._user_taken_counts.get(user_id, 0)

    def save_quiz(self, quiz: Quiz) -> Quiz:
        if not quiz.id:
            quiz = replace(quiz, id=uuid4().hex)
        if quiz.created_at is None:
            quiz = replace(quiz, created_at=datetime.now(timezone.utc))
        with self._lock:
            self._quizzes[quiz.id] = quiz
        return quiz

    def delete_quiz(self, quiz_id: str) -> None:
        with self._lock:
            if self._quizzes.pop(quiz_id, None) is None:
                raise QuizNotFoundError(quiz_id)

    def list_quizzes(self) -> list[Quiz]:
        with self._lock:
            quizzes = list(self._quizzes.values())
        return sorted(quizzes, key=_created_at_key, reverse=True)

    def list_quizzes_by_creator(self, creator_id: str) -> list[Quiz]:
        with self._lock:
            quizzes = [q for q in self._quizzes.values() if q.creator_id == creator_id]
        return sorted(quizzes, key=_created_at_key, reverse=True)

    def list_results_for_user(self, user_id: str) -> list[QuizResult]:
        with self._lock:
            results = [r for r in self._results.values() if r.user_id == user_id]
        return sorted(results, key=lambda r: r.submitted_at, reverse=True)

    def list_results_for_quiz(self, quiz_id: str) -> list[QuizResult]:
        with self._lock:
            results = [r for r in self._results.values() if r.quiz_id == quiz_id]
        return sorted(results, key=lambda r: r.submitted_at, reverse=True)


def _created_at_key(quiz: Quiz) -> datetime:
    return quiz.created_at or datetime.min.replace(tzinfo=timezone.utc)
