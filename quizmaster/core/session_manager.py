"""Registry of live quiz sessions shared by the HTTP workers."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime
import logging
from threading import Lock
from typing import Any
from uuid import uuid4

from quizmaster.constants.session_constants import (
    COMPLETED_SESSION_RETENTION_SECONDS,
    IDLE_SESSION_TIMEOUT_SECONDS,
)
from quizmaster.core.errors import QuizNotFoundError, SessionStateError
from quizmaster.core.models import Quiz, QuizResult, SessionEvent, SessionEventKind, SessionPhase
from quizmaster.core.quiz_importer import parse_quiz
from quizmaster.core.services.quiz_repository import QuizRepository
from quizmaster.core.services.result_persister import ResultPersister
from quizmaster.core.services.session_controller import SessionController
from quizmaster.core.services.timer import Clock, SystemClock, ThreadingTimer, Timer

logger = logging.getLogger(__name__)


class SessionNotFoundError(SessionStateError, LookupError):
    """Raised when a session id is unknown or has been closed."""


@dataclass(slots=True)
class _SessionEntry:
    controller: SessionController
    opened_at: datetime
    completed_at: datetime | None = None


class SessionManager:
    """Facade over the repository and the controllers of in-flight attempts.

    A session lives for one attempt. Sessions still on the start screen are
    evicted after ``idle_timeout_seconds``; completed ones stay readable for
    ``completed_retention_seconds`` and are then evicted. Their results remain
    available through the repository. Eviction runs whenever a session is
    opened or looked up.
    """

    def __init__(
        self,
        repository: QuizRepository,
        timer_factory: Callable[[], Timer] = ThreadingTimer,
        clock: Clock | None = None,
        idle_timeout_seconds: float = IDLE_SESSION_TIMEOUT_SECONDS,
        completed_retention_seconds: float = COMPLETED_SESSION_RETENTION_SECONDS,
    ) -> None:
        self._lock = Lock()
        self._repository = repository
        self._persister = ResultPersister(repository)
        self._timer_factory = timer_factory
        self._clock = clock or SystemClock()
        self._idle_timeout_seconds = idle_timeout_seconds
        self._completed_retention_seconds = completed_retention_seconds
        self._sessions: dict[str, _SessionEntry] = {}

    # --- Repository delegation ---

    def list_quizzes(self) -> list[Quiz]:
        return self._repository.list_quizzes()

    def list_quizzes_by_creator(self, creator_id: str) -> list[Quiz]:
        return self._repository.list_quizzes_by_creator(creator_id)

    def get_quiz(self, quiz_id: str) -> Quiz | None:
        return self._repository.get_quiz_by_id(quiz_id)

    def list_results_for_user(self, user_id: str) -> list[QuizResult]:
        return self._repository.list_results_for_user(user_id)

    def list_results_for_quiz(self, quiz_id: str) -> list[QuizResult]:
        return self._repository.list_results_for_quiz(quiz_id)

    # --- Authoring ---

    def create_quiz(
        self,
        document: dict[str, Any],
        creator_id: str | None = None,
        creator_name: str | None = None,
    ) -> Quiz:
        """Validate a quiz document and store it as a new quiz. Raises QuizImportError."""
        quiz = replace(
            parse_quiz(document),
            id="",
            creator_id=creator_id,
            creator_name=creator_name,
            times_played=0,
            created_at=None,
        )
        saved = self._repository.save_quiz(quiz)
        logger.info("Created quiz %s (%s) for creator %s", saved.id, saved.title, creator_id)
        return saved

    def update_quiz(self, quiz_id: str, document: dict[str, Any]) -> Quiz:
        """Replace a quiz's content, keeping its id, creator, play count and creation time."""
        existing = self._repository.get_quiz_by_id(quiz_id)
        if existing is None:
            raise QuizNotFoundError(quiz_id)
        quiz = replace(
            parse_quiz(document),
            id=existing.id,
            creator_id=existing.creator_id,
            creator_name=existing.creator_name,
            times_played=existing.times_played,
            created_at=existing.created_at,
        )
        saved = self._repository.save_quiz(quiz)
        logger.info("Updated quiz %s", quiz_id)
        return saved

    def delete_quiz(self, quiz_id: str) -> None:
        """Remove a quiz. Sessions already running on it keep their loaded copy."""
        self._repository.delete_quiz(quiz_id)
        logger.info("Deleted quiz %s", quiz_id)

    # --- Sessions ---

    def open_session(
        self,
        quiz_id: str,
        user_id: str | None = None,
        user_name: str | None = None,
    ) -> tuple[str, SessionController]:
        """Create a session on the start screen. Raises QuizNotFoundError."""
        self.evict_stale_sessions()
        controller = SessionController(
            quiz_id,
            repository=self._repository,
            timer=self._timer_factory(),
            clock=self._clock,
            persister=self._persister,
            user_id=user_id,
            user_name=user_name,
        )
        controller.load()
        session_id = uuid4().hex
        entry = _SessionEntry(controller=controller, opened_at=self._clock.now())
        with self._lock:
            self._sessions[session_id] = entry
        controller.subscribe(lambda event: self._on_session_event(entry, event))
        logger.debug("Opened session %s for quiz %s", session_id, quiz_id)
        return session_id, controller

    def get_session(self, session_id: str) -> SessionController:
        self.evict_stale_sessions()
        with self._lock:
            entry = self._sessions.get(session_id)
        if entry is None:
            raise SessionNotFoundError(f"Session '{session_id}' does not exist.")
        return entry.controller

    def close_session(self, session_id: str) -> None:
        with self._lock:
            entry = self._sessions.pop(session_id, None)
        if entry is None:
            raise SessionNotFoundError(f"Session '{session_id}' does not exist.")
        entry.controller.close()

    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def evict_stale_sessions(self) -> int:
        """Close and forget idle unstarted sessions and expired completed ones."""
        now = self._clock.now()
        with self._lock:
            entries = list(self._sessions.items())

        stale = [
            session_id
            for session_id, entry in entries
            if self._is_stale(entry, now)
        ]
        if not stale:
            return 0

        with self._lock:
            evicted = [self._sessions.pop(session_id, None) for session_id in stale]
        evicted = [entry for entry in evicted if entry is not None]
        for entry in evicted:
            entry.controller.close()
        logger.debug("Evicted %d stale session(s)", len(evicted))
        return len(evicted)

    def shutdown(self) -> None:
        """Close every open session, releasing their timers."""
        with self._lock:
            entries = list(self._sessions.values())
            self._sessions.clear()
        for entry in entries:
            entry.controller.close()

    def _on_session_event(self, entry: _SessionEntry, event: SessionEvent) -> None:
        if event.kind is SessionEventKind.COMPLETED:
            completed_at = self._clock.now()
            with self._lock:
                entry.completed_at = completed_at

    def _is_stale(self, entry: _SessionEntry, now: datetime) -> bool:
        snapshot = entry.controller.snapshot()
        if snapshot.closed:
            return True
        if snapshot.phase is SessionPhase.NOT_STARTED:
            idle = (now - entry.opened_at).total_seconds()
            return idle >= self._idle_timeout_seconds
        if snapshot.phase is SessionPhase.COMPLETED:
            with self._lock:
                completed_at = entry.completed_at
            if completed_at is None:
                return False
            return (now - completed_at).total_seconds() >= self._completed_retention_seconds
        return False
