"""State machine for one timed quiz attempt."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
import logging
from threading import Event, Lock, get_ident
from typing import Any

from quizmaster.constants.session_constants import SECONDS_PER_MINUTE, TICK_INTERVAL_SECONDS
from quizmaster.core.errors import (
    InvalidInputError,
    QuizNotFoundError,
    QuizPreconditionError,
    SessionStateError,
)
from quizmaster.core.models import (
    PersistOutcome,
    Quiz,
    QuizResult,
    SessionEvent,
    SessionEventKind,
    SessionPhase,
    SessionSnapshot,
)
from quizmaster.core.scorer import score
from quizmaster.core.services.quiz_repository import QuizRepository
from quizmaster.core.services.result_persister import ResultPersister
from quizmaster.core.services.timer import Clock, SystemClock, Timer

logger = logging.getLogger(__name__)

SessionListener = Callable[[SessionEvent], None]


class SessionController:
    """Owns the lifecycle of a single attempt at a quiz.

    Phases move NOT_STARTED -> IN_PROGRESS -> SUBMITTING -> COMPLETED. Two
    triggers race on submission: the user and timer expiry. Whichever reaches
    ``submit()`` first while IN_PROGRESS scores and persists the attempt; any
    other caller blocks until that result exists and gets the same object.

    All state sits behind one lock. Persistence and listener callbacks run
    outside it, so listeners may read ``snapshot()`` but must not call
    ``submit()`` while handling the SUBMITTING event.
    """

    def __init__(
        self,
        quiz_id: str,
        repository: QuizRepository,
        timer: Timer,
        clock: Clock | None = None,
        persister: ResultPersister | None = None,
        user_id: str | None = None,
        user_name: str | None = None,
        tick_interval_seconds: float = TICK_INTERVAL_SECONDS,
    ) -> None:
        self._lock = Lock()
        self._quiz_id = quiz_id
        self._repository = repository
        self._timer = timer
        self._clock = clock or SystemClock()
        self._persister = persister or ResultPersister(repository)
        self._user_id = user_id
        self._user_name = user_name
        self._tick_interval_seconds = tick_interval_seconds

        self._quiz: Quiz | None = None
        self._phase = SessionPhase.NOT_STARTED
        self._current_question_index: int = 0
        self._answers: dict[int, int] = {}
        self._remaining_seconds: int = 0
        self._started_at: datetime | None = None
        self._result: QuizResult | None = None
        self._persist_outcome: PersistOutcome | None = None
        self._result_ready = Event()
        self._submitting_thread: int | None = None
        self._timer_handle: Any = None
        self._closed = False
        self._listeners: list[SessionListener] = []

    @property
    def quiz_id(self) -> str:
        return self._quiz_id

    @property
    def user_id(self) -> str | None:
        return self._user_id

    # --- Observation ---

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return self._snapshot_locked()

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register ``listener`` for every state change; returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    @property
    def result(self) -> QuizResult | None:
        with self._lock:
            return self._result

    # --- Lifecycle ---

    def load(self) -> Quiz:
        """Fetch the quiz for the start screen. Raises QuizNotFoundError."""
        with self._lock:
            self._ensure_open()
            if self._quiz is not None:
                return self._quiz

        quiz = self._repository.get_quiz_by_id(self._quiz_id)
        if quiz is None:
            logger.info("Quiz %s not found; session stays unstarted", self._quiz_id)
            raise QuizNotFoundError(self._quiz_id)

        with self._lock:
            if self._quiz is None:
                self._quiz = quiz
            quiz = self._quiz
            snapshot = self._snapshot_locked()
        self._notify(SessionEventKind.LOADED, snapshot)
        return quiz

    def start(self) -> SessionSnapshot:
        quiz = self.load()
        if not quiz.questions:
            raise QuizPreconditionError(f"Quiz '{quiz.id}' has no questions.")

        with self._lock:
            self._ensure_open()
            if self._phase is not SessionPhase.NOT_STARTED:
                raise SessionStateError(f"Cannot start a session that is {self._phase.value}.")
            self._phase = SessionPhase.IN_PROGRESS
            self._current_question_index = 0
            self._answers = {}
            self._remaining_seconds = quiz.time_limit_minutes * SECONDS_PER_MINUTE
            self._started_at = self._clock.now()
            self._timer_handle = self._timer.start(self._tick_interval_seconds, self.tick)
            snapshot = self._snapshot_locked()

        logger.info(
            "Started quiz %s for user %s with %s seconds on the clock",
            quiz.id,
            self._user_id,
            snapshot.remaining_seconds,
        )
        self._notify(SessionEventKind.STARTED, snapshot)
        return snapshot

    def close(self) -> None:
        """Tear the session down. An unfinished attempt is discarded unscored."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            handle = self._timer_handle
            self._timer_handle = None
            snapshot = self._snapshot_locked()

        if handle is not None:
            self._timer.cancel(handle)
        if snapshot.phase is SessionPhase.IN_PROGRESS:
            logger.info("Discarded unfinished attempt at quiz %s", self._quiz_id)
        self._notify(SessionEventKind.CLOSED, snapshot)
        with self._lock:
            self._listeners.clear()

    # --- Answering and navigation ---

    def select_answer(self, option_index: int) -> SessionSnapshot:
        with self._lock:
            quiz = self._require_in_progress("select an answer")
            question = quiz.questions[self._current_question_index]
            if not 0 <= option_index < len(question.options):
                raise InvalidInputError(
                    f"Option index {option_index} out of range for question "
                    f"{self._current_question_index + 1}."
                )
            self._answers[self._current_question_index] = option_index
            snapshot = self._snapshot_locked()
        self._notify(SessionEventKind.ANSWER_SELECTED, snapshot)
        return snapshot

    def go_to_question(self, index: int) -> SessionSnapshot:
        with self._lock:
            quiz = self._require_in_progress("navigate")
            if not 0 <= index < len(quiz.questions):
                raise InvalidInputError(f"Question index {index} out of range")
            self._current_question_index = index
            snapshot = self._snapshot_locked()
        self._notify(SessionEventKind.NAVIGATED, snapshot)
        return snapshot

    def next_question(self) -> SessionSnapshot:
        return self._step(1)

    def previous_question(self) -> SessionSnapshot:
        return self._step(-1)

    def _step(self, delta: int) -> SessionSnapshot:
        with self._lock:
            quiz = self._require_in_progress("navigate")
            target = self._current_question_index + delta
            if not 0 <= target < len(quiz.questions):
                return self._snapshot_locked()
            self._current_question_index = target
            snapshot = self._snapshot_locked()
        self._notify(SessionEventKind.NAVIGATED, snapshot)
        return snapshot

    # --- Timer ---

    def tick(self) -> None:
        """Count one elapsed second; submits automatically when time runs out."""
        with self._lock:
            if self._closed or self._phase is not SessionPhase.IN_PROGRESS:
                return
            self._remaining_seconds = max(0, self._remaining_seconds - 1)
            expired = self._remaining_seconds == 0
            snapshot = self._snapshot_locked()

        self._notify(SessionEventKind.TICKED, snapshot)
        if expired:
            logger.info("Time expired on quiz %s; submitting automatically", self._quiz_id)
            self._submit(raise_if_closed=False)

    # --- Submission ---

    def submit(self) -> QuizResult:
        """Score and persist the attempt exactly once; later calls get the same result."""
        result = self._submit(raise_if_closed=True)
        if result is None:
            raise SessionStateError("Submission failed; the attempt is still open.")
        return result

    def _submit(self, raise_if_closed: bool) -> QuizResult | None:
        with self._lock:
            phase = self._phase
            ready = self._result_ready
            if phase is SessionPhase.NOT_STARTED:
                raise SessionStateError("Cannot submit a session that has not started.")
            if phase is SessionPhase.IN_PROGRESS:
                if self._closed:
                    if raise_if_closed:
                        raise SessionStateError("Session has been closed.")
                    return None
                quiz = self._quiz
                answers = dict(self._answers)
                remaining = self._remaining_seconds
                handle = self._timer_handle
                self._timer_handle = None
                self._phase = SessionPhase.SUBMITTING
                self._submitting_thread = get_ident()
                snapshot = self._snapshot_locked()
            elif self._submitting_thread == get_ident() and not ready.is_set():
                raise SessionStateError("submit() re-entered while this thread is submitting.")

        if phase is not SessionPhase.IN_PROGRESS:
            # None here means the submission in flight failed and was rolled back
            ready.wait()
            with self._lock:
                return self._result

        cancelled = False
        try:
            if handle is not None:
                self._timer.cancel(handle)
                cancelled = True
            self._notify(SessionEventKind.SUBMITTING, snapshot)
            result = score(
                quiz,
                answers,
                time_taken_seconds=quiz.time_limit_minutes * SECONDS_PER_MINUTE - remaining,
                submitted_at=self._clock.now(),
                user_id=self._user_id,
                user_name=self._user_name,
            )
        except Exception:
            logger.exception("Submitting quiz %s failed; the attempt stays open", quiz.id)
            self._reopen_after_failed_submit(handle, cancelled, ready)
            raise

        try:
            outcome = self._persister.persist(quiz.id, result)
        except Exception as exc:
            logger.exception("Persisting result for quiz %s failed unexpectedly", quiz.id)
            outcome = PersistOutcome(stored=False, error=str(exc))

        try:
            with self._lock:
                self._result = result
                self._persist_outcome = outcome
                self._phase = SessionPhase.COMPLETED
                self._submitting_thread = None
                snapshot = self._snapshot_locked()
        finally:
            ready.set()

        logger.info(
            "Completed quiz %s: %s/%s (%s%%), stored=%s",
            quiz.id,
            result.score,
            result.total_questions,
            result.percentage,
            outcome.stored,
        )
        self._notify(SessionEventKind.COMPLETED, snapshot)
        return result

    def _reopen_after_failed_submit(self, handle: Any, cancelled: bool, ready: Event) -> None:
        """Return to IN_PROGRESS so the attempt can be submitted again, and wake waiters."""
        try:
            with self._lock:
                self._phase = SessionPhase.IN_PROGRESS
                self._submitting_thread = None
                self._result_ready = Event()
                if handle is not None and not cancelled:
                    self._timer_handle = handle
                elif handle is not None and not self._closed:
                    self._timer_handle = self._timer.start(self._tick_interval_seconds, self.tick)
        finally:
            ready.set()

    # --- Internals ---

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionStateError("Session has been closed.")

    def _require_in_progress(self, action: str) -> Quiz:
        self._ensure_open()
        if self._phase is not SessionPhase.IN_PROGRESS or self._quiz is None:
            raise SessionStateError(f"Cannot {action} while the session is {self._phase.value}.")
        return self._quiz

    def _snapshot_locked(self) -> SessionSnapshot:
        return SessionSnapshot(
            quiz=self._quiz,
            phase=self._phase,
            current_question_index=self._current_question_index,
            answers=dict(self._answers),
            remaining_seconds=self._remaining_seconds,
            started_at=self._started_at,
            result=self._result,
            persist_outcome=self._persist_outcome,
            closed=self._closed,
        )

    def _notify(self, kind: SessionEventKind, snapshot: SessionSnapshot) -> None:
        with self._lock:
            listeners = list(self._listeners)
        event = SessionEvent(kind=kind, snapshot=snapshot)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Session listener failed on %s", kind.value)
