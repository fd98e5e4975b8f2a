"""Domain models for timed quiz sessions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class QuestionKind(Enum):
    """Supported question formats."""

    MULTIPLE_CHOICE = "multiple-choice"
    TRUE_FALSE = "true-false"


@dataclass(slots=True)
class Question:
    """Single quiz question with an ordered list of options."""

    kind: QuestionKind
    text: str
    options: list[str]
    correct_option_index: int


@dataclass(slots=True)
class Quiz:
    """Quiz definition as stored by the repository."""

    id: str
    title: str
    time_limit_minutes: int
    questions: list[Question]
    description: str = ""
    creator_id: str | None = None
    creator_name: str | None = None
    times_played: int = 0
    created_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class AnswerOutcome:
    """Per-question outcome recorded on a result."""

    question_index: int
    user_answer: int | None
    correct_answer: int
    is_correct: bool


@dataclass(frozen=True, slots=True)
class QuizResult:
    """Scored attempt, shown to the user and stored for later review."""

    quiz_id: str
    quiz_title: str
    score: int
    total_questions: int
    percentage: int
    answers: tuple[AnswerOutcome, ...]
    time_taken_seconds: int
    submitted_at: datetime
    user_id: str | None = None
    user_name: str | None = None


@dataclass(slots=True)
class PersistOutcome:
    """Diagnostics from storing a result and updating its counters."""

    stored: bool
    result_id: str | None = None
    error: str | None = None
    auxiliary_failures: list[str] = field(default_factory=list)


class SessionPhase(Enum):
    """Lifecycle phases of one quiz attempt."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    COMPLETED = "completed"


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """Immutable copy of the session state handed to the UI layer."""

    quiz: Quiz | None
    phase: SessionPhase
    current_question_index: int
    answers: dict[int, int]
    remaining_seconds: int
    started_at: datetime | None
    result: QuizResult | None
    persist_outcome: PersistOutcome | None
    closed: bool

    @property
    def answered_count(self) -> int:
        return len(self.answers)

    @property
    def total_questions(self) -> int:
        return len(self.quiz.questions) if self.quiz else 0

    @property
    def current_question(self) -> Question | None:
        if self.quiz is None or not self.quiz.questions:
            return None
        return self.quiz.questions[self.current_question_index]


class SessionEventKind(Enum):
    """State changes announced to session listeners."""

    LOADED = "loaded"
    STARTED = "started"
    ANSWER_SELECTED = "answer_selected"
    NAVIGATED = "navigated"
    TICKED = "ticked"
    SUBMITTING = "submitting"
    COMPLETED = "completed"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class SessionEvent:
    kind: SessionEventKind
    snapshot: SessionSnapshot
