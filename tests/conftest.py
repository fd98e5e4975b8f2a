# Pytest fixtures: fake timer/clock, sample quizzes and repositories.
from datetime import datetime, timezone
from threading import Event

import pytest

from quizmaster.core.models import Question, QuestionKind, Quiz
from quizmaster.core.services.quiz_repository import InMemoryQuizRepository
from quizmaster.core.services.session_controller import SessionController

FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


# Timer handle that is only ever fired by the test.
class ManualHandle:
    def __init__(self, interval_seconds, on_tick):
        self.interval_seconds = interval_seconds
        self.on_tick = on_tick
        self.active = True


# Timer double: records handles and delivers ticks on demand.
class ManualTimer:
    def __init__(self):
        self.handles = []

    def start(self, interval_seconds, on_tick):
        handle = ManualHandle(interval_seconds, on_tick)
        self.handles.append(handle)
        return handle

    def cancel(self, handle):
        handle.active = False

    def fire(self, times=1):
        for _ in range(times):
            for handle in list(self.handles):
                if handle.active:
                    handle.on_tick()

    @property
    def active_handles(self):
        return [handle for handle in self.handles if handle.active]


class FixedClock:
    def __init__(self, now=FIXED_NOW):
        self.current = now

    def now(self):
        return self.current


# In-memory repository that counts calls and can be told to fail or block.
class RecordingRepository(InMemoryQuizRepository):
    def __init__(self):
        super().__init__()
        self.persist_calls = 0
        self.fail_persist = False
        self.fail_play_count = False
        self.fail_user_count = False
        self.persist_entered = Event()
        self.release_persist = Event()
        self.release_persist.set()

    def persist_result(self, result):
        self.persist_calls += 1
        self.persist_entered.set()
        self.release_persist.wait(timeout=5)
        if self.fail_persist:
            raise ConnectionError("document store unavailable")
        return super().persist_result(result)

    def increment_quiz_play_count(self, quiz_id):
        if self.fail_play_count:
            raise PermissionError("quiz counter is read-only")
        super().increment_quiz_play_count(quiz_id)

    def increment_user_taken_count(self, user_id):
        if self.fail_user_count:
            raise PermissionError("user document missing")
        super().increment_user_taken_count(user_id)


# Two-question quiz: Q1 correct option 0, Q2 correct option 1, 10 minute limit.
@pytest.fixture()
def two_question_quiz():
    return Quiz(
        id="quiz-1",
        title="Sample Quiz",
        description="Two quick questions.",
        time_limit_minutes=10,
        questions=[
            Question(
                kind=QuestionKind.MULTIPLE_CHOICE,
                text="What is 2 + 2?",
                options=["4", "3", "5", "22"],
                correct_option_index=0,
            ),
            Question(
                kind=QuestionKind.TRUE_FALSE,
                text="The sun orbits the earth.",
                options=["True", "False"],
                correct_option_index=1,
            ),
        ],
    )


@pytest.fixture()
def repository(two_question_quiz):
    repo = RecordingRepository()
    repo.save_quiz(two_question_quiz)
    return repo


@pytest.fixture()
def timer():
    return ManualTimer()


@pytest.fixture()
def clock():
    return FixedClock()


# Build a session controller for the sample quiz with the fake timer and clock.
@pytest.fixture()
def make_controller(repository, timer, clock):
    def _build(quiz_id="quiz-1", user_id="user-1", user_name="Alice"):
        return SessionController(
            quiz_id,
            repository=repository,
            timer=timer,
            clock=clock,
            user_id=user_id,
            user_name=user_name,
        )

    return _build
