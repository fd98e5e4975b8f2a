from dataclasses import replace
from threading import Event, Thread

import pytest

from quizmaster.core.errors import (
    InvalidInputError,
    QuizNotFoundError,
    QuizPreconditionError,
    SessionStateError,
)
from quizmaster.core.models import SessionEventKind, SessionPhase
from quizmaster.core.services.session_controller import SessionController

from conftest import FIXED_NOW, FixedClock, ManualTimer


# Manual timer whose first cancel waits for a signal and then fails.
class FailingCancelTimer(ManualTimer):
    def __init__(self):
        super().__init__()
        self.cancel_entered = Event()
        self.release_cancel = Event()
        self.release_cancel.set()
        self.failures_left = 1

    def cancel(self, handle):
        if self.failures_left:
            self.failures_left -= 1
            self.cancel_entered.set()
            self.release_cancel.wait(timeout=5)
            raise RuntimeError("timer backend unavailable")
        super().cancel(handle)


class FlakyClock(FixedClock):
    def __init__(self):
        super().__init__()
        self.fail_next = False

    def now(self):
        if self.fail_next:
            self.fail_next = False
            raise OSError("clock source unavailable")
        return super().now()


def _capture(outcomes, action):
    try:
        outcomes.append(action())
    except Exception as exc:
        outcomes.append(exc)


def test_load_unknown_quiz_keeps_session_unstarted(make_controller):
    controller = make_controller(quiz_id="missing")

    with pytest.raises(QuizNotFoundError):
        controller.start()

    assert controller.snapshot().phase is SessionPhase.NOT_STARTED


def test_start_initializes_state_and_timer(make_controller, timer):
    controller = make_controller()

    snapshot = controller.start()

    assert snapshot.phase is SessionPhase.IN_PROGRESS
    assert snapshot.remaining_seconds == 600
    assert snapshot.current_question_index == 0
    assert snapshot.answers == {}
    assert snapshot.started_at == FIXED_NOW
    assert len(timer.active_handles) == 1
    assert timer.active_handles[0].interval_seconds == 1


def test_start_twice_is_rejected(make_controller):
    controller = make_controller()
    controller.start()

    with pytest.raises(SessionStateError):
        controller.start()


def test_quiz_without_questions_cannot_start(make_controller, repository, two_question_quiz):
    repository.save_quiz(replace(two_question_quiz, id="empty", questions=[]))
    controller = make_controller(quiz_id="empty")

    with pytest.raises(QuizPreconditionError):
        controller.start()
    assert controller.snapshot().phase is SessionPhase.NOT_STARTED


def test_select_answer_overwrites_previous_choice(make_controller):
    controller = make_controller()
    controller.start()

    controller.select_answer(2)
    snapshot = controller.select_answer(0)

    assert snapshot.answers == {0: 0}


def test_select_answer_rejects_out_of_range(make_controller):
    controller = make_controller()
    controller.start()
    controller.go_to_question(1)

    with pytest.raises(InvalidInputError):
        controller.select_answer(2)
    with pytest.raises(InvalidInputError):
        controller.select_answer(-1)

    assert controller.snapshot().answers == {}


def test_select_answer_before_start_is_rejected(make_controller):
    controller = make_controller()

    with pytest.raises(SessionStateError):
        controller.select_answer(0)


@pytest.mark.parametrize("index", [-1, 2])
def test_go_to_question_out_of_bounds_is_rejected(make_controller, index):
    controller = make_controller()
    controller.start()
    controller.go_to_question(1)

    with pytest.raises(InvalidInputError):
        controller.go_to_question(index)

    assert controller.snapshot().current_question_index == 1


def test_next_and_previous_clamp_at_bounds(make_controller):
    controller = make_controller()
    controller.start()

    assert controller.previous_question().current_question_index == 0
    assert controller.next_question().current_question_index == 1
    assert controller.next_question().current_question_index == 1
    assert controller.previous_question().current_question_index == 0


def test_tick_counts_down_and_never_goes_negative(make_controller, timer):
    controller = make_controller()
    controller.start()

    timer.fire(5)
    assert controller.snapshot().remaining_seconds == 595

    timer.fire(600)
    snapshot = controller.snapshot()
    assert snapshot.remaining_seconds == 0
    assert snapshot.phase is SessionPhase.COMPLETED

    controller.tick()
    assert controller.snapshot().remaining_seconds == 0


def test_tick_before_start_has_no_effect(make_controller):
    controller = make_controller()

    controller.tick()

    assert controller.snapshot().remaining_seconds == 0
    assert controller.snapshot().phase is SessionPhase.NOT_STARTED


def test_manual_submit_scenario(make_controller, timer, repository):
    controller = make_controller()
    controller.start()
    controller.select_answer(0)
    controller.next_question()
    controller.select_answer(0)
    timer.fire(60)

    result = controller.submit()

    assert controller.snapshot().remaining_seconds == 540
    assert result.score == 1
    assert result.percentage == 50
    assert result.time_taken_seconds == 60
    assert result.submitted_at == FIXED_NOW
    assert result.user_name == "Alice"
    assert controller.snapshot().phase is SessionPhase.COMPLETED
    assert timer.active_handles == []
    assert repository.persist_calls == 1


def test_timer_expiry_auto_submits(make_controller, timer, repository):
    controller = make_controller()
    controller.start()
    controller.select_answer(0)

    timer.fire(599)
    assert controller.snapshot().phase is SessionPhase.IN_PROGRESS

    timer.fire()

    snapshot = controller.snapshot()
    assert snapshot.phase is SessionPhase.COMPLETED
    assert snapshot.result.score == 1
    assert snapshot.result.percentage == 50
    assert snapshot.result.time_taken_seconds == 600
    assert snapshot.result.answers[1].user_answer is None
    assert repository.persist_calls == 1
    assert timer.active_handles == []


def test_submit_twice_returns_same_result(make_controller, repository):
    controller = make_controller()
    controller.start()

    first = controller.submit()
    second = controller.submit()

    assert first is second
    assert repository.persist_calls == 1


def test_submit_before_start_is_rejected(make_controller):
    with pytest.raises(SessionStateError):
        make_controller().submit()


def test_operations_after_completion_are_rejected(make_controller):
    controller = make_controller()
    controller.start()
    controller.submit()

    with pytest.raises(SessionStateError):
        controller.select_answer(0)
    with pytest.raises(SessionStateError):
        controller.next_question()


def test_persistence_failure_still_completes(make_controller, repository):
    repository.fail_persist = True
    controller = make_controller()
    controller.start()
    controller.select_answer(0)

    result = controller.submit()

    snapshot = controller.snapshot()
    assert snapshot.phase is SessionPhase.COMPLETED
    assert snapshot.result is result
    assert result.score == 1
    assert snapshot.persist_outcome.stored is False
    assert snapshot.persist_outcome.error


def test_expiry_during_manual_submit_yields_one_submission(make_controller, timer, repository):
    controller = make_controller()
    controller.start()
    controller.select_answer(0)
    repository.release_persist.clear()

    results = []
    manual = Thread(target=lambda: results.append(controller.submit()))
    manual.start()
    assert repository.persist_entered.wait(timeout=5)

    # the submitting edge cancelled the timer; a late tick must not count down
    remaining = controller.snapshot().remaining_seconds
    controller.tick()
    assert controller.snapshot().remaining_seconds == remaining
    assert controller.snapshot().phase is SessionPhase.SUBMITTING

    waiter = Thread(target=lambda: results.append(controller.submit()))
    waiter.start()
    waiter.join(timeout=0.2)
    assert waiter.is_alive()

    repository.release_persist.set()
    manual.join(timeout=5)
    waiter.join(timeout=5)

    assert len(results) == 2
    assert results[0] is results[1]
    assert repository.persist_calls == 1


def test_manual_submit_during_auto_submit_waits_for_result(make_controller, timer, repository):
    controller = make_controller()
    controller.start()
    timer.fire(599)
    repository.release_persist.clear()

    expiry = Thread(target=timer.fire)
    expiry.start()
    assert repository.persist_entered.wait(timeout=5)

    results = []
    manual = Thread(target=lambda: results.append(controller.submit()))
    manual.start()
    manual.join(timeout=0.2)
    assert manual.is_alive()

    repository.release_persist.set()
    expiry.join(timeout=5)
    manual.join(timeout=5)

    assert results[0] is controller.result
    assert results[0].time_taken_seconds == 600
    assert repository.persist_calls == 1


def test_failed_timer_cancel_reopens_attempt(repository, clock):
    timer = FailingCancelTimer()
    controller = SessionController("quiz-1", repository=repository, timer=timer, clock=clock)
    controller.start()
    controller.select_answer(0)

    with pytest.raises(RuntimeError):
        controller.submit()

    snapshot = controller.snapshot()
    assert snapshot.phase is SessionPhase.IN_PROGRESS
    assert snapshot.answers == {0: 0}
    assert repository.persist_calls == 0
    timer.fire()
    assert controller.snapshot().remaining_seconds == 599

    result = controller.submit()

    assert result.score == 1
    assert controller.snapshot().phase is SessionPhase.COMPLETED
    assert repository.persist_calls == 1
    assert timer.active_handles == []


def test_waiter_is_released_when_submission_fails(repository, clock):
    timer = FailingCancelTimer()
    timer.release_cancel.clear()
    controller = SessionController("quiz-1", repository=repository, timer=timer, clock=clock)
    controller.start()

    first, second = [], []
    submitting = Thread(target=_capture, args=(first, controller.submit))
    submitting.start()
    assert timer.cancel_entered.wait(timeout=5)

    waiter = Thread(target=_capture, args=(second, controller.submit))
    waiter.start()
    waiter.join(timeout=0.2)
    assert waiter.is_alive()

    timer.release_cancel.set()
    submitting.join(timeout=5)
    waiter.join(timeout=5)

    assert not waiter.is_alive()
    assert isinstance(first[0], RuntimeError)
    assert isinstance(second[0], SessionStateError)
    assert controller.snapshot().phase is SessionPhase.IN_PROGRESS
    assert controller.submit() is controller.result
    assert repository.persist_calls == 1


def test_failed_scoring_restarts_timer(repository, timer):
    clock = FlakyClock()
    controller = SessionController("quiz-1", repository=repository, timer=timer, clock=clock)
    controller.start()
    clock.fail_next = True

    with pytest.raises(OSError):
        controller.submit()

    assert controller.snapshot().phase is SessionPhase.IN_PROGRESS
    assert len(timer.handles) == 2
    assert timer.active_handles == [timer.handles[1]]
    timer.fire()
    assert controller.snapshot().remaining_seconds == 599
    assert controller.submit().time_taken_seconds == 1


def test_close_cancels_timer_and_discards_attempt(make_controller, timer, repository):
    controller = make_controller()
    controller.start()

    controller.close()

    assert timer.active_handles == []
    controller.tick()
    snapshot = controller.snapshot()
    assert snapshot.closed is True
    assert snapshot.remaining_seconds == 600
    assert repository.persist_calls == 0
    with pytest.raises(SessionStateError):
        controller.submit()


def test_close_is_idempotent(make_controller):
    controller = make_controller()
    controller.close()
    controller.close()

    with pytest.raises(SessionStateError):
        controller.start()


def test_listeners_receive_every_transition(make_controller, timer):
    controller = make_controller()
    events = []
    controller.subscribe(lambda event: events.append(event.kind))

    controller.start()
    controller.select_answer(0)
    controller.next_question()
    timer.fire()
    controller.submit()

    assert events == [
        SessionEventKind.LOADED,
        SessionEventKind.STARTED,
        SessionEventKind.ANSWER_SELECTED,
        SessionEventKind.NAVIGATED,
        SessionEventKind.TICKED,
        SessionEventKind.SUBMITTING,
        SessionEventKind.COMPLETED,
    ]


def test_unsubscribe_and_failing_listener(make_controller):
    controller = make_controller()
    seen = []

    def broken(event):
        raise RuntimeError("render failed")

    controller.subscribe(broken)
    unsubscribe = controller.subscribe(lambda event: seen.append(event.kind))
    controller.start()
    unsubscribe()
    controller.select_answer(1)

    assert seen == [SessionEventKind.LOADED, SessionEventKind.STARTED]
    assert controller.snapshot().answers == {0: 1}


def test_completed_event_carries_result(make_controller):
    controller = make_controller()
    completed = []
    controller.subscribe(
        lambda event: completed.append(event.snapshot)
        if event.kind is SessionEventKind.COMPLETED
        else None
    )
    controller.start()

    result = controller.submit()

    assert completed[0].result is result
    assert completed[0].persist_outcome.stored is True
