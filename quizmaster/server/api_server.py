"""FastAPI server that exposes quiz browsing and authoring, timed sessions and results."""

from __future__ import annotations

from collections.abc import Callable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging
from typing import TypeVar

from fastapi import Depends, FastAPI, HTTPException, Response
from pydantic import BaseModel
import uvicorn

from quizmaster.constants.about import APP_ABOUT_TEXT, APP_NAME, APP_VERSION
from quizmaster.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from quizmaster.constants.session_constants import SECONDS_PER_MINUTE
from quizmaster.core.errors import (
    InvalidInputError,
    QuizImportError,
    QuizNotFoundError,
    QuizPreconditionError,
    SessionStateError,
)
from quizmaster.core.markdown_renderer import renderer
from quizmaster.core.models import (
    PersistOutcome,
    QuestionKind,
    Quiz,
    QuizResult,
    SessionPhase,
    SessionSnapshot,
)
from quizmaster.core.session_manager import SessionManager, SessionNotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionCreatePayload(BaseModel):
    """Payload schema for opening a session on a quiz's start screen."""

    quiz_id: str
    user_id: str | None = None
    user_name: str | None = None


class AnswerPayload(BaseModel):
    """Payload schema for selecting an option on the current question."""

    option_index: int


class NavigatePayload(BaseModel):
    index: int


class QuestionPayload(BaseModel):
    """Payload schema for one authored question."""

    type: str = QuestionKind.MULTIPLE_CHOICE.value
    question: str
    options: list[str] = []
    correct_answer: int


class QuizPayload(BaseModel):
    """Payload schema for replacing a quiz's content."""

    title: str
    description: str = ""
    time_limit_minutes: int
    questions: list[QuestionPayload]

    def to_document(self) -> dict[str, object]:
        """Return the stored document shape accepted by the quiz importer."""
        return {
            "title": self.title,
            "description": self.description,
            "timeLimit": self.time_limit_minutes,
            "questions": [
                {
                    "type": question.type,
                    "question": question.question,
                    "options": list(question.options),
                    "correctAnswer": question.correct_answer,
                }
                for question in self.questions
            ],
        }


class QuizCreatePayload(QuizPayload):
    """Payload schema for authoring a new quiz."""

    creator_id: str | None = None
    creator_name: str | None = None


def _to_iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def _serialize_quiz_summary(quiz: Quiz) -> dict[str, object]:
    return {
        "id": quiz.id,
        "title": quiz.title,
        "description": quiz.description,
        "time_limit_minutes": quiz.time_limit_minutes,
        "question_count": len(quiz.questions),
        "creator_id": quiz.creator_id,
        "creator_name": quiz.creator_name,
        "times_played": quiz.times_played,
        "created_at": _to_iso(quiz.created_at),
    }


def _serialize_quiz_detail(quiz: Quiz) -> dict[str, object]:
    payload = _serialize_quiz_summary(quiz)
    payload["questions"] = [
        {
            "kind": question.kind.value,
            "text": question.text,
            "options": list(question.options),
            "correct_option_index": question.correct_option_index,
        }
        for question in quiz.questions
    ]
    return payload


def _serialize_result(result: QuizResult) -> dict[str, object]:
    return {
        "quiz_id": result.quiz_id,
        "quiz_title": result.quiz_title,
        "user_id": result.user_id,
        "user_name": result.user_name,
        "score": result.score,
        "total_questions": result.total_questions,
        "percentage": result.percentage,
        "time_taken_seconds": result.time_taken_seconds,
        "submitted_at": _to_iso(result.submitted_at),
        "answers": [
            {
                "question_index": outcome.question_index,
                "user_answer": outcome.user_answer,
                "correct_answer": outcome.correct_answer,
                "is_correct": outcome.is_correct,
            }
            for outcome in result.answers
        ],
    }


def _serialize_outcome(outcome: PersistOutcome | None) -> dict[str, object] | None:
    if outcome is None:
        return None
    return {
        "stored": outcome.stored,
        "result_id": outcome.result_id,
        "error": outcome.error,
        "auxiliary_failures": list(outcome.auxiliary_failures),
    }


def _serialize_snapshot(session_id: str, snapshot: SessionSnapshot) -> dict[str, object]:
    quiz = snapshot.quiz
    completed = snapshot.phase is SessionPhase.COMPLETED
    question_payload = None
    question = snapshot.current_question
    if question is not None and snapshot.phase is not SessionPhase.NOT_STARTED:
        index = snapshot.current_question_index
        question_payload = {
            "index": index,
            "kind": question.kind.value,
            "text": question.text,
            "question_html": renderer.render_fragment(question.text),
            "options": list(question.options),
            "options_html": [renderer.render_inline(option) for option in question.options],
            "selected_option_index": snapshot.answers.get(index),
            # Only reveal the key once the attempt is scored
            "correct_option_index": question.correct_option_index if completed else None,
        }
    return {
        "session_id": session_id,
        "quiz_id": quiz.id if quiz else None,
        "quiz_title": quiz.title if quiz else None,
        "description": quiz.description if quiz else None,
        "phase": snapshot.phase.value,
        "closed": snapshot.closed,
        "time_limit_seconds": quiz.time_limit_minutes * SECONDS_PER_MINUTE if quiz else None,
        "remaining_seconds": snapshot.remaining_seconds,
        "started_at": _to_iso(snapshot.started_at),
        "current_question_index": snapshot.current_question_index,
        "total_questions": snapshot.total_questions,
        "answered_count": snapshot.answered_count,
        "answered_questions": sorted(snapshot.answers),
        "question": question_payload,
        "result": _serialize_result(snapshot.result) if snapshot.result else None,
        "persistence": _serialize_outcome(snapshot.persist_outcome),
    }


def _call(action: Callable[[], T]) -> T:
    """Run a session operation, translating domain errors to HTTP errors."""
    try:
        return action()
    except (SessionNotFoundError, QuizNotFoundError) as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (InvalidInputError, QuizImportError, QuizPreconditionError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except SessionStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


def _get_session_manager_dependency(session_manager: SessionManager):
    def dependency() -> SessionManager:
        return session_manager

    return dependency


def create_api_app(session_manager: SessionManager) -> FastAPI:
    """Create a FastAPI application wired to the provided session manager."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        session_manager.shutdown()

    app = FastAPI(
        title=f"{APP_NAME} API",
        description=APP_ABOUT_TEXT,
        version=APP_VERSION,
        lifespan=lifespan,
    )
    manager_dep = _get_session_manager_dependency(session_manager)

    @app.get("/quizzes")
    def list_quizzes(manager: SessionManager = Depends(manager_dep)) -> list[dict[str, object]]:
        return [_serialize_quiz_summary(quiz) for quiz in manager.list_quizzes()]

    @app.get("/quizzes/{quiz_id}")
    def get_quiz(quiz_id: str, manager: SessionManager = Depends(manager_dep)) -> dict[str, object]:
        quiz = manager.get_quiz(quiz_id)
        if quiz is None:
            raise HTTPException(status_code=404, detail=f"Quiz '{quiz_id}' was not found.")
        return _serialize_quiz_summary(quiz)

    @app.post("/quizzes", status_code=201)
    def create_quiz(
        payload: QuizCreatePayload,
        manager: SessionManager = Depends(manager_dep),
    ) -> dict[str, object]:
        quiz = _call(
            lambda: manager.create_quiz(
                payload.to_document(),
                creator_id=payload.creator_id,
                creator_name=payload.creator_name,
            )
        )
        return _serialize_quiz_detail(quiz)

    @app.put("/quizzes/{quiz_id}")
    def update_quiz(
        quiz_id: str,
        payload: QuizPayload,
        manager: SessionManager = Depends(manager_dep),
    ) -> dict[str, object]:
        quiz = _call(lambda: manager.update_quiz(quiz_id, payload.to_document()))
        return _serialize_quiz_detail(quiz)

    @app.delete("/quizzes/{quiz_id}", status_code=204)
    def delete_quiz(quiz_id: str, manager: SessionManager = Depends(manager_dep)) -> Response:
        _call(lambda: manager.delete_quiz(quiz_id))
        return Response(status_code=204)

    @app.get("/quizzes/{quiz_id}/results")
    def get_quiz_results(
        quiz_id: str, manager: SessionManager = Depends(manager_dep)
    ) -> list[dict[str, object]]:
        return [_serialize_result(result) for result in manager.list_results_for_quiz(quiz_id)]

    @app.get("/users/{user_id}/quizzes")
    def get_user_quizzes(
        user_id: str, manager: SessionManager = Depends(manager_dep)
    ) -> list[dict[str, object]]:
        return [_serialize_quiz_summary(quiz) for quiz in manager.list_quizzes_by_creator(user_id)]

    @app.get("/users/{user_id}/results")
    def get_user_results(
        user_id: str, manager: SessionManager = Depends(manager_dep)
    ) -> list[dict[str, object]]:
        return [_serialize_result(result) for result in manager.list_results_for_user(user_id)]

    @app.post("/sessions", status_code=201)
    def open_session(
        payload: SessionCreatePayload,
        manager: SessionManager = Depends(manager_dep),
    ) -> dict[str, object]:
        session_id, controller = _call(
            lambda: manager.open_session(
                payload.quiz_id,
                user_id=payload.user_id,
                user_name=payload.user_name,
            )
        )
        return _serialize_snapshot(session_id, controller.snapshot())

    @app.get("/sessions/{session_id}")
    def get_session(session_id: str, manager: SessionManager = Depends(manager_dep)) -> dict[str, object]:
        controller = _call(lambda: manager.get_session(session_id))
        return _serialize_snapshot(session_id, controller.snapshot())

    @app.post("/sessions/{session_id}/start")
    def start_session(session_id: str, manager: SessionManager = Depends(manager_dep)) -> dict[str, object]:
        controller = _call(lambda: manager.get_session(session_id))
        return _serialize_snapshot(session_id, _call(controller.start))

    @app.post("/sessions/{session_id}/answer")
    def select_answer(
        session_id: str,
        payload: AnswerPayload,
        manager: SessionManager = Depends(manager_dep),
    ) -> dict[str, object]:
        controller = _call(lambda: manager.get_session(session_id))
        snapshot = _call(lambda: controller.select_answer(payload.option_index))
        return _serialize_snapshot(session_id, snapshot)

    @app.post("/sessions/{session_id}/navigate")
    def navigate(
        session_id: str,
        payload: NavigatePayload,
        manager: SessionManager = Depends(manager_dep),
    ) -> dict[str, object]:
        controller = _call(lambda: manager.get_session(session_id))
        snapshot = _call(lambda: controller.go_to_question(payload.index))
        return _serialize_snapshot(session_id, snapshot)

    @app.post("/sessions/{session_id}/next")
    def next_question(session_id: str, manager: SessionManager = Depends(manager_dep)) -> dict[str, object]:
        controller = _call(lambda: manager.get_session(session_id))
        return _serialize_snapshot(session_id, _call(controller.next_question))

    @app.post("/sessions/{session_id}/previous")
    def previous_question(
        session_id: str, manager: SessionManager = Depends(manager_dep)
    ) -> dict[str, object]:
        controller = _call(lambda: manager.get_session(session_id))
        return _serialize_snapshot(session_id, _call(controller.previous_question))

    @app.post("/sessions/{session_id}/submit")
    def submit(session_id: str, manager: SessionManager = Depends(manager_dep)) -> dict[str, object]:
        controller = _call(lambda: manager.get_session(session_id))
        _call(controller.submit)
        return _serialize_snapshot(session_id, controller.snapshot())

    @app.delete("/sessions/{session_id}", status_code=204)
    def close_session(session_id: str, manager: SessionManager = Depends(manager_dep)) -> Response:
        _call(lambda: manager.close_session(session_id))
        return Response(status_code=204)

    return app


def run_api_server(
    session_manager: SessionManager,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
) -> None:
    """Serve the API until interrupted."""
    app = create_api_app(session_manager)
    config = uvicorn.Config(app=app, host=host, port=port, log_level="info")
    server = uvicorn.Server(config)
    logger.info("Serving %s API on %s:%s", APP_NAME, host, port)
    server.run()
