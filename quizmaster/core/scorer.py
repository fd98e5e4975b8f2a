"""Scoring of a finished quiz attempt."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime

from quizmaster.core.errors import QuizPreconditionError
from quizmaster.core.models import AnswerOutcome, Quiz, QuizResult


def percentage_of(correct_count: int, total_questions: int) -> int:
    """Return ``100 * correct / total`` rounded half up, in integer arithmetic."""
    if total_questions <= 0:
        raise QuizPreconditionError("Cannot compute a percentage without questions.")
    return (200 * correct_count + total_questions) // (2 * total_questions)


def score(
    quiz: Quiz,
    answers: Mapping[int, int],
    *,
    time_taken_seconds: int,
    submitted_at: datetime,
    user_id: str | None = None,
    user_name: str | None = None,
) -> QuizResult:
    """Score ``answers`` (question index -> option index) against ``quiz``.

    Unanswered questions count as incorrect and carry ``user_answer=None``.
    """
    total_questions = len(quiz.questions)
    if total_questions == 0:
        raise QuizPreconditionError(f"Quiz '{quiz.id}' has no questions to score.")

    outcomes: list[AnswerOutcome] = []
    correct_count = 0
    for index, question in enumerate(quiz.questions):
        user_answer = answers.get(index)
        is_correct = user_answer is not None and user_answer == question.correct_option_index
        if is_correct:
            correct_count += 1
        outcomes.append(
            AnswerOutcome(
                question_index=index,
                user_answer=user_answer,
                correct_answer=question.correct_option_index,
                is_correct=is_correct,
            )
        )

    return QuizResult(
        quiz_id=quiz.id,
        quiz_title=quiz.title,
        score=correct_count,
        total_questions=total_questions,
        percentage=percentage_of(correct_count, total_questions),
        answers=tuple(outcomes),
        time_taken_seconds=time_taken_seconds,
        submitted_at=submitted_at,
        user_id=user_id,
        user_name=user_name,
    )
