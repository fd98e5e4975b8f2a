"""Best-effort storage of scored quiz attempts."""

from __future__ import annotations

from collections.abc import Callable
import logging

from quizmaster.core.errors import AuxiliaryUpdateFailure, PersistenceFailure
from quizmaster.core.models import PersistOutcome, QuizResult
from quizmaster.core.services.quiz_repository import QuizRepository

logger = logging.getLogger(__name__)


class ResultPersister:
    """Writes a result record, then bumps the play and taken counters.

    Only the result record decides success. Counter updates run once the
    record is stored; their failures are logged and listed on the outcome.
    Nothing is retried.
    """

    def __init__(self, repository: QuizRepository) -> None:
        self._repository = repository

    def persist(self, quiz_id: str, result: QuizResult) -> PersistOutcome:
        try:
            result_id = self._repository.persist_result(result)
        except Exception as exc:
            failure = PersistenceFailure(f"Could not store result for quiz '{quiz_id}': {exc}")
            logger.error(
                "Result for quiz %s (user %s, score %s/%s) was not stored and is lost: %s",
                quiz_id,
                result.user_id,
                result.score,
                result.total_questions,
                exc,
            )
            return PersistOutcome(stored=False, error=str(failure))

        outcome = PersistOutcome(stored=True, result_id=result_id)
        self._best_effort(
            outcome,
            f"play count of quiz '{quiz_id}'",
            lambda: self._repository.increment_quiz_play_count(quiz_id),
        )
        if result.user_id is not None:
            user_id = result.user_id
            self._best_effort(
                outcome,
                f"taken count of user '{user_id}'",
                lambda: self._repository.increment_user_taken_count(user_id),
            )
        logger.info("Stored result %s for quiz %s", result_id, quiz_id)
        return outcome

    @staticmethod
    def _best_effort(
        outcome: PersistOutcome, description: str, update: Callable[[], None]
    ) -> None:
        try:
            update()
        except Exception as exc:
            failure = AuxiliaryUpdateFailure(f"Could not update {description}: {exc}")
            logger.warning("%s", failure)
            outcome.auxiliary_failures.append(str(failure))
