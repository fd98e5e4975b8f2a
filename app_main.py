"""Application entry point for the QuizMaster service."""

from __future__ import annotations

from pathlib import Path
import sys

from quizmaster.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from quizmaster.constants.session_constants import DEFAULT_QUIZ_FILE
from quizmaster.core.errors import QuizImportError
from quizmaster.core.quiz_importer import import_into_repository
from quizmaster.core.services.quiz_repository import InMemoryQuizRepository
from quizmaster.core.session_manager import SessionManager
from quizmaster.server.api_server import run_api_server
from quizmaster.utils.logging_config import configure_logging


def main() -> None:
    """Initialize logging, load the quiz file, and serve the API."""
    logger = configure_logging()
    logger.info("Starting QuizMaster…")

    quiz_path = Path(sys.argv[1]) if len(sys.argv) > 1 else Path(DEFAULT_QUIZ_FILE)
    repository = InMemoryQuizRepository()
    if quiz_path.exists():
        try:
            quizzes = import_into_repository(quiz_path, repository)
        except QuizImportError as exc:
            logger.error("Could not import %s: %s", quiz_path, exc)
            sys.exit(1)
        logger.info("Loaded %d quiz(zes) from %s", len(quizzes), quiz_path)
    else:
        logger.warning("Quiz file %s not found; starting with no quizzes", quiz_path)

    run_api_server(SessionManager(repository), host=DEFAULT_HOST, port=DEFAULT_PORT)


if __name__ == "__main__":
    main()
