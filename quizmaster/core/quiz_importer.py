"""Utilities for importing quizzes from a JSON document.

The document mirrors the shape quizzes are stored in by the browser app,
either a list of quiz objects or ``{"quizzes": [...]}``:

    {
      "quizzes": [
        {
          "id": "capitals",
          "title": "European capitals",
          "description": "Warm-up round",
          "timeLimit": 10,
          "questions": [
            {
              "type": "multiple-choice",
              "question": "What is the capital of France?",
              "options": ["Lyon", "Paris", "Nice"],
              "correctAnswer": 1
            },
            {
              "type": "true-false",
              "question": "Madrid is in Spain.",
              "correctAnswer": 0
            }
          ]
        }
      ]
    }

``timeLimit`` is in minutes. True/false questions always get the options
``["True", "False"]``; any options given for them are ignored.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
from pathlib import Path
from typing import Any

from quizmaster.constants.session_constants import (
    MIN_MULTIPLE_CHOICE_OPTIONS,
    TRUE_FALSE_OPTIONS,
)
from quizmaster.core.errors import QuizImportError
from quizmaster.core.models import Question, QuestionKind, Quiz
from quizmaster.core.services.quiz_repository import QuizRepository


@dataclass(slots=True)
class ImportedQuizzes:
    """Container for the quizzes read from one file."""

    source_path: Path
    quizzes: list[Quiz]


def load_quizzes_from_file(file_path: Path) -> ImportedQuizzes:
    try:
        text = file_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise QuizImportError(f"Could not read quiz file {file_path}: {exc}") from exc
    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        raise QuizImportError(f"Quiz file is not valid JSON: {exc}") from exc
    quizzes = parse_quizzes(document)
    if not quizzes:
        raise QuizImportError("Quiz file did not contain any quizzes.")
    return ImportedQuizzes(source_path=file_path, quizzes=quizzes)


def import_into_repository(file_path: Path, repository: QuizRepository) -> list[Quiz]:
    """Load ``file_path`` and save every quiz it holds into ``repository``."""
    imported = load_quizzes_from_file(file_path)
    return [repository.save_quiz(quiz) for quiz in imported.quizzes]


def parse_quizzes(document: Any) -> list[Quiz]:
    if isinstance(document, dict):
        document = document.get("quizzes")
    if not isinstance(document, list):
        raise QuizImportError("Expected a list of quizzes or an object with a 'quizzes' list.")
    return [_parse_quiz(entry, position) for position, entry in enumerate(document, start=1)]


def parse_quiz(entry: Any) -> Quiz:
    """Validate a single quiz object, as submitted by the authoring form."""
    return _parse_quiz(entry, 1)


def _parse_quiz(entry: Any, position: int) -> Quiz:
    if not isinstance(entry, dict):
        raise QuizImportError(f"Quiz {position} must be an object.")

    title = str(entry.get("title", "")).strip()
    if not title:
        raise QuizImportError(f"Quiz {position} is missing a title.")

    time_limit = entry.get("timeLimit")
    if isinstance(time_limit, bool) or not isinstance(time_limit, int):
        raise QuizImportError(f"Quiz '{title}': timeLimit must be an integer number of minutes.")
    if time_limit <= 0:
        raise QuizImportError(f"Quiz '{title}': timeLimit must be a positive integer.")

    times_played = entry.get("timesPlayed") or 0
    if isinstance(times_played, bool) or not isinstance(times_played, int) or times_played < 0:
        raise QuizImportError(f"Quiz '{title}': timesPlayed must be a non-negative integer.")

    raw_questions = entry.get("questions")
    if not isinstance(raw_questions, list) or not raw_questions:
        raise QuizImportError(f"Quiz '{title}' must contain at least one question.")

    return Quiz(
        id=str(entry.get("id") or ""),
        title=title,
        description=str(entry.get("description") or "").strip(),
        time_limit_minutes=time_limit,
        questions=[
            _parse_question(raw, title, number)
            for number, raw in enumerate(raw_questions, start=1)
        ],
        creator_id=entry.get("creatorId"),
        creator_name=entry.get("creatorName"),
        times_played=times_played,
    )


def _parse_question(raw: Any, quiz_title: str, number: int) -> Question:
    where = f"Quiz '{quiz_title}', question {number}"
    if not isinstance(raw, dict):
        raise QuizImportError(f"{where} must be an object.")

    try:
        kind = QuestionKind(raw.get("type", QuestionKind.MULTIPLE_CHOICE.value))
    except ValueError as exc:
        raise QuizImportError(f"{where}: unknown question type {raw.get('type')!r}.") from exc

    text = str(raw.get("question", "")).strip()
    if not text:
        raise QuizImportError(f"{where}: question text cannot be empty.")

    if kind is QuestionKind.TRUE_FALSE:
        options = list(TRUE_FALSE_OPTIONS)
    else:
        raw_options = raw.get("options")
        if not isinstance(raw_options, list):
            raise QuizImportError(f"{where}: options must be a list.")
        options = [str(option).strip() for option in raw_options]
        if len(options) < MIN_MULTIPLE_CHOICE_OPTIONS:
            raise QuizImportError(
                f"{where}: provide at least {MIN_MULTIPLE_CHOICE_OPTIONS} options."
            )
        if any(not option for option in options):
            raise QuizImportError(f"{where}: option text cannot be empty.")

    correct = raw.get("correctAnswer")
    if isinstance(correct, bool) or not isinstance(correct, int):
        raise QuizImportError(f"{where}: correctAnswer must be an option index.")
    if not 0 <= correct < len(options):
        raise QuizImportError(f"{where}: correctAnswer {correct} is not a valid option index.")

    return Question(kind=kind, text=text, options=options, correct_option_index=correct)
