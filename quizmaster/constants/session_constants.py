"""Quiz session constants shared across the core and server layers."""

SECONDS_PER_MINUTE: int = 60
TICK_INTERVAL_SECONDS: int = 1
TRUE_FALSE_OPTIONS: tuple[str, str] = ("True", "False")
MIN_MULTIPLE_CHOICE_OPTIONS: int = 2
TIMER_THREAD_NAME: str = "QuizSessionTimer"
DEFAULT_QUIZ_FILE: str = "quizzes.json"
IDLE_SESSION_TIMEOUT_SECONDS: int = 30 * SECONDS_PER_MINUTE
COMPLETED_SESSION_RETENTION_SECONDS: int = 5 * SECONDS_PER_MINUTE
