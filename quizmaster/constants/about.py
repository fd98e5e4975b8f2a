"""Static metadata describing QuizMaster."""

APP_NAME = "QuizMaster"
APP_VERSION = "0.1"
APP_ABOUT_TEXT = (
    "QuizMaster serves timed quizzes to the browser. Pick a quiz, start the clock, "
    "and review your stored results afterwards."
)
