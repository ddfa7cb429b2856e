"""Exam-related constants shared across core and server layers."""

TIME_WARNING_THRESHOLD_SECONDS: int = 300
TICK_INTERVAL_SECONDS: float = 1.0
DEFAULT_DIFFICULTY: str = "Medium"
DEFAULT_CATEGORY: str = "Uncategorized"
MIN_OPTIONS_PER_QUESTION: int = 2

EASY_CORRECT_PERCENT: int = 80
HARD_CORRECT_PERCENT: int = 40

USERS_COLLECTION: str = "users"
EXAMS_COLLECTION: str = "exams"
SUBMISSIONS_COLLECTION: str = "submissions"
QUESTION_POOL_COLLECTION: str = "questionPool"
