# Import models here so metadata.create_all() sees every table
from .base import Base  # noqa: F401
from .user import User  # noqa: F401
from .quiz import Question, Quiz  # noqa: F401
from .quiz_attempt import QuizAttempt, UserAnswer  # noqa: F401
from .quiz_statistics import QuizStatistics  # noqa: F401
