"""
API package initialization.

Exports shared schema models for external use.
"""

# Re-export commonly used schema models
from .schemas import QuizRequest, QuizSessionOut, QuestionView, SummaryListOut  # noqa: F401
