"""
Data models for SOP training.

- domain: chunks, users, sessions, messages, quizzes and progress records
- quiz_evaluation: deterministic grading and skill-level derivation
"""

from .domain import (
    AnalyticsSnapshot,
    ChatMessage,
    Chunk,
    MessageRole,
    ModuleProgress,
    QuestionType,
    QuizAnswer,
    QuizAttempt,
    QuizQuestion,
    QuizQuestionDraft,
    RetrievedChunk,
    SkillLevel,
    TrainingSession,
    User,
)
from .quiz_evaluation import derive_skill_level, evaluate_answer, score_percent

__all__ = [
    "AnalyticsSnapshot",
    "ChatMessage",
    "Chunk",
    "MessageRole",
    "ModuleProgress",
    "QuestionType",
    "QuizAnswer",
    "QuizAttempt",
    "QuizQuestion",
    "QuizQuestionDraft",
    "RetrievedChunk",
    "SkillLevel",
    "TrainingSession",
    "User",
    "derive_skill_level",
    "evaluate_answer",
    "score_percent",
]
