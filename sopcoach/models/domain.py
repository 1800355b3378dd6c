"""
Core data records for training content, chat, quizzes and progress.

Records are plain dataclasses; ownership and persistence belong to the
DataStore implementation. ``to_dict`` methods produce the camelCase wire shape
used by API responses.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class SkillLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    SHORT_ANSWER = "short_answer"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


# ==================== Retrieval ====================

@dataclass(frozen=True)
class Chunk:
    """
    An indexed unit of training content.

    Attributes:
        id: Stable identifier; re-upserting the same id replaces the chunk
        text: Chunk text
        module: Training module the chunk belongs to
        source: Originating document (path or title)
        metadata: Extra flat metadata (page, chunk_index, ...)
    """
    id: str
    text: str
    module: str
    source: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RetrievedChunk(Chunk):
    """Chunk plus its relevance score for one query."""
    score: float = 0.0

    @classmethod
    def from_chunk(cls, chunk: Chunk, score: float) -> "RetrievedChunk":
        return cls(
            id=chunk.id,
            text=chunk.text,
            module=chunk.module,
            source=chunk.source,
            metadata=dict(chunk.metadata),
            score=score,
        )

    def source_ref(self) -> Dict[str, Any]:
        """Compact reference used in stream metadata and API responses."""
        return {"id": self.id, "source": self.source, "score": self.score}


# ==================== Users & chat ====================

@dataclass
class User:
    id: str
    email: str
    language: str = "en"
    skill_level: SkillLevel = SkillLevel.BEGINNER
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class TrainingSession:
    id: str
    user_id: str
    module: str
    started_at: datetime = field(default_factory=utcnow)
    last_active_at: datetime = field(default_factory=utcnow)


@dataclass
class ChatMessage:
    id: str
    session_id: str
    role: MessageRole
    content: str
    created_at: datetime = field(default_factory=utcnow)


# ==================== Quizzes ====================

@dataclass
class QuizQuestionDraft:
    """
    A generated question before it is attached to an attempt.

    Attributes:
        prompt: Question text
        type: multiple_choice or short_answer
        answer_key: Option letter (multiple choice) or model answer (short answer)
        explanation: Why the key is correct
        options: Ordered option strings, multiple choice only
    """
    prompt: str
    type: QuestionType
    answer_key: str
    explanation: str
    options: Optional[List[str]] = None

    def __post_init__(self):
        self.type = QuestionType(self.type)
        if self.type is QuestionType.SHORT_ANSWER:
            self.options = None
        elif self.options is None:
            self.options = []


@dataclass(frozen=True)
class QuizQuestion:
    id: str
    attempt_id: str
    position: int
    prompt: str
    type: QuestionType
    options: Optional[List[str]]
    answer_key: str
    explanation: str

    def to_public_dict(self) -> Dict[str, Any]:
        """Learner-safe view: no answer key, no explanation."""
        return {
            "id": self.id,
            "position": self.position,
            "prompt": self.prompt,
            "type": self.type.value,
            "options": list(self.options) if self.options is not None else None,
        }


@dataclass
class QuizAttempt:
    id: str
    user_id: str
    module: str
    total_questions: int
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    score: Optional[int] = None

    @property
    def completed(self) -> bool:
        return self.completed_at is not None

    @property
    def finished(self) -> bool:
        """Completed with a recorded score (counts toward analytics)."""
        return self.completed_at is not None and self.score is not None


@dataclass(frozen=True)
class QuizAnswer:
    id: str
    attempt_id: str
    question_id: str
    user_answer: str
    is_correct: bool
    explanation: str
    answered_at: datetime = field(default_factory=utcnow)


# ==================== Progress ====================

@dataclass
class ModuleProgress:
    id: str
    user_id: str
    module: str
    completed: bool = False
    completed_at: Optional[datetime] = None
    time_on_task_seconds: int = 0
    updated_at: datetime = field(default_factory=utcnow)

    def copy(self) -> "ModuleProgress":
        return replace(self)


@dataclass(frozen=True)
class ModuleBreakdown:
    module: str
    completed: bool
    time_on_task_seconds: int
    best_score: Optional[int]


@dataclass(frozen=True)
class RecentScore:
    module: str
    score: int
    completed_at: datetime


@dataclass(frozen=True)
class AnalyticsSnapshot:
    """Derived, read-only aggregate for one user. Never stored."""
    user_id: str
    current_skill_level: SkillLevel
    total_quiz_attempts: int
    average_quiz_score: int
    completed_modules: int
    total_time_on_task_seconds: int
    module_breakdown: List[ModuleBreakdown] = field(default_factory=list)
    recent_quiz_scores: List[RecentScore] = field(default_factory=list)
    score_stats: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "currentSkillLevel": self.current_skill_level.value,
            "totalQuizAttempts": self.total_quiz_attempts,
            "averageQuizScore": self.average_quiz_score,
            "completedModules": self.completed_modules,
            "totalTimeOnTaskSeconds": self.total_time_on_task_seconds,
            "moduleBreakdown": [
                {
                    "module": entry.module,
                    "completed": entry.completed,
                    "timeOnTaskSeconds": entry.time_on_task_seconds,
                    "bestScore": entry.best_score,
                }
                for entry in self.module_breakdown
            ],
            "recentQuizScores": [
                {
                    "module": entry.module,
                    "score": entry.score,
                    "completedAt": entry.completed_at.isoformat(),
                }
                for entry in self.recent_quiz_scores
            ],
            "scoreStats": dict(self.score_stats),
        }
