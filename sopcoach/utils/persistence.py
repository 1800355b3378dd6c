"""
Persistence interface for users, chat, quizzes and progress.

The relational backend is an external collaborator; the core only needs the
async CRUD surface defined by ``DataStore``. ``InMemoryStore`` is the reference
implementation used by tests and the command line. Each method body runs
without suspension points, so every call is atomic with respect to other
coroutines on the same event loop.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional

from ..config import config
from ..models.domain import (
    AnalyticsSnapshot,
    ChatMessage,
    MessageRole,
    ModuleProgress,
    QuestionType,
    QuizAnswer,
    QuizAttempt,
    QuizQuestion,
    SkillLevel,
    TrainingSession,
    User,
    new_id,
    utcnow,
)
from .progress import accumulate_progress, build_analytics_snapshot


class DataStore(ABC):
    """Async CRUD surface the core depends on."""

    # Users
    @abstractmethod
    async def create_user(
        self,
        email: str,
        language: str = "en",
        skill_level: SkillLevel = SkillLevel.BEGINNER,
    ) -> User: ...

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    async def update_user(
        self,
        user_id: str,
        language: Optional[str] = None,
        skill_level: Optional[SkillLevel] = None,
    ) -> Optional[User]: ...

    # Sessions & messages
    @abstractmethod
    async def create_session(
        self, user_id: str, module: str, session_id: Optional[str] = None
    ) -> TrainingSession: ...

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[TrainingSession]: ...

    @abstractmethod
    async def touch_session(self, session_id: str) -> None: ...

    @abstractmethod
    async def create_message(
        self, session_id: str, role: MessageRole, content: str
    ) -> ChatMessage: ...

    @abstractmethod
    async def list_messages(self, session_id: str) -> List[ChatMessage]: ...

    # Quizzes
    @abstractmethod
    async def create_quiz_attempt(
        self, user_id: str, module: str, total_questions: int
    ) -> QuizAttempt: ...

    @abstractmethod
    async def get_quiz_attempt(self, attempt_id: str) -> Optional[QuizAttempt]: ...

    @abstractmethod
    async def complete_quiz_attempt(
        self, attempt_id: str, score: int, completed_at: Optional[datetime] = None
    ) -> Optional[QuizAttempt]:
        """Set score and completed_at together, only if not already completed."""

    @abstractmethod
    async def list_quiz_attempts(self, user_id: str) -> List[QuizAttempt]: ...

    @abstractmethod
    async def create_quiz_question(
        self,
        attempt_id: str,
        position: int,
        prompt: str,
        type: QuestionType,
        options: Optional[List[str]],
        answer_key: str,
        explanation: str,
    ) -> QuizQuestion: ...

    @abstractmethod
    async def get_quiz_question(self, question_id: str) -> Optional[QuizQuestion]: ...

    @abstractmethod
    async def list_quiz_questions(self, attempt_id: str) -> List[QuizQuestion]: ...

    @abstractmethod
    async def create_quiz_answer(
        self,
        attempt_id: str,
        question_id: str,
        user_answer: str,
        is_correct: bool,
        explanation: str,
    ) -> QuizAnswer: ...

    @abstractmethod
    async def list_quiz_answers(self, attempt_id: str) -> List[QuizAnswer]: ...

    async def count_quiz_answers(self, attempt_id: str) -> int:
        return len(await self.list_quiz_answers(attempt_id))

    # Progress
    @abstractmethod
    async def upsert_module_progress(
        self, user_id: str, module: str, time_delta_seconds: float, completed: bool
    ) -> ModuleProgress: ...

    @abstractmethod
    async def list_module_progress(self, user_id: str) -> List[ModuleProgress]: ...

    async def get_analytics(self, user_id: str) -> AnalyticsSnapshot:
        """Recompute the analytics snapshot from current records."""
        user = await self.get_user(user_id)
        attempts = await self.list_quiz_attempts(user_id)
        progress = await self.list_module_progress(user_id)
        return build_analytics_snapshot(user_id, user, attempts, progress)


class InMemoryStore(DataStore):
    """Process-local store; all state is lost on exit."""

    def __init__(self):
        self.users: Dict[str, User] = {}
        self.sessions: Dict[str, TrainingSession] = {}
        self.messages: List[ChatMessage] = []
        self.attempts: Dict[str, QuizAttempt] = {}
        self.questions: Dict[str, QuizQuestion] = {}
        self.answers: List[QuizAnswer] = []
        self.progress: Dict[tuple[str, str], ModuleProgress] = {}

    async def create_user(
        self,
        email: str,
        language: str = "en",
        skill_level: SkillLevel = SkillLevel.BEGINNER,
    ) -> User:
        user = User(id=new_id(), email=email, language=language, skill_level=SkillLevel(skill_level))
        self.users[user.id] = user
        return user

    async def get_user(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)

    async def update_user(
        self,
        user_id: str,
        language: Optional[str] = None,
        skill_level: Optional[SkillLevel] = None,
    ) -> Optional[User]:
        user = self.users.get(user_id)
        if user is None:
            return None
        if language:
            user.language = language
        if skill_level:
            user.skill_level = SkillLevel(skill_level)
        return user

    async def create_session(
        self, user_id: str, module: str, session_id: Optional[str] = None
    ) -> TrainingSession:
        session = TrainingSession(
            id=session_id or new_id(),
            user_id=user_id,
            module=module or config.assessment.default_module,
        )
        self.sessions[session.id] = session
        return session

    async def get_session(self, session_id: str) -> Optional[TrainingSession]:
        return self.sessions.get(session_id)

    async def touch_session(self, session_id: str) -> None:
        session = self.sessions.get(session_id)
        if session is not None:
            session.last_active_at = utcnow()

    async def create_message(
        self, session_id: str, role: MessageRole, content: str
    ) -> ChatMessage:
        message = ChatMessage(id=new_id(), session_id=session_id, role=MessageRole(role), content=content)
        self.messages.append(message)
        return message

    async def list_messages(self, session_id: str) -> List[ChatMessage]:
        return [message for message in self.messages if message.session_id == session_id]

    async def create_quiz_attempt(
        self, user_id: str, module: str, total_questions: int
    ) -> QuizAttempt:
        attempt = QuizAttempt(
            id=new_id(),
            user_id=user_id,
            module=module,
            total_questions=total_questions,
        )
        self.attempts[attempt.id] = attempt
        return attempt

    async def get_quiz_attempt(self, attempt_id: str) -> Optional[QuizAttempt]:
        return self.attempts.get(attempt_id)

    async def complete_quiz_attempt(
        self, attempt_id: str, score: int, completed_at: Optional[datetime] = None
    ) -> Optional[QuizAttempt]:
        attempt = self.attempts.get(attempt_id)
        if attempt is None or attempt.completed:
            return attempt
        completed = replace(attempt, score=score, completed_at=completed_at or utcnow())
        self.attempts[attempt_id] = completed
        return completed

    async def list_quiz_attempts(self, user_id: str) -> List[QuizAttempt]:
        return [attempt for attempt in self.attempts.values() if attempt.user_id == user_id]

    async def create_quiz_question(
        self,
        attempt_id: str,
        position: int,
        prompt: str,
        type: QuestionType,
        options: Optional[List[str]],
        answer_key: str,
        explanation: str,
    ) -> QuizQuestion:
        question_type = QuestionType(type)
        question = QuizQuestion(
            id=new_id(),
            attempt_id=attempt_id,
            position=position,
            prompt=prompt,
            type=question_type,
            options=list(options or []) if question_type is QuestionType.MULTIPLE_CHOICE else None,
            answer_key=answer_key,
            explanation=explanation,
        )
        self.questions[question.id] = question
        return question

    async def get_quiz_question(self, question_id: str) -> Optional[QuizQuestion]:
        return self.questions.get(question_id)

    async def list_quiz_questions(self, attempt_id: str) -> List[QuizQuestion]:
        questions = [q for q in self.questions.values() if q.attempt_id == attempt_id]
        return sorted(questions, key=lambda q: q.position)

    async def create_quiz_answer(
        self,
        attempt_id: str,
        question_id: str,
        user_answer: str,
        is_correct: bool,
        explanation: str,
    ) -> QuizAnswer:
        answer = QuizAnswer(
            id=new_id(),
            attempt_id=attempt_id,
            question_id=question_id,
            user_answer=user_answer,
            is_correct=is_correct,
            explanation=explanation,
        )
        self.answers.append(answer)
        return answer

    async def list_quiz_answers(self, attempt_id: str) -> List[QuizAnswer]:
        return [answer for answer in self.answers if answer.attempt_id == attempt_id]

    async def upsert_module_progress(
        self, user_id: str, module: str, time_delta_seconds: float, completed: bool
    ) -> ModuleProgress:
        key = (user_id, module)
        updated = accumulate_progress(
            self.progress.get(key), user_id, module, time_delta_seconds, completed
        )
        self.progress[key] = updated
        return updated

    async def list_module_progress(self, user_id: str) -> List[ModuleProgress]:
        return [entry for (owner, _), entry in self.progress.items() if owner == user_id]
