"""
Quiz Engine - adaptive SOP quizzes with deterministic grading.

Generates a quiz from retrieved SOP context, grades answers one at a time,
keeps a running score, and moves the learner between skill levels when an
attempt completes.
"""

from __future__ import annotations

import asyncio
import logging
import math
import weakref
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..config import AssessmentConfig, RAGConfig, config
from ..errors import AttemptNotFound, DuplicateAnswer, QuestionMismatch
from ..models.domain import QuizAttempt, QuizQuestion, User
from ..models.quiz_evaluation import derive_skill_level, evaluate_answer, score_percent
from ..utils.persistence import DataStore
from ..utils.vector_store import VectorIndex
from .generation_client import GenerationClient

logger = logging.getLogger(__name__)


@dataclass
class QuizStart:
    attempt_id: str
    module: str
    questions: List[QuizQuestion] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Learner-safe payload (no answer keys)."""
        return {
            "attemptId": self.attempt_id,
            "module": self.module,
            "questions": [question.to_public_dict() for question in self.questions],
        }


@dataclass
class AnswerResult:
    correct: bool
    feedback: str
    explanation: str
    completed: bool
    score_percent: int
    answered_count: int
    total_questions: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "correct": self.correct,
            "feedback": self.feedback,
            "explanation": self.explanation,
            "completed": self.completed,
            "scorePercent": self.score_percent,
            "answeredCount": self.answered_count,
            "totalQuestions": self.total_questions,
        }


def answer_feedback(question: QuizQuestion, correct: bool) -> str:
    if correct:
        return f"Correct. {question.explanation}"
    return f"Not quite. Expected answer: {question.answer_key}. {question.explanation}"


class QuizEngine:
    """
    Starts quiz attempts and grades answers.

    Answers to one attempt are serialized with a per-attempt lock so the
    duplicate check and the insert cannot interleave within this process.
    """

    def __init__(
        self,
        store: DataStore,
        vector_store: VectorIndex,
        generation_client: GenerationClient,
        assessment_config: Optional[AssessmentConfig] = None,
        rag_config: Optional[RAGConfig] = None,
    ):
        self.store = store
        self.vector_store = vector_store
        self.generation_client = generation_client
        self.assessment_config = assessment_config or config.assessment
        self.rag_config = rag_config or config.rag
        # Locks live only while a coroutine holds or awaits them
        self._attempt_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, attempt_id: str) -> asyncio.Lock:
        lock = self._attempt_locks.get(attempt_id)
        if lock is None:
            lock = self._attempt_locks[attempt_id] = asyncio.Lock()
        return lock

    async def start(
        self,
        user: User,
        module: Optional[str] = None,
        topic: Optional[str] = None,
    ) -> QuizStart:
        """
        Generate and persist a new quiz attempt.

        Args:
            user: Learner taking the quiz
            module: Training module (takes precedence over ``topic``)
            topic: Free-form topic used when no module is given

        Returns:
            QuizStart with the attempt id and learner-safe questions
        """
        topic = module or topic or self.assessment_config.default_module

        context_chunks = await self.vector_store.query(
            f"{topic} standard operating procedures",
            self.rag_config.quiz_top_k,
            topic,
        )

        drafts = await self.generation_client.generate_quiz(
            topic=topic,
            language=user.language,
            skill_level=user.skill_level,
            context_chunks=context_chunks,
        )

        attempt = await self.store.create_quiz_attempt(user.id, topic, len(drafts))

        questions = []
        for position, draft in enumerate(drafts):
            questions.append(
                await self.store.create_quiz_question(
                    attempt_id=attempt.id,
                    position=position,
                    prompt=draft.prompt,
                    type=draft.type,
                    options=draft.options,
                    answer_key=draft.answer_key,
                    explanation=draft.explanation,
                )
            )

        logger.info(
            "Started quiz attempt %s for %s (%d questions)", attempt.id, topic, len(questions)
        )
        return QuizStart(attempt_id=attempt.id, module=topic, questions=questions)

    async def answer(
        self,
        user: User,
        attempt_id: str,
        question_id: str,
        user_answer: str,
        time_on_task_seconds: Optional[float] = None,
    ) -> AnswerResult:
        """
        Grade one answer and update score, skill level and progress.

        Raises:
            AttemptNotFound: Attempt missing or owned by another user
            QuestionMismatch: Question missing or from another attempt
            DuplicateAnswer: Question already answered in this attempt
        """
        attempt = await self.store.get_quiz_attempt(attempt_id)
        if attempt is None or attempt.user_id != user.id:
            raise AttemptNotFound(attempt_id)

        question = await self.store.get_quiz_question(question_id)
        if question is None or question.attempt_id != attempt_id:
            raise QuestionMismatch(question_id, attempt_id)

        async with self._lock_for(attempt_id):
            existing = await self.store.list_quiz_answers(attempt_id)
            if any(answer.question_id == question_id for answer in existing):
                logger.info("Rejected duplicate answer for question %s", question_id)
                raise DuplicateAnswer(attempt_id, question_id)

            correct = evaluate_answer(
                question, user_answer, self.assessment_config.short_answer_threshold
            )
            feedback = answer_feedback(question, correct)

            await self.store.create_quiz_answer(
                attempt_id=attempt_id,
                question_id=question_id,
                user_answer=user_answer,
                is_correct=correct,
                explanation=feedback,
            )

            answers = await self.store.list_quiz_answers(attempt_id)
            answered_count = len(answers)
            correct_count = sum(1 for answer in answers if answer.is_correct)
            score = score_percent(correct_count, attempt.total_questions)
            completed = answered_count >= attempt.total_questions

            if completed and not attempt.completed:
                await self._complete(user, attempt, score)

        credit = (
            self.assessment_config.default_answer_seconds
            if time_on_task_seconds is None
            else time_on_task_seconds
        )
        await self.store.upsert_module_progress(
            user.id,
            attempt.module,
            max(self.assessment_config.min_answer_seconds, math.floor(credit)),
            completed=completed and score >= self.assessment_config.pass_threshold,
        )

        return AnswerResult(
            correct=correct,
            feedback=feedback,
            explanation=question.explanation,
            completed=completed,
            score_percent=score,
            answered_count=answered_count,
            total_questions=attempt.total_questions,
        )

    async def _complete(self, user: User, attempt: QuizAttempt, score: int) -> None:
        await self.store.complete_quiz_attempt(attempt.id, score)

        analytics = await self.store.get_analytics(user.id)
        next_level = derive_skill_level(analytics.average_quiz_score, self.assessment_config)
        logger.info(
            "Completed quiz attempt %s with score %d (average %d)",
            attempt.id,
            score,
            analytics.average_quiz_score,
        )

        previous_level = user.skill_level
        if next_level != previous_level:
            await self.store.update_user(user.id, skill_level=next_level)
            user.skill_level = next_level
            logger.info(
                "Skill level for user %s: %s -> %s",
                user.id,
                previous_level.value,
                next_level.value,
            )
