"""
Unit tests for QuizEngine.

Uses the deterministic three-question quiz:
  Q0 multiple choice, key B
  Q1 short answer, key "prevents unexpected machine startup"
  Q2 multiple choice, key C
"""

import asyncio
import gc

import pytest

from sopcoach.agents.generation_client import GenerationClient
from sopcoach.agents.quiz_engine import QuizEngine
from sopcoach.errors import AttemptNotFound, DuplicateAnswer, QuestionMismatch
from sopcoach.models.domain import SkillLevel

CORRECT = ["B", "It prevents unexpected machine startup", "C"]
WRONG = ["A", "keeps the floor clean", "A"]


@pytest.fixture
def engine(store, vector_store):
    return QuizEngine(store=store, vector_store=vector_store, generation_client=GenerationClient(providers=[]))


async def _answer_all(engine, user, started, answers):
    results = []
    for question, answer in zip(started.questions, answers):
        results.append(await engine.answer(user, started.attempt_id, question.id, answer))
    return results


class TestQuizStart:
    """Test suite for QuizEngine.start."""

    def test_start_persists_attempt_and_questions(self, engine, store):
        async def scenario():
            user = await store.create_user("op@example.com")
            started = await engine.start(user, module="Machine Safety")
            attempt = await store.get_quiz_attempt(started.attempt_id)
            stored = await store.list_quiz_questions(started.attempt_id)
            return started, attempt, stored

        started, attempt, stored = asyncio.run(scenario())

        assert started.module == "Machine Safety"
        assert attempt.total_questions == 3
        assert [q.position for q in stored] == [0, 1, 2]
        assert [q.id for q in started.questions] == [q.id for q in stored]

    def test_public_payload_hides_answer_keys(self, engine, store):
        async def scenario():
            user = await store.create_user("op@example.com")
            return await engine.start(user)

        payload = asyncio.run(scenario()).to_dict()

        assert payload["module"] == "General Onboarding"
        for question in payload["questions"]:
            assert set(question) == {"id", "position", "prompt", "type", "options"}
        assert payload["questions"][1]["options"] is None

    def test_topic_used_when_no_module(self, engine, store, fake_provider):
        provider = fake_provider("gemini", ["not json"])
        engine.generation_client = GenerationClient(providers=[provider])

        async def scenario():
            user = await store.create_user("op@example.com")
            return await engine.start(user, topic="Quality Control")

        started = asyncio.run(scenario())

        assert started.module == "Quality Control"
        prompt = provider.calls[0][1]
        assert "Topic: Quality Control" in prompt
        assert "(sops/quality/inspection.md)" in prompt


class TestQuizAnswer:
    """Test suite for QuizEngine.answer."""

    def test_running_score_and_completion(self, engine, store):
        async def scenario():
            user = await store.create_user("op@example.com")
            started = await engine.start(user, module="Machine Safety")
            results = await _answer_all(engine, user, started, [CORRECT[0], CORRECT[1], WRONG[2]])
            attempt = await store.get_quiz_attempt(started.attempt_id)
            return results, attempt

        results, attempt = asyncio.run(scenario())

        assert [r.correct for r in results] == [True, True, False]
        assert [r.score_percent for r in results] == [33, 67, 67]
        assert [r.completed for r in results] == [False, False, True]
        assert [r.answered_count for r in results] == [1, 2, 3]
        assert attempt.score == 67
        assert attempt.completed_at is not None

    def test_feedback_text(self, engine, store):
        async def scenario():
            user = await store.create_user("op@example.com")
            started = await engine.start(user)
            return await _answer_all(engine, user, started, [CORRECT[0], WRONG[1]])

        right, wrong = asyncio.run(scenario())

        assert right.feedback.startswith("Correct. ")
        assert wrong.feedback.startswith(
            "Not quite. Expected answer: prevents unexpected machine startup. "
        )
        assert wrong.explanation in wrong.feedback

    def test_option_text_answer(self, engine, store):
        async def scenario():
            user = await store.create_user("op@example.com")
            started = await engine.start(user)
            question = started.questions[0]
            return await engine.answer(user, started.attempt_id, question.id, "b) VERIFY ppe and safety status")

        assert asyncio.run(scenario()).correct is True

    def test_duplicate_answer_rejected(self, engine, store):
        async def scenario():
            user = await store.create_user("op@example.com")
            started = await engine.start(user)
            question = started.questions[0]
            first = await engine.answer(user, started.attempt_id, question.id, "B")
            with pytest.raises(DuplicateAnswer):
                await engine.answer(user, started.attempt_id, question.id, "A")
            answers = await store.list_quiz_answers(started.attempt_id)
            return first, answers

        first, answers = asyncio.run(scenario())

        assert first.correct is True
        assert len(answers) == 1
        assert answers[0].user_answer == "B"

    def test_concurrent_duplicates_record_one_answer(self, engine, store):
        async def scenario():
            user = await store.create_user("op@example.com")
            started = await engine.start(user)
            question = started.questions[0]
            results = await asyncio.gather(
                *[engine.answer(user, started.attempt_id, question.id, "B") for _ in range(5)],
                return_exceptions=True,
            )
            return results, await store.list_quiz_answers(started.attempt_id)

        results, answers = asyncio.run(scenario())

        assert len(answers) == 1
        assert sum(isinstance(r, DuplicateAnswer) for r in results) == 4

    def test_abandoned_attempt_keeps_no_lock(self, engine, store):
        async def scenario():
            user = await store.create_user("op@example.com")
            started = await engine.start(user)
            await engine.answer(user, started.attempt_id, started.questions[0].id, "B")

        asyncio.run(scenario())
        gc.collect()

        assert len(engine._attempt_locks) == 0

    def test_unknown_attempt(self, engine, store):
        async def scenario():
            user = await store.create_user("op@example.com")
            await engine.answer(user, "missing", "q", "B")

        with pytest.raises(AttemptNotFound):
            asyncio.run(scenario())

    def test_attempt_of_another_user(self, engine, store):
        async def scenario():
            owner = await store.create_user("owner@example.com")
            other = await store.create_user("other@example.com")
            started = await engine.start(owner)
            await engine.answer(other, started.attempt_id, started.questions[0].id, "B")

        with pytest.raises(AttemptNotFound):
            asyncio.run(scenario())

    def test_question_from_another_attempt(self, engine, store):
        async def scenario():
            user = await store.create_user("op@example.com")
            first = await engine.start(user)
            second = await engine.start(user)
            await engine.answer(user, first.attempt_id, second.questions[0].id, "B")

        with pytest.raises(QuestionMismatch):
            asyncio.run(scenario())


class TestSkillAndProgress:
    """Test skill transitions and module progress after answers."""

    def test_perfect_quiz_promotes_to_advanced(self, engine, store):
        async def scenario():
            user = await store.create_user("op@example.com")
            started = await engine.start(user, module="Machine Safety")
            await _answer_all(engine, user, started, CORRECT)
            return await store.get_user(user.id), await store.list_module_progress(user.id)

        user, progress = asyncio.run(scenario())

        assert user.skill_level is SkillLevel.ADVANCED
        assert progress[0].completed is True
        assert progress[0].time_on_task_seconds == 60

    def test_two_thirds_is_intermediate_not_passed(self, engine, store):
        async def scenario():
            user = await store.create_user("op@example.com")
            started = await engine.start(user, module="Machine Safety")
            await _answer_all(engine, user, started, [CORRECT[0], CORRECT[1], WRONG[2]])
            return await store.get_user(user.id), await store.list_module_progress(user.id)

        user, progress = asyncio.run(scenario())

        assert user.skill_level is SkillLevel.INTERMEDIATE
        assert progress[0].completed is False

    def test_lifetime_average_drives_level(self, engine, store):
        async def scenario():
            user = await store.create_user("op@example.com", skill_level=SkillLevel.ADVANCED)
            first = await engine.start(user)
            await _answer_all(engine, user, first, CORRECT)
            second = await engine.start(user)
            await _answer_all(engine, user, second, WRONG)
            return await store.get_user(user.id)

        # Average of 100 and 0 is 50
        assert asyncio.run(scenario()).skill_level is SkillLevel.BEGINNER

    def test_time_credit_floor(self, engine, store):
        async def scenario():
            user = await store.create_user("op@example.com")
            started = await engine.start(user, module="Machine Safety")
            question = started.questions[0]
            await engine.answer(user, started.attempt_id, question.id, "B", time_on_task_seconds=3)
            return await store.list_module_progress(user.id)

        assert asyncio.run(scenario())[0].time_on_task_seconds == 10
