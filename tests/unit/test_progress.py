"""
Unit tests for progress accumulation, analytics and the in-memory store.

Tests:
- Monotonic time on task and sticky completion
- Score summary statistics
- Analytics snapshot aggregation
- InMemoryStore progress and attempt completion
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from sopcoach.models.domain import ModuleProgress, QuizAttempt, SkillLevel, User
from sopcoach.utils.persistence import InMemoryStore
from sopcoach.utils.progress import (
    RECENT_SCORES_LIMIT,
    accumulate_progress,
    average_score,
    build_analytics_snapshot,
    score_summary,
)

T0 = datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)


def _attempt(module, score, minutes, completed=True):
    return QuizAttempt(
        id=f"{module}-{minutes}",
        user_id="u1",
        module=module,
        total_questions=3,
        started_at=T0,
        completed_at=T0 + timedelta(minutes=minutes) if completed else None,
        score=score if completed else None,
    )


class TestAccumulateProgress:
    """Test suite for accumulate_progress."""

    def test_creates_record(self):
        progress = accumulate_progress(None, "u1", "Machine Safety", 15, False, now=T0)
        assert progress.time_on_task_seconds == 15
        assert progress.completed is False
        assert progress.completed_at is None

    def test_time_only_grows(self):
        progress = accumulate_progress(None, "u1", "M", 10, False, now=T0)
        progress = accumulate_progress(progress, "u1", "M", -50, False, now=T0)
        assert progress.time_on_task_seconds == 10

    def test_fractional_seconds_floor(self):
        progress = accumulate_progress(None, "u1", "M", 9.9, False, now=T0)
        assert progress.time_on_task_seconds == 9

    def test_completion_is_sticky(self):
        later = T0 + timedelta(hours=1)
        progress = accumulate_progress(None, "u1", "M", 10, True, now=T0)
        progress = accumulate_progress(progress, "u1", "M", 10, False, now=later)

        assert progress.completed is True
        assert progress.completed_at == T0
        assert progress.updated_at == later
        assert progress.time_on_task_seconds == 20

    def test_completed_at_set_once(self):
        progress = accumulate_progress(None, "u1", "M", 10, False, now=T0)
        progress = accumulate_progress(progress, "u1", "M", 10, True, now=T0 + timedelta(minutes=5))
        progress = accumulate_progress(progress, "u1", "M", 10, True, now=T0 + timedelta(minutes=9))
        assert progress.completed_at == T0 + timedelta(minutes=5)

    def test_does_not_mutate_existing(self):
        existing = ModuleProgress(id="p1", user_id="u1", module="M", time_on_task_seconds=5)
        accumulate_progress(existing, "u1", "M", 10, True)
        assert existing.time_on_task_seconds == 5
        assert existing.completed is False


class TestScoreSummary:
    """Test suite for score_summary."""

    def test_summary_values(self):
        summary = score_summary([85, 72, 45])
        assert summary["mean"] == pytest.approx(67.33)
        assert summary["median"] == 72
        assert summary["min"] == 45
        assert summary["max"] == 85
        assert summary["count"] == 3

    def test_even_count_median(self):
        assert score_summary([40, 60, 80, 100])["median"] == 70

    def test_empty(self):
        summary = score_summary([])
        assert summary["count"] == 0
        assert summary["mean"] == 0.0


class TestAnalyticsSnapshot:
    """Test suite for build_analytics_snapshot."""

    def test_aggregates_attempts_and_progress(self):
        attempts = [
            _attempt("Machine Safety", 67, 1),
            _attempt("Machine Safety", 100, 2),
            _attempt("Quality Control", 33, 3),
            _attempt("Quality Control", None, 4, completed=False),
        ]
        progress = [
            ModuleProgress(id="p1", user_id="u1", module="Machine Safety", completed=True, time_on_task_seconds=120),
            ModuleProgress(id="p2", user_id="u1", module="Quality Control", time_on_task_seconds=45),
        ]
        user = User(id="u1", email="op@example.com", skill_level=SkillLevel.INTERMEDIATE)

        snapshot = build_analytics_snapshot("u1", user, attempts, progress)

        assert snapshot.total_quiz_attempts == 4
        assert snapshot.average_quiz_score == 67  # (67 + 100 + 33) / 3 = 66.67
        assert snapshot.completed_modules == 1
        assert snapshot.total_time_on_task_seconds == 165
        assert snapshot.current_skill_level is SkillLevel.INTERMEDIATE

        best = {entry.module: entry.best_score for entry in snapshot.module_breakdown}
        assert best == {"Machine Safety": 100, "Quality Control": 33}

        assert [entry.score for entry in snapshot.recent_quiz_scores] == [33, 100, 67]

    def test_recent_scores_capped(self):
        attempts = [_attempt("M", 50, minute) for minute in range(15)]
        snapshot = build_analytics_snapshot("u1", None, attempts, [])

        assert len(snapshot.recent_quiz_scores) == RECENT_SCORES_LIMIT
        assert snapshot.recent_quiz_scores[0].completed_at == T0 + timedelta(minutes=14)
        assert snapshot.current_skill_level is SkillLevel.BEGINNER

    def test_module_without_attempts_has_no_best_score(self):
        progress = [ModuleProgress(id="p1", user_id="u1", module="Forklifts", time_on_task_seconds=5)]
        snapshot = build_analytics_snapshot("u1", None, [], progress)
        assert snapshot.module_breakdown[0].best_score is None
        assert snapshot.average_quiz_score == 0

    def test_average_rounds_half_up(self):
        attempts = [_attempt("M", 50, 1), _attempt("M", 51, 2)]
        assert average_score(attempts) == 51

    def test_to_dict_uses_camel_case(self):
        snapshot = build_analytics_snapshot("u1", None, [_attempt("M", 80, 1)], [])
        data = snapshot.to_dict()
        assert data["averageQuizScore"] == 80
        assert data["currentSkillLevel"] == "beginner"
        assert data["recentQuizScores"][0]["completedAt"].startswith("2024-01-01T08:01")


class TestInMemoryStore:
    """Test suite for InMemoryStore."""

    def test_progress_upsert_accumulates(self):
        store = InMemoryStore()

        async def scenario():
            await store.upsert_module_progress("u1", "M", 15, False)
            await store.upsert_module_progress("u1", "M", 20, True)
            await store.upsert_module_progress("u1", "M", 10, False)
            return await store.list_module_progress("u1")

        (progress,) = asyncio.run(scenario())
        assert progress.time_on_task_seconds == 45
        assert progress.completed is True

    def test_complete_attempt_only_once(self):
        store = InMemoryStore()

        async def scenario():
            attempt = await store.create_quiz_attempt("u1", "M", 3)
            first = await store.complete_quiz_attempt(attempt.id, 67)
            second = await store.complete_quiz_attempt(attempt.id, 100)
            return first, second

        first, second = asyncio.run(scenario())
        assert first.score == 67
        assert second.score == 67
        assert second.completed_at == first.completed_at

    def test_questions_listed_in_position_order(self):
        store = InMemoryStore()

        async def scenario():
            for position in (2, 0, 1):
                await store.create_quiz_question("a1", position, f"Question {position}?", "short_answer", None, "key", "why")
            return await store.list_quiz_questions("a1")

        assert [q.position for q in asyncio.run(scenario())] == [0, 1, 2]

    def test_answers_counted_per_attempt(self):
        store = InMemoryStore()

        async def scenario():
            await store.create_quiz_answer("a1", "q1", "B", True, "ok")
            await store.create_quiz_answer("a1", "q2", "A", False, "no")
            await store.create_quiz_answer("a2", "q3", "C", True, "ok")
            return await store.count_quiz_answers("a1"), await store.count_quiz_answers("missing")

        assert asyncio.run(scenario()) == (2, 0)

    def test_get_analytics(self):
        store = InMemoryStore()

        async def scenario():
            user = await store.create_user("op@example.com")
            attempt = await store.create_quiz_attempt(user.id, "M", 3)
            await store.complete_quiz_attempt(attempt.id, 90)
            return await store.get_analytics(user.id)

        snapshot = asyncio.run(scenario())
        assert snapshot.total_quiz_attempts == 1
        assert snapshot.average_quiz_score == 90
