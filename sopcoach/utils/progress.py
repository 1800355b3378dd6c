"""
Progress accumulation and analytics helpers.

Provides:
- Monotonic module-progress accumulation (time only grows, completion is sticky)
- Score summary statistics (mean, median, min, max, std_dev)
- Analytics snapshots derived from quiz attempts and module progress
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from ..models.domain import (
    AnalyticsSnapshot,
    ModuleBreakdown,
    ModuleProgress,
    QuizAttempt,
    RecentScore,
    SkillLevel,
    User,
    new_id,
    utcnow,
)

RECENT_SCORES_LIMIT = 10


def accumulate_progress(
    existing: Optional[ModuleProgress],
    user_id: str,
    module: str,
    time_delta_seconds: float,
    completed: bool,
    now: Optional[datetime] = None,
) -> ModuleProgress:
    """
    Fold one time/completion delta into a module progress record.

    Negative deltas are credited as zero and fractional seconds are floored, so
    ``time_on_task_seconds`` never decreases. ``completed`` is the logical OR of
    the old and new values and ``completed_at`` is stamped only once.

    Returns:
        A new ModuleProgress; ``existing`` is not mutated
    """
    now = now or utcnow()
    delta = max(0, int(math.floor(time_delta_seconds)))

    if existing is None:
        return ModuleProgress(
            id=new_id(),
            user_id=user_id,
            module=module,
            completed=completed,
            completed_at=now if completed else None,
            time_on_task_seconds=delta,
            updated_at=now,
        )

    updated = existing.copy()
    updated.time_on_task_seconds += delta
    updated.completed = existing.completed or completed
    if updated.completed and updated.completed_at is None:
        updated.completed_at = now
    updated.updated_at = now
    return updated


def score_summary(scores: Iterable[float]) -> Dict[str, float]:
    """
    Calculate summary statistics for quiz scores.

    Example:
        >>> score_summary([85, 72, 45])["mean"]
        67.33
    """
    values = sorted(scores)
    if not values:
        return {
            "mean": 0.0,
            "median": 0.0,
            "min": 0.0,
            "max": 0.0,
            "std_dev": 0.0,
            "count": 0,
        }

    n = len(values)
    mean_val = sum(values) / n

    if n % 2 == 1:
        median_val = values[n // 2]
    else:
        median_val = (values[n // 2 - 1] + values[n // 2]) / 2.0

    variance = sum((v - mean_val) ** 2 for v in values) / n

    return {
        "mean": round(mean_val, 2),
        "median": round(median_val, 2),
        "min": round(values[0], 2),
        "max": round(values[-1], 2),
        "std_dev": round(math.sqrt(variance), 2),
        "count": n,
    }


def average_score(attempts: Iterable[QuizAttempt]) -> int:
    """Rounded mean score of finished attempts (0 when there are none)."""
    scores = [attempt.score for attempt in attempts if attempt.finished]
    if not scores:
        return 0
    return int(math.floor(sum(scores) / len(scores) + 0.5))


def build_analytics_snapshot(
    user_id: str,
    user: Optional[User],
    attempts: List[QuizAttempt],
    progress: List[ModuleProgress],
) -> AnalyticsSnapshot:
    """
    Aggregate one user's quiz history and module progress.

    Args:
        user_id: User the snapshot is for
        user: User record (None reads as a beginner)
        attempts: All of the user's quiz attempts, finished or not
        progress: The user's module progress records

    Returns:
        AnalyticsSnapshot computed from the given records
    """
    finished = [attempt for attempt in attempts if attempt.finished]

    best_by_module: Dict[str, int] = {}
    for attempt in finished:
        current = best_by_module.get(attempt.module)
        if current is None or attempt.score > current:
            best_by_module[attempt.module] = attempt.score

    breakdown = [
        ModuleBreakdown(
            module=entry.module,
            completed=entry.completed,
            time_on_task_seconds=entry.time_on_task_seconds,
            best_score=best_by_module.get(entry.module),
        )
        for entry in progress
    ]

    recent = sorted(finished, key=lambda attempt: attempt.completed_at, reverse=True)
    recent_scores = [
        RecentScore(module=attempt.module, score=attempt.score, completed_at=attempt.completed_at)
        for attempt in recent[:RECENT_SCORES_LIMIT]
    ]

    return AnalyticsSnapshot(
        user_id=user_id,
        current_skill_level=user.skill_level if user else SkillLevel.BEGINNER,
        total_quiz_attempts=len(attempts),
        average_quiz_score=average_score(finished),
        completed_modules=sum(1 for entry in progress if entry.completed),
        total_time_on_task_seconds=sum(entry.time_on_task_seconds for entry in progress),
        module_breakdown=breakdown,
        recent_quiz_scores=recent_scores,
        score_stats=score_summary(attempt.score for attempt in finished),
    )
