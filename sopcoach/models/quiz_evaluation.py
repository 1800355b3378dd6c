"""
Deterministic quiz grading and skill-level adaptation.

No model calls here: answers are graded by normalized string comparison so the
same submission always gets the same verdict.
"""

from __future__ import annotations

import math
import re
import string
from typing import Optional

from ..config import AssessmentConfig, config
from .domain import QuestionType, QuizQuestion, SkillLevel

_WHITESPACE = re.compile(r"\s+")


def normalize_answer(value: str) -> str:
    """Trim, lowercase and collapse internal whitespace."""
    return _WHITESPACE.sub(" ", value.strip().lower())


def option_letter(index: int) -> Optional[str]:
    """0 → "A", 1 → "B", ...; None past "Z"."""
    if 0 <= index < len(string.ascii_uppercase):
        return string.ascii_uppercase[index]
    return None


def evaluate_answer(
    question: QuizQuestion,
    user_answer: str,
    short_answer_threshold: Optional[float] = None,
) -> bool:
    """
    Grade a submitted answer.

    Multiple choice is correct when the submission equals the key, or when it
    matches an offered option whose letter equals the key. Short answers are
    correct when enough of the expected tokens appear in the submission.

    Args:
        question: Stored question with answer key
        user_answer: Learner's raw submission
        short_answer_threshold: Required token coverage (default from config)

    Returns:
        True if the answer is correct
    """
    if short_answer_threshold is None:
        short_answer_threshold = config.assessment.short_answer_threshold

    submitted = normalize_answer(user_answer)
    expected = normalize_answer(question.answer_key)

    if question.type is QuestionType.MULTIPLE_CHOICE:
        if submitted == expected:
            return True

        for index, option in enumerate(question.options or []):
            if normalize_answer(option) == submitted:
                letter = option_letter(index)
                return letter is not None and letter.lower() == expected
        return False

    expected_tokens = [token for token in expected.split(" ") if token]
    if not expected_tokens:
        return False

    matches = sum(1 for token in expected_tokens if token in submitted)
    return matches / len(expected_tokens) >= short_answer_threshold


def score_percent(correct: int, total: int) -> int:
    """Integer percentage with halves rounded up."""
    if total <= 0:
        return 0
    return int(math.floor(correct / total * 100 + 0.5))


def derive_skill_level(
    average_quiz_score: float,
    assessment_config: Optional[AssessmentConfig] = None,
) -> SkillLevel:
    """
    Map a lifetime average quiz score to a skill level.

    Example:
        >>> derive_skill_level(85)
        <SkillLevel.ADVANCED: 'advanced'>
        >>> derive_skill_level(59)
        <SkillLevel.BEGINNER: 'beginner'>
    """
    assessment_config = assessment_config or config.assessment
    if average_quiz_score >= assessment_config.advanced_threshold:
        return SkillLevel.ADVANCED
    if average_quiz_score >= assessment_config.intermediate_threshold:
        return SkillLevel.INTERMEDIATE
    return SkillLevel.BEGINNER


SKILL_GUIDES = {
    SkillLevel.BEGINNER: "Use plain language, short steps, and define jargon before using it.",
    SkillLevel.INTERMEDIATE: "Use practical step-by-step instructions with short rationale and checks.",
    SkillLevel.ADVANCED: "Use concise, technical guidance with standards, edge cases, and optimization tips.",
}


def skill_prompt_guide(skill_level: SkillLevel | str) -> str:
    """Prompt instruction tier for a skill level (unknown values read as beginner)."""
    try:
        level = SkillLevel(skill_level)
    except ValueError:
        level = SkillLevel.BEGINNER
    return SKILL_GUIDES[level]
