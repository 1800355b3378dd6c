"""
Error taxonomy for sopcoach.

Infrastructure failures (remote index, model providers, malformed model output)
are recovered locally by the component that owns the fallback; they are raised
internally and logged, never surfaced to the learner. Domain-rule violations
(duplicate answers, unknown identifiers) propagate to the caller.
"""

from __future__ import annotations

import asyncio
from typing import Optional


class SopCoachError(Exception):
    """Base class for all sopcoach errors."""

    http_status: int = 500
    category: str = "unknown"


# Infrastructure (recovered locally)

class RetrievalDegraded(SopCoachError):
    """Remote vector index unreachable; results served from the in-process index."""

    category = "retrieval"


class GenerationUnavailable(SopCoachError):
    """Every configured provider failed; the deterministic generator answered."""

    category = "model"


class MalformedGenerationOutput(SopCoachError):
    """Provider output did not parse or did not match the expected schema."""

    category = "model"


class StreamDisconnected(SopCoachError):
    """The receiving end of a stream went away; delivery stops silently."""

    category = "network"


# Domain (propagated)

class DuplicateAnswer(SopCoachError):
    """A question was already answered in this attempt."""

    http_status = 409

    def __init__(self, attempt_id: str, question_id: str):
        super().__init__("Question already answered")
        self.attempt_id = attempt_id
        self.question_id = question_id


class AttemptNotFound(SopCoachError):
    http_status = 404

    def __init__(self, attempt_id: str):
        super().__init__("Quiz attempt not found")
        self.attempt_id = attempt_id


class QuestionMismatch(SopCoachError):
    """Question does not exist or belongs to another attempt."""

    http_status = 404

    def __init__(self, question_id: str, attempt_id: Optional[str] = None):
        super().__init__("Question not found for this attempt")
        self.question_id = question_id
        self.attempt_id = attempt_id


class SessionForbidden(SopCoachError):
    http_status = 403

    def __init__(self, session_id: str):
        super().__init__("Forbidden")
        self.session_id = session_id


class ShutdownTimeout(SopCoachError):
    """Open streams did not drain within the shutdown window."""

    def __init__(self, timeout_seconds: float, remaining: int):
        super().__init__(
            f"Shutdown exceeded {timeout_seconds}s with {remaining} stream(s) still open"
        )
        self.timeout_seconds = timeout_seconds
        self.remaining = remaining


_NETWORK_ERRORS = (ConnectionError, TimeoutError, asyncio.TimeoutError, OSError)


def classify_failure(error: BaseException) -> str:
    """
    Bucket an unexpected failure for the boundary layer.

    Returns one of "retrieval", "model", "network" or "unknown" so callers can
    render a matching retry affordance.
    """
    if isinstance(error, SopCoachError):
        return error.category

    if isinstance(error, _NETWORK_ERRORS):
        return "network"

    # Client libraries raise their own hierarchies; match on module name
    module = type(error).__module__ or ""
    if module.startswith(("openai", "langchain")):
        return "model"
    if module.startswith("chromadb"):
        return "retrieval"
    if module.startswith(("httpx", "httpcore", "urllib3", "requests")):
        return "network"

    return "unknown"
