"""
Model-facing services.

- GenerationClient: assistance answers, quizzes and explanations with a
  provider fallback chain
- ChatTurnService / StreamingSession: retrieval-augmented chat turns delivered
  as ordered stream events
- QuizEngine: quiz generation, grading and skill-level transitions
"""

from .generation_client import (
    ChatModelProvider,
    DeterministicFallback,
    GenerationClient,
    Provider,
    default_providers,
    parse_quiz_output,
)
from .quiz_engine import AnswerResult, QuizEngine, QuizStart
from .streaming import (
    ChatTurnService,
    DoneEvent,
    ErrorEvent,
    MetaEvent,
    StreamingSession,
    StreamRegistry,
    TokenEvent,
    format_sse,
    shutdown,
    stream_sse,
)

__all__ = [
    # Generation
    "GenerationClient",
    "Provider",
    "ChatModelProvider",
    "DeterministicFallback",
    "default_providers",
    "parse_quiz_output",
    # Streaming
    "ChatTurnService",
    "StreamingSession",
    "StreamRegistry",
    "MetaEvent",
    "TokenEvent",
    "DoneEvent",
    "ErrorEvent",
    "format_sse",
    "stream_sse",
    "shutdown",
    # Quizzes
    "QuizEngine",
    "QuizStart",
    "AnswerResult",
]
