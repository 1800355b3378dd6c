"""
Configuration management for sopcoach.

This module centralizes all configuration settings following 12-factor app principles:
- Secrets loaded from environment variables (and an optional .env file)
- Sensible defaults for development
- Heuristic thresholds kept as named, overridable constants
- Thread-safe token tracking for provider calls
"""

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: str) -> float:
    return float(os.getenv(name, default))


@dataclass
class ModelConfig:
    """Generation provider settings (Gemini first, then OpenAI)."""

    # Gemini is reached through its OpenAI-compatible endpoint
    gemini_api_key: str = field(default_factory=lambda: os.getenv("GEMINI_API_KEY", ""))
    gemini_model: str = field(
        default_factory=lambda: os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
    )
    gemini_base_url: str = field(
        default_factory=lambda: os.getenv(
            "GEMINI_BASE_URL",
            "https://generativelanguage.googleapis.com/v1beta/openai/",
        )
    )

    openai_api_key: str = field(default_factory=lambda: os.getenv("OPENAI_API_KEY", ""))
    openai_model: str = field(
        default_factory=lambda: os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    )
    openai_base_url: Optional[str] = field(
        default_factory=lambda: os.getenv("OPENAI_BASE_URL")
    )

    temperature: float = 0.2
    max_tokens: int = 1200

    # Guardrails
    request_timeout: float = field(
        default_factory=lambda: _env_float("REQUEST_TIMEOUT", "30.0")
    )
    max_retries: int = 0


@dataclass
class RAGConfig:
    """Retrieval configuration."""

    # Hashing-trick embedding size
    embedding_dimension: int = 256

    # Chunking (ingestion)
    chunk_size: int = 700
    chunk_overlap: int = 120

    # Retrieval
    top_k: int = 4
    quiz_top_k: int = 5
    explain_top_k: int = 4

    # Remote index (Chroma). Unset URL means in-process index only.
    chroma_url: Optional[str] = field(default_factory=lambda: os.getenv("CHROMA_URL"))
    chroma_collection: str = field(
        default_factory=lambda: os.getenv("CHROMA_COLLECTION", "training_documents")
    )
    remote_timeout_seconds: float = field(
        default_factory=lambda: _env_float("CHROMA_TIMEOUT", "3.0")
    )

    def __post_init__(self):
        # Sanity check: chunk_overlap must be less than chunk_size
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be < chunk_size ({self.chunk_size})"
            )


@dataclass
class AssessmentConfig:
    """Quiz evaluation and skill adaptation thresholds."""

    default_module: str = "General Onboarding"

    # Short answers: fraction of expected tokens found in the submission
    short_answer_threshold: float = 0.6

    # Lifetime average quiz score → skill level
    advanced_threshold: float = 85.0
    intermediate_threshold: float = 60.0

    # Module completion requires a completed attempt scoring at least this
    pass_threshold: float = 70.0

    min_quiz_questions: int = 3

    # Time credited per answer when the caller reports less / nothing
    min_answer_seconds: int = 10
    default_answer_seconds: int = 20


@dataclass
class StreamingConfig:
    """Chat delivery pacing and shutdown settings."""

    token_delay_seconds: float = field(
        default_factory=lambda: _env_float("STREAM_TOKEN_DELAY", "0.02")
    )
    shutdown_timeout_seconds: float = field(
        default_factory=lambda: _env_float("SHUTDOWN_TIMEOUT", "15.0")
    )

    # Time credited per chat turn
    min_chat_seconds: int = 5
    default_chat_seconds: int = 15


@dataclass
class PathConfig:
    """File system paths."""

    project_root: Path = field(default_factory=lambda: Path(__file__).parent.parent)
    data_dir: Path = field(init=False)
    documents_dir: Path = field(init=False)

    def __post_init__(self):
        self.data_dir = Path(os.getenv("SOPCOACH_DATA_DIR", str(self.project_root / "data")))
        self.documents_dir = self.data_dir / "documents"

    def prepare_filesystem(self):
        """
        Create directories if they don't exist.

        Separated from __post_init__ to avoid side-effects on import.
        """
        for directory in [self.data_dir, self.documents_dir]:
            directory.mkdir(parents=True, exist_ok=True)


@dataclass
class LoggingConfig:
    """Logging and token cost configuration."""

    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_tokens: bool = True

    cost_per_1k_input: float = field(
        default_factory=lambda: _env_float("COST_PER_1K_INPUT", "0.00015")
    )
    cost_per_1k_output: float = field(
        default_factory=lambda: _env_float("COST_PER_1K_OUTPUT", "0.0006")
    )


class Config:
    """
    Main configuration class. Singleton pattern.

    Usage:
        from sopcoach.config import config

        top_k = config.rag.top_k
        config.streaming.token_delay_seconds = 0  # e.g. in tests
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance.paths = PathConfig()
            cls._instance.model = ModelConfig()
            cls._instance.rag = RAGConfig()
            cls._instance.assessment = AssessmentConfig()
            cls._instance.streaming = StreamingConfig()
            cls._instance.logging = LoggingConfig()

        return cls._instance

    def prepare_fs(self):
        """Prepare filesystem (create directories). Call once at startup."""
        self.paths.prepare_filesystem()

    def validate(self) -> list[str]:
        """
        Validate configuration and return list of errors.

        Missing provider keys are not errors: generation degrades to the
        deterministic fallback.
        """
        errors = []

        if not (0 <= self.model.temperature <= 2):
            errors.append(f"temperature must be in [0, 2], got {self.model.temperature}")

        if self.model.request_timeout <= 0:
            errors.append(f"request_timeout must be > 0, got {self.model.request_timeout}")

        if self.rag.embedding_dimension <= 0:
            errors.append(
                f"RAG embedding_dimension must be > 0, got {self.rag.embedding_dimension}"
            )

        if self.rag.top_k < 1:
            errors.append(f"RAG top_k must be >= 1, got {self.rag.top_k}")

        if self.rag.remote_timeout_seconds <= 0:
            errors.append(
                f"RAG remote_timeout_seconds must be > 0, got {self.rag.remote_timeout_seconds}"
            )

        if self.rag.chunk_overlap >= self.rag.chunk_size:
            errors.append(
                f"RAG chunk_overlap ({self.rag.chunk_overlap}) must be < chunk_size ({self.rag.chunk_size})"
            )

        if not (0 < self.assessment.short_answer_threshold <= 1):
            errors.append(
                "Assessment short_answer_threshold must be in (0, 1], "
                f"got {self.assessment.short_answer_threshold}"
            )

        if self.assessment.intermediate_threshold > self.assessment.advanced_threshold:
            errors.append(
                f"Assessment intermediate_threshold ({self.assessment.intermediate_threshold}) "
                f"must be <= advanced_threshold ({self.assessment.advanced_threshold})"
            )

        if self.streaming.token_delay_seconds < 0:
            errors.append(
                f"token_delay_seconds must be >= 0, got {self.streaming.token_delay_seconds}"
            )

        if self.streaming.shutdown_timeout_seconds <= 0:
            errors.append(
                "shutdown_timeout_seconds must be > 0, "
                f"got {self.streaming.shutdown_timeout_seconds}"
            )

        return errors


# Global config instance
config = Config()


class TokenTracker:
    """Provider calls and token usage for this process, keyed by provider name."""

    def __init__(self):
        self._lock = threading.Lock()
        self.reset()

    def add_tokens(self, input_tokens: int, output_tokens: int, provider: str = "unknown"):
        with self._lock:
            self.input_tokens += input_tokens
            self.output_tokens += output_tokens
            self.total_calls += 1
            self.calls_by_provider[provider] = self.calls_by_provider.get(provider, 0) + 1

    def reset(self):
        with self._lock:
            self.input_tokens = 0
            self.output_tokens = 0
            self.total_calls = 0
            self.calls_by_provider: dict[str, int] = {}

    def summary(self) -> str:
        """One line for the end of a CLI run, with the cost estimated from ``config.logging``."""
        with self._lock:
            cost = (
                self.input_tokens / 1000 * config.logging.cost_per_1k_input
                + self.output_tokens / 1000 * config.logging.cost_per_1k_output
            )
            providers = ", ".join(
                f"{name}={count}" for name, count in sorted(self.calls_by_provider.items())
            )
            return (
                f"{self.total_calls} provider call(s) [{providers}]: "
                f"{self.input_tokens:,} input / {self.output_tokens:,} output tokens, "
                f"est. ${cost:.4f}"
            )


token_tracker = TokenTracker()
