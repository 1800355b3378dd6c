"""
Service wiring.

Everything is built explicitly from one Config so tests and the command line
can swap in their own store, vector store or providers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from .agents.generation_client import GenerationClient, Provider, default_providers
from .agents.quiz_engine import QuizEngine
from .agents.streaming import ChatTurnService, StreamRegistry
from .config import Config, config as default_config
from .utils.embeddings import HashingEmbedder
from .utils.persistence import DataStore, InMemoryStore
from .utils.vector_store import FallbackVectorStore, create_vector_store


@dataclass
class AppServices:
    config: Config
    store: DataStore
    vector_store: FallbackVectorStore
    generation_client: GenerationClient
    chat: ChatTurnService
    quiz: QuizEngine
    streams: StreamRegistry = field(default_factory=StreamRegistry)


def build_services(
    app_config: Optional[Config] = None,
    store: Optional[DataStore] = None,
    vector_store: Optional[FallbackVectorStore] = None,
    providers: Optional[List[Provider]] = None,
) -> AppServices:
    """
    Build the service graph.

    Args:
        app_config: Configuration (default: the process singleton)
        store: Data store (default: InMemoryStore)
        vector_store: Vector store (default: built from ``app_config.rag``)
        providers: Generation providers (default: Gemini, then OpenAI)

    Returns:
        AppServices holding every wired component
    """
    app_config = app_config or default_config
    store = store or InMemoryStore()
    vector_store = vector_store or create_vector_store(
        app_config.rag, HashingEmbedder(app_config.rag.embedding_dimension)
    )

    generation_client = GenerationClient(
        providers=providers if providers is not None else default_providers(app_config.model),
        request_timeout=app_config.model.request_timeout,
        min_quiz_questions=app_config.assessment.min_quiz_questions,
    )

    chat = ChatTurnService(
        store=store,
        vector_store=vector_store,
        generation_client=generation_client,
        rag_config=app_config.rag,
        streaming_config=app_config.streaming,
        default_module=app_config.assessment.default_module,
    )
    quiz = QuizEngine(
        store=store,
        vector_store=vector_store,
        generation_client=generation_client,
        assessment_config=app_config.assessment,
        rag_config=app_config.rag,
    )

    return AppServices(
        config=app_config,
        store=store,
        vector_store=vector_store,
        generation_client=generation_client,
        chat=chat,
        quiz=quiz,
    )
